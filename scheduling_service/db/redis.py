# scheduling_service/db/redis.py
import redis
from scheduling_service.core.config import settings


def get_redis_client():
    """
    Creates and returns a new Redis client instance.
    Used by the distributed capacity lock backend.
    """
    return redis.from_url(settings.REDIS_URL, decode_responses=True)
