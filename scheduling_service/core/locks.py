# scheduling_service/core/locks.py
"""
Per-session locks that serialize capacity counter mutations.

Admission, cancellation and promotion for one session run one at a time;
different sessions never wait on each other.
"""

import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Iterator, Optional

import redis

from scheduling_service.core.config import settings
from scheduling_service.core.exceptions import SessionLockTimeoutError

logger = logging.getLogger(__name__)


class LocalSessionLockManager:
    """
    In-process locks, one per session id. Enough for a single worker.

    The registry holds locks weakly: a lock lives only while some caller
    holds or waits on it, so the registry is bounded by the number of
    sessions currently in use rather than every session ever seen.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else settings.CAPACITY_LOCK_TIMEOUT_SECONDS
        self._locks = weakref.WeakValueDictionary()
        self._registry_lock = threading.Lock()

    def _lock_for(self, session_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        lock = self._lock_for(session_id)
        if not lock.acquire(timeout=self.timeout):
            logger.warning(f"Capacity lock timeout for session {session_id}")
            raise SessionLockTimeoutError(session_id, self.timeout)
        try:
            yield
        finally:
            lock.release()


class RedisSessionLockManager:
    """
    Distributed locks backed by Redis, for deployments running several
    workers against the same database.
    """

    key_prefix = "capacity:lock"

    def __init__(self, redis_client: redis.Redis, timeout: Optional[float] = None):
        self.redis = redis_client
        self.timeout = timeout if timeout is not None else settings.CAPACITY_LOCK_TIMEOUT_SECONDS

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        lock = self.redis.lock(
            f"{self.key_prefix}:{session_id}",
            # Auto-expire so a crashed worker cannot wedge the session forever
            timeout=self.timeout * 3,
            blocking_timeout=self.timeout,
        )
        if not lock.acquire():
            logger.warning(f"Redis capacity lock timeout for session {session_id}")
            raise SessionLockTimeoutError(session_id, self.timeout)
        try:
            yield
        finally:
            try:
                lock.release()
            except redis.exceptions.LockError as e:
                # Lock expired while held; the conditional counter updates still protect the data
                logger.warning(f"Capacity lock for session {session_id} expired before release: {e}")


def get_lock_manager():
    """Build the lock manager selected by CAPACITY_LOCK_BACKEND."""
    if settings.CAPACITY_LOCK_BACKEND == "redis":
        from scheduling_service.db.redis import get_redis_client

        return RedisSessionLockManager(get_redis_client())
    return LocalSessionLockManager()
