# scheduling_service/db/session.py

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from scheduling_service.core.config import settings

# The engine is the entry point to the database. It's configured with the
# database URL and handles the connection pooling.
engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)

# SessionLocal is a factory for new Session objects; every engine operation
# receives one as its `db` argument.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        # Always close the session, even if the caller raised.
        db.close()
