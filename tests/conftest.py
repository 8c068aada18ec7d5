# tests/conftest.py

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from scheduling_service.db.base_class import Base
from scheduling_service.core.locks import LocalSessionLockManager
from scheduling_service.services.capacity_management_service import CapacityManagementService
from scheduling_service.services.conflict_resolution_service import ConflictResolutionService

# Registers every table on Base.metadata
import scheduling_service.models  # noqa: F401


# --- Test Database Setup ---
# A fresh in-memory SQLite database per test; StaticPool keeps the single
# connection alive for the lifetime of the engine.
@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()


# --- Service Fixtures ---
@pytest.fixture(scope="function")
def capacity_service():
    """Capacity service with its own in-process lock manager."""
    return CapacityManagementService(lock_manager=LocalSessionLockManager(timeout=5))


@pytest.fixture(scope="function")
def resolution_service(capacity_service):
    return ConflictResolutionService(capacity_service=capacity_service)


@pytest.fixture
def event_id():
    return "evt_test_123"
