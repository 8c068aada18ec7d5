import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from scheduling_service import crud
from scheduling_service.core.exceptions import CapacityExceededError, InvalidArgumentError
from scheduling_service.core.locks import LocalSessionLockManager
from scheduling_service.db.base_class import Base
from scheduling_service.models.session_registration import SessionRegistrationStatus
from scheduling_service.services.capacity_management_service import CapacityManagementService
from tests.utils.capacity import configure_capacity
from tests.utils.registration import create_random_registration
from tests.utils.session import create_random_session

import scheduling_service.models  # noqa: F401

EVENT_ID = "evt_concurrency"
WORKERS = 20


# Threads need a database they can all open; in-memory SQLite is per connection
@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'capacity.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        pool_size=WORKERS,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def service():
    return CapacityManagementService(lock_manager=LocalSessionLockManager(timeout=60))


def _run_concurrently(func, args):
    barrier = threading.Barrier(len(args))

    def call(arg):
        barrier.wait()
        return func(arg)

    with ThreadPoolExecutor(max_workers=len(args)) as pool:
        return list(pool.map(call, args))


def test_concurrent_admissions_never_overbook(session_factory, service):
    db = session_factory()
    try:
        session_id = create_random_session(db, EVENT_ID).id
        configure_capacity(db, session_id, maximum_capacity=5, waitlist_capacity=3)
        registration_ids = [create_random_registration(db, EVENT_ID).id for _ in range(WORKERS)]
    finally:
        db.close()

    def admit(registration_id):
        worker_db = session_factory()
        try:
            return service.admit_registration(worker_db, session_id, registration_id).status
        except CapacityExceededError:
            return None
        finally:
            worker_db.close()

    outcomes = _run_concurrently(admit, registration_ids)

    assert outcomes.count(SessionRegistrationStatus.CONFIRMED) == 5
    assert outcomes.count(SessionRegistrationStatus.WAITLISTED) == 3
    assert outcomes.count(None) == WORKERS - 8

    db = session_factory()
    try:
        counts = crud.session_registration.count_by_status(db, session_id=session_id)
        capacity = crud.session_capacity_crud.get_by_session(db, session_id)
        assert counts[SessionRegistrationStatus.CONFIRMED] == capacity.current_registered == 5
        assert counts[SessionRegistrationStatus.WAITLISTED] == capacity.current_waitlisted == 3
        assert counts[SessionRegistrationStatus.PENDING] == 0
        waitlisted = crud.session_registration.get_waitlisted_ordered(db, session_id=session_id)
        assert [r.waitlist_position for r in waitlisted] == [1, 2, 3]
    finally:
        db.close()


def test_concurrent_cancellations_promote_each_waitlister_once(session_factory, service):
    db = session_factory()
    try:
        session_id = create_random_session(db, EVENT_ID).id
        configure_capacity(db, session_id, maximum_capacity=5, waitlist_capacity=5)
        placed = [
            service.admit_registration(db, session_id, create_random_registration(db, EVENT_ID).id)
            for _ in range(10)
        ]
        confirmed_ids = [r.id for r in placed[:5]]
        waitlisted_ids = {r.id for r in placed[5:]}
    finally:
        db.close()

    def cancel(session_registration_id):
        worker_db = session_factory()
        try:
            promoted = service.cancel_registration(worker_db, session_registration_id)
            return promoted.id if promoted else None
        finally:
            worker_db.close()

    promoted_ids = _run_concurrently(cancel, confirmed_ids)

    assert set(promoted_ids) == waitlisted_ids
    db = session_factory()
    try:
        capacity = crud.session_capacity_crud.get_by_session(db, session_id)
        assert capacity.current_registered == 5
        assert capacity.current_waitlisted == 0
    finally:
        db.close()


def test_concurrent_admissions_of_one_registrant_place_it_once(session_factory, service):
    db = session_factory()
    try:
        session_id = create_random_session(db, EVENT_ID).id
        configure_capacity(db, session_id, maximum_capacity=5, waitlist_capacity=5)
        registration_id = create_random_registration(db, EVENT_ID).id
    finally:
        db.close()

    def admit(_):
        worker_db = session_factory()
        try:
            return service.admit_registration(worker_db, session_id, registration_id).status
        except InvalidArgumentError:
            return None
        finally:
            worker_db.close()

    outcomes = _run_concurrently(admit, range(WORKERS))

    assert outcomes.count(SessionRegistrationStatus.CONFIRMED) == 1
    assert outcomes.count(None) == WORKERS - 1

    db = session_factory()
    try:
        counts = crud.session_registration.count_by_status(db, session_id=session_id)
        capacity = crud.session_capacity_crud.get_by_session(db, session_id)
        assert counts[SessionRegistrationStatus.CONFIRMED] == capacity.current_registered == 1
        assert counts[SessionRegistrationStatus.WAITLISTED] == capacity.current_waitlisted == 0
        assert counts[SessionRegistrationStatus.PENDING] == 0
    finally:
        db.close()
