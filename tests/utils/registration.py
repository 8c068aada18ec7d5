import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from scheduling_service import crud
from scheduling_service.models.registration import Registration
from scheduling_service.models.session_registration import (
    SessionRegistration,
    SessionRegistrationStatus,
)
from scheduling_service.schemas.session import RegistrationCreate


def create_random_registration(
    db: Session, event_id: str, user_name: Optional[str] = None
) -> Registration:
    """
    Creates a dummy event registration (a registrant) for testing purposes.
    """
    suffix = uuid.uuid4().hex[:6]
    registration_in = RegistrationCreate(
        event_id=event_id,
        user_id=f"usr_{suffix}",
        user_name=user_name or f"Attendee {suffix}",
        user_email=f"attendee-{suffix}@example.com",
    )
    return crud.registration.create(db, obj_in=registration_in)


def add_session_registration(
    db: Session,
    session_id: str,
    registration_id: str,
    *,
    status: SessionRegistrationStatus = SessionRegistrationStatus.CONFIRMED,
    registered_at: Optional[datetime] = None,
    waitlist_position: Optional[int] = None,
) -> SessionRegistration:
    """
    Inserts a session registration directly, bypassing the capacity service.
    Used to build states (e.g. over-capacity sessions) the service would refuse.
    """
    session_registration = SessionRegistration(
        session_id=session_id,
        registration_id=registration_id,
        status=status,
        waitlist_position=waitlist_position,
    )
    if registered_at is not None:
        session_registration.registered_at = registered_at
    db.add(session_registration)
    db.commit()
    db.refresh(session_registration)
    return session_registration
