# scheduling_service/models/registration.py
import uuid
from sqlalchemy import Column, String, DateTime, Enum
from scheduling_service.db.base_class import Base
from scheduling_service.utils.intervals import utcnow


class Registration(Base):
    """An attendee's registration to an event: the registrant for session admission."""
    __tablename__ = "registrations"

    id = Column(
        String, primary_key=True, default=lambda: f"reg_{uuid.uuid4().hex[:12]}"
    )
    event_id = Column(String, nullable=False, index=True)

    # Null for guest registrations without a user account
    user_id = Column(String, nullable=True, index=True)
    user_name = Column(String, nullable=True)
    user_email = Column(String, nullable=True, index=True)

    status = Column(
        Enum("confirmed", "cancelled", "checked_in", name="registration_status_enum"),
        nullable=False,
        default="confirmed",
        server_default="confirmed",
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
