# scheduling_service/models/session_registration.py
import enum
import uuid
from sqlalchemy import Column, String, ForeignKey, DateTime, Integer, Boolean, Enum, Text, text
from scheduling_service.db.base_class import Base
from scheduling_service.utils.intervals import utcnow


class SessionRegistrationStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    WAITLISTED = "WAITLISTED"
    CANCELLED = "CANCELLED"

    @classmethod
    def active_values(cls) -> list["SessionRegistrationStatus"]:
        """Statuses that still hold (or wait for) a seat."""
        return [cls.CONFIRMED, cls.WAITLISTED]


class SessionRegistration(Base):
    """
    Links a registrant (event registration) to a Session.

    Lifecycle:
    - PENDING: created by the capacity service, not yet placed
    - CONFIRMED: holds a seat
    - WAITLISTED: queued; waitlist_position is set only in this state
    - CANCELLED: terminal; a cancelled seat triggers waitlist promotion
    """
    __tablename__ = "session_registrations"

    id = Column(
        String, primary_key=True, default=lambda: f"sreg_{uuid.uuid4().hex[:12]}"
    )
    session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    registration_id = Column(String, ForeignKey("registrations.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(
        Enum(SessionRegistrationStatus, name="session_registration_status"),
        nullable=False,
        default=SessionRegistrationStatus.PENDING,
        index=True,
    )
    waitlist_position = Column(Integer, nullable=True)

    registered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    waitlisted_at = Column(DateTime(timezone=True), nullable=True)
    promoted_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)

    # Set when a double-booking was auto-resolved against this registration
    needs_reschedule = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    notes = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def append_note(self, note: str) -> None:
        self.notes = f"{self.notes or ''} {note}".strip()
