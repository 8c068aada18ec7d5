# scheduling_service/models/resource.py
import enum
import uuid
from sqlalchemy import Column, String, DateTime, Boolean, Integer, Enum, ForeignKey, text
from scheduling_service.db.base_class import Base
from scheduling_service.utils.intervals import utcnow


class ResourceType(str, enum.Enum):
    ROOM = "ROOM"
    EQUIPMENT = "EQUIPMENT"
    STAFF = "STAFF"
    VEHICLE = "VEHICLE"
    OTHER = "OTHER"


class ResourceBookingStatus(str, enum.Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    ALLOCATED = "ALLOCATED"
    IN_USE = "IN_USE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    # Lost a double-booking and needs another resource
    CONFLICT = "CONFLICT"


class Resource(Base):
    __tablename__ = "resources"

    id = Column(
        String, primary_key=True, default=lambda: f"res_{uuid.uuid4().hex[:12]}"
    )
    name = Column(String, nullable=False)
    type = Column(
        Enum(ResourceType, name="resource_type"),
        nullable=False,
        default=ResourceType.OTHER,
    )
    capacity = Column(Integer, nullable=True)  # For rooms, vehicles, etc.
    location = Column(String, nullable=True)
    is_bookable = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class SessionResource(Base):
    """
    Binds a Resource to a Session's time window.

    booking_start/booking_end default to the session window when left empty.
    """
    __tablename__ = "session_resources"

    id = Column(
        String, primary_key=True, default=lambda: f"sres_{uuid.uuid4().hex[:12]}"
    )
    session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    resource_id = Column(String, ForeignKey("resources.id", ondelete="CASCADE"), nullable=False, index=True)

    quantity_needed = Column(Integer, nullable=False, default=1)
    quantity_allocated = Column(Integer, nullable=False, default=0)

    booking_start = Column(DateTime, nullable=True)
    booking_end = Column(DateTime, nullable=True)

    status = Column(
        Enum(ResourceBookingStatus, name="resource_booking_status"),
        nullable=False,
        default=ResourceBookingStatus.REQUESTED,
    )
    notes = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
