# scheduling_service/models/session_capacity.py
import enum
from sqlalchemy import (
    Column, String, ForeignKey, DateTime, Integer, Boolean, Float, Enum, CheckConstraint, text,
)
from scheduling_service.db.base_class import Base
from scheduling_service.utils.intervals import utcnow


class CapacityType(str, enum.Enum):
    FIXED = "FIXED"  # Hard cap, never overbooked
    DYNAMIC = "DYNAMIC"  # Adjustable, may overbook when allowed


class SessionCapacity(Base):
    """
    Session Capacity model for admission control.

    Features:
    - Confirmed / waitlisted / pending counters
    - Optional waitlist with its own capacity
    - Overbooking allowance for DYNAMIC sessions
    - Monotonic waitlist position counter for strict FIFO ordering

    Counters are only ever changed by the capacity management service.
    """
    __tablename__ = "session_capacity"

    session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), primary_key=True, index=True)
    capacity_type = Column(
        Enum(CapacityType, name="capacity_type"),
        nullable=False,
        default=CapacityType.FIXED,
    )
    maximum_capacity = Column(Integer, nullable=False, default=100, server_default="100")
    minimum_capacity = Column(Integer, nullable=False, default=0, server_default="0")

    current_registered = Column(Integer, nullable=False, default=0, server_default="0")
    current_waitlisted = Column(Integer, nullable=False, default=0, server_default="0")
    current_pending = Column(Integer, nullable=False, default=0, server_default="0")

    # Waitlist management
    enable_waitlist = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    waitlist_capacity = Column(Integer, nullable=False, default=0, server_default="0")
    # Highest waitlist position ever handed out; positions are never reused
    last_waitlist_position = Column(Integer, nullable=False, default=0, server_default="0")
    auto_promote_from_waitlist = Column(Boolean, nullable=False, default=True, server_default=text("true"))

    # Overbooking (DYNAMIC only)
    allow_overbooking = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    overbooking_percentage = Column(Float, nullable=False, default=0.0, server_default="0")

    # Alert thresholds
    low_capacity_threshold = Column(Integer, nullable=False, default=5, server_default="5")
    high_demand_threshold = Column(Float, nullable=False, default=0.8, server_default="0.8")

    last_capacity_update = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint('maximum_capacity >= 0', name='check_capacity_positive'),
        CheckConstraint('current_registered >= 0', name='check_registered_positive'),
        CheckConstraint('current_waitlisted >= 0', name='check_waitlisted_positive'),
        CheckConstraint('current_waitlisted <= waitlist_capacity', name='check_waitlisted_lte_capacity'),
    )

    @property
    def overbooking_in_effect(self) -> bool:
        return bool(self.allow_overbooking) and self.capacity_type == CapacityType.DYNAMIC

    @property
    def admission_ceiling(self) -> int:
        """Highest confirmed count this session accepts."""
        if not self.overbooking_in_effect:
            return self.maximum_capacity
        extra = int(self.maximum_capacity * (self.overbooking_percentage or 0.0) / 100)
        return self.maximum_capacity + extra

    @property
    def available_slots(self) -> int:
        slots = self.maximum_capacity - self.current_registered
        if self.overbooking_in_effect:
            return slots
        return max(0, slots)

    @property
    def waitlist_slots(self) -> int:
        if not self.enable_waitlist:
            return 0
        return max(0, self.waitlist_capacity - self.current_waitlisted)

    @property
    def utilization(self) -> float:
        if self.maximum_capacity <= 0:
            return 0.0
        return self.current_registered / self.maximum_capacity
