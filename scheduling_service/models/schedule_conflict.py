# scheduling_service/models/schedule_conflict.py
"""
ScheduleConflict and ConflictResolution models.

A conflict is created by the conflict detection service and only ever
changed afterwards by the conflict resolution service. `conflict_key`
identifies the same inconsistency across repeated detection runs. At most
one open (not RESOLVED or AUTO_RESOLVED) row exists per key, so
re-detecting an open conflict never inserts a second row, while a conflict
that comes back after being resolved gets a fresh row.
"""

import enum
import uuid
from typing import Optional
from sqlalchemy import (
    Column, String, ForeignKey, DateTime, Integer, Boolean, Enum, Index, Text, text,
)
from scheduling_service.db.base_class import Base
from scheduling_service.utils.intervals import utcnow


class ConflictType(str, enum.Enum):
    TIME_OVERLAP = "TIME_OVERLAP"  # Sessions overlap in time
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"  # Same resource double-booked
    CAPACITY_CONFLICT = "CAPACITY_CONFLICT"  # Session over capacity
    USER_CONFLICT = "USER_CONFLICT"  # Registrant booked into overlapping sessions


class ConflictSeverity(str, enum.Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ConflictResolutionStatus(str, enum.Enum):
    UNRESOLVED = "UNRESOLVED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"
    AUTO_RESOLVED = "AUTO_RESOLVED"
    IGNORED = "IGNORED"


RESOLVED_STATUSES = (ConflictResolutionStatus.RESOLVED, ConflictResolutionStatus.AUTO_RESOLVED)

_OPEN_CONFLICT = text("resolution_status NOT IN ('RESOLVED', 'AUTO_RESOLVED')")


def build_conflict_key(
    conflict_type: ConflictType,
    primary_session_id: str,
    secondary_session_id: Optional[str] = None,
    discriminator: Optional[str] = None,
) -> str:
    """Key on the unordered session pair so (A, B) and (B, A) collide."""
    sessions = sorted(s for s in (primary_session_id, secondary_session_id) if s)
    parts = [conflict_type.value, *sessions]
    if discriminator:
        parts.append(discriminator)
    return ":".join(parts)


class ScheduleConflict(Base):
    __tablename__ = "schedule_conflicts"
    __table_args__ = (
        Index(
            "uq_schedule_conflicts_open_key",
            "conflict_key",
            unique=True,
            sqlite_where=_OPEN_CONFLICT,
            postgresql_where=_OPEN_CONFLICT,
        ),
    )

    id = Column(
        String, primary_key=True, default=lambda: f"conf_{uuid.uuid4().hex[:12]}"
    )
    event_id = Column(String, nullable=False, index=True)
    type = Column(Enum(ConflictType, name="conflict_type"), nullable=False, index=True)
    severity = Column(
        Enum(ConflictSeverity, name="conflict_severity"),
        nullable=False,
        default=ConflictSeverity.WARNING,
    )
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)

    # Related records (plain ids, no relationship graph)
    primary_session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    secondary_session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=True, index=True)
    resource_id = Column(String, ForeignKey("resources.id", ondelete="SET NULL"), nullable=True)
    registration_id = Column(String, ForeignKey("registrations.id", ondelete="SET NULL"), nullable=True)

    conflict_key = Column(String, nullable=False, index=True)

    # Conflict details
    conflict_start = Column(DateTime, nullable=True)
    conflict_end = Column(DateTime, nullable=True)
    affected_count = Column(Integer, nullable=False, default=0)

    # Resolution
    resolution_status = Column(
        Enum(ConflictResolutionStatus, name="conflict_resolution_status"),
        nullable=False,
        default=ConflictResolutionStatus.UNRESOLVED,
        index=True,
    )
    resolution_notes = Column(Text, nullable=True)
    resolved_by = Column(String, nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    # Auto-resolution
    can_auto_resolve = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    auto_resolution_strategy = Column(String, nullable=True)

    # Tracking
    detected_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_checked_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))

    @property
    def resolved(self) -> bool:
        return self.resolution_status in RESOLVED_STATUSES


class ConflictResolution(Base):
    """Records how and by whom a ScheduleConflict was closed."""
    __tablename__ = "conflict_resolutions"

    id = Column(
        String, primary_key=True, default=lambda: f"cres_{uuid.uuid4().hex[:12]}"
    )
    conflict_id = Column(String, ForeignKey("schedule_conflicts.id", ondelete="CASCADE"), nullable=False, index=True)
    resolution_type = Column(String, nullable=False)  # e.g. TIME_CHANGE, RESOURCE_SWAP, AUTO_CAPACITY_ADJUSTMENT
    description = Column(Text, nullable=False)
    changes_summary = Column(Text, nullable=True)

    implemented_by = Column(String, nullable=False)
    implemented_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    affected_sessions = Column(Integer, nullable=False, default=0)
    affected_registrations = Column(Integer, nullable=False, default=0)
    affected_resources = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)
