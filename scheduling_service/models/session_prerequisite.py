# scheduling_service/models/session_prerequisite.py
import enum
import uuid
from sqlalchemy import (
    Column, String, ForeignKey, DateTime, Integer, Boolean, Enum, Text,
    CheckConstraint, UniqueConstraint, text,
)
from scheduling_service.db.base_class import Base
from scheduling_service.utils.intervals import utcnow


class PrerequisiteType(str, enum.Enum):
    PREVIOUS_SESSION = "PREVIOUS_SESSION"  # Must hold a registration for another session
    CHECKIN_REQUIRED = "CHECKIN_REQUIRED"  # Must have checked in to another session


class PrerequisiteOperator(str, enum.Enum):
    AND = "AND"
    OR = "OR"


class DependencyType(str, enum.Enum):
    SEQUENCE = "SEQUENCE"  # Parent must be attended first
    PARALLEL = "PARALLEL"  # Should be taken together
    EXCLUSIVE = "EXCLUSIVE"  # Cannot register for both
    PREREQUISITE = "PREREQUISITE"  # Parent registration enables the dependent


class SessionPrerequisite(Base):
    """
    A condition a registrant must meet before joining a session.

    Prerequisites sharing a group_id are combined with the group's operator;
    priority orders evaluation within the group.
    """
    __tablename__ = "session_prerequisites"

    id = Column(
        String, primary_key=True, default=lambda: f"preq_{uuid.uuid4().hex[:12]}"
    )
    session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(
        Enum(PrerequisiteType, name="prerequisite_type"),
        nullable=False,
        default=PrerequisiteType.PREVIOUS_SESSION,
    )
    prerequisite_session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=True, index=True)

    # Logical grouping
    group_id = Column(String, nullable=True)
    operator = Column(
        Enum(PrerequisiteOperator, name="prerequisite_operator"),
        nullable=False,
        default=PrerequisiteOperator.AND,
    )
    priority = Column(Integer, nullable=False, default=0)
    is_required = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    error_message = Column(Text, nullable=True)

    # Grace periods and admin bypass
    allow_grace_period = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    grace_period_hours = Column(Integer, nullable=False, default=0)
    allow_admin_override = Column(Boolean, nullable=False, default=True, server_default=text("true"))

    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class SessionDependency(Base):
    """Directed edge parent -> dependent. All edges of an event must stay acyclic."""
    __tablename__ = "session_dependencies"

    id = Column(
        String, primary_key=True, default=lambda: f"sdep_{uuid.uuid4().hex[:12]}"
    )
    parent_session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    dependent_session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    dependency_type = Column(
        Enum(DependencyType, name="dependency_type"),
        nullable=False,
        default=DependencyType.SEQUENCE,
    )
    is_strict = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    timing_gap_minutes = Column(Integer, nullable=False, default=0)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('parent_session_id', 'dependent_session_id', name='unique_dependency_edge'),
        CheckConstraint('parent_session_id <> dependent_session_id', name='check_no_self_dependency'),
    )
