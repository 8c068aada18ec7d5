# scheduling_service/schemas/conflict.py
from pydantic import BaseModel, Field
from typing import Optional, Dict
from datetime import datetime

from scheduling_service.models.schedule_conflict import (
    ConflictType,
    ConflictSeverity,
    ConflictResolutionStatus,
)


class ScheduleConflict(BaseModel):
    id: str
    event_id: str
    type: ConflictType
    severity: ConflictSeverity
    title: str
    description: str
    primary_session_id: str
    secondary_session_id: Optional[str] = None
    resource_id: Optional[str] = None
    registration_id: Optional[str] = None
    conflict_start: Optional[datetime] = None
    conflict_end: Optional[datetime] = None
    affected_count: int = 0
    resolution_status: ConflictResolutionStatus
    resolved: bool
    resolution_notes: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    can_auto_resolve: bool = False
    auto_resolution_strategy: Optional[str] = None
    detected_at: datetime
    last_checked_at: datetime
    model_config = {"from_attributes": True}


class ConflictResolutionCreate(BaseModel):
    resolution_type: str = Field(..., json_schema_extra={"example": "TIME_CHANGE"})
    description: str
    implemented_by: str
    changes_summary: Optional[str] = None
    affected_sessions: int = Field(0, ge=0)
    affected_registrations: int = Field(0, ge=0)
    affected_resources: int = Field(0, ge=0)
    notes: Optional[str] = None


class ConflictSummary(BaseModel):
    event_id: str
    total_conflicts: int = 0
    unresolved_conflicts: int = 0
    critical_conflicts: int = 0
    auto_resolvable_conflicts: int = 0
    conflicts_by_type: Dict[ConflictType, int] = {}
    conflicts_by_severity: Dict[ConflictSeverity, int] = {}
    oldest_unresolved_conflict: Optional[datetime] = None
    average_resolution_time_hours: float = 0.0
