# scheduling_service/schemas/prerequisite.py
from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from enum import Enum

from scheduling_service.models.session_prerequisite import (
    PrerequisiteType,
    PrerequisiteOperator,
    DependencyType,
)


class PrerequisiteCreate(BaseModel):
    session_id: str
    type: PrerequisiteType
    prerequisite_session_id: Optional[str] = None
    group_id: Optional[str] = None
    operator: PrerequisiteOperator = PrerequisiteOperator.AND
    priority: int = 0
    is_required: bool = True
    error_message: Optional[str] = None
    allow_grace_period: bool = False
    grace_period_hours: int = Field(0, ge=0)
    allow_admin_override: bool = True


class DependencyCreate(BaseModel):
    parent_session_id: str
    dependent_session_id: str
    dependency_type: DependencyType = DependencyType.SEQUENCE
    is_strict: bool = True
    timing_gap_minutes: int = Field(0, ge=0)
    description: Optional[str] = None


class ValidationStatus(str, Enum):
    PASSED = "PASSED"
    PASSED_WITH_WARNINGS = "PASSED_WITH_WARNINGS"
    OVERRIDDEN = "OVERRIDDEN"
    FAILED_OVERRIDABLE = "FAILED_OVERRIDABLE"
    FAILED = "FAILED"


class PrerequisiteCheck(BaseModel):
    prerequisite_id: str
    type: PrerequisiteType
    prerequisite_session_id: Optional[str] = None
    group_id: Optional[str] = None
    priority: int = 0
    is_passed: bool = False
    is_required: bool = True
    in_grace_period: bool = False
    can_be_overridden: bool = False
    message: Optional[str] = None


class PrerequisiteValidation(BaseModel):
    session_id: str
    registration_id: str
    valid: bool = False
    overall_status: ValidationStatus = ValidationStatus.FAILED
    results: List[PrerequisiteCheck] = []
    unmet_prerequisites: List[PrerequisiteCheck] = []
    warnings: List[PrerequisiteCheck] = []
    overridden: List[PrerequisiteCheck] = []
    failure_reasons: List[str] = []
    can_admin_override: bool = False


class SessionPath(BaseModel):
    start_session_id: str
    end_session_id: str
    found: bool = False
    session_ids: List[str] = []
    length: int = 0


class CircularDependency(BaseModel):
    session_ids: List[str]
    session_titles: List[str] = []
    dependency_chain: str = ""


class NodeDegree(BaseModel):
    session_id: str
    fan_in: int = 0
    fan_out: int = 0


class DependencyAnalysis(BaseModel):
    event_id: str
    total_sessions: int = 0
    sessions_with_prerequisites: int = 0
    sessions_with_dependencies: int = 0
    degrees: List[NodeDegree] = []
    root_sessions: List[str] = []
    leaf_sessions: List[str] = []
    isolated_sessions: List[str] = []
    longest_chain: List[str] = []
    longest_chain_length: int = 0
    has_cycles: bool = False
    circular_dependencies: List[CircularDependency] = []
    dependency_map: Dict[str, List[str]] = {}
    prerequisite_map: Dict[str, List[str]] = {}
