# scheduling_service/schemas/capacity.py
from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime
from enum import Enum

from scheduling_service.models.session_capacity import CapacityType
from scheduling_service.models.session_registration import SessionRegistrationStatus


class SessionCapacityCreate(BaseModel):
    capacity_type: CapacityType = CapacityType.FIXED
    maximum_capacity: int = Field(..., ge=0)
    minimum_capacity: int = Field(0, ge=0)
    enable_waitlist: bool = True
    waitlist_capacity: int = Field(0, ge=0)
    allow_overbooking: bool = False
    overbooking_percentage: float = Field(0.0, ge=0.0)
    auto_promote_from_waitlist: bool = True
    low_capacity_threshold: int = Field(5, ge=0)
    high_demand_threshold: float = Field(0.8, ge=0.0, le=1.0)


class SessionCapacityUpdate(BaseModel):
    capacity_type: Optional[CapacityType] = None
    maximum_capacity: Optional[int] = Field(None, ge=0)
    minimum_capacity: Optional[int] = Field(None, ge=0)
    enable_waitlist: Optional[bool] = None
    waitlist_capacity: Optional[int] = Field(None, ge=0)
    allow_overbooking: Optional[bool] = None
    overbooking_percentage: Optional[float] = Field(None, ge=0.0)
    auto_promote_from_waitlist: Optional[bool] = None
    low_capacity_threshold: Optional[int] = Field(None, ge=0)
    high_demand_threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    reason: Optional[str] = None


class SessionCapacity(BaseModel):
    session_id: str
    capacity_type: CapacityType
    maximum_capacity: int
    minimum_capacity: int
    current_registered: int
    current_waitlisted: int
    current_pending: int
    enable_waitlist: bool
    waitlist_capacity: int
    allow_overbooking: bool
    overbooking_percentage: float
    auto_promote_from_waitlist: bool
    available_slots: int
    waitlist_slots: int
    last_capacity_update: Optional[datetime] = None
    model_config = {"from_attributes": True}


class CapacityAvailability(BaseModel):
    session_id: str
    available: bool
    available_slots: int
    waitlist_slots: int
    maximum_capacity: int
    current_registered: int
    current_waitlisted: int
    waitlist_enabled: bool
    is_low_capacity: bool = False
    is_high_demand: bool = False


class SessionRegistration(BaseModel):
    id: str
    session_id: str
    registration_id: str
    status: SessionRegistrationStatus
    waitlist_position: Optional[int] = None
    registered_at: datetime
    waitlisted_at: Optional[datetime] = None
    promoted_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    needs_reschedule: bool = False
    model_config = {"from_attributes": True}


class OptimizationType(str, Enum):
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"
    REVIEW = "REVIEW"


class SuggestionPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class CapacityOptimizationSuggestion(BaseModel):
    session_id: str
    session_title: str
    current_capacity: int
    current_registrations: int
    current_waitlisted: int
    suggested_capacity: int
    optimization_type: OptimizationType
    reason: str
    potential_impact: str
    priority: SuggestionPriority


class CapacityAnalytics(BaseModel):
    event_id: str
    total_sessions: int = 0
    configured_sessions: int = 0
    average_utilization: float = 0.0
    full_sessions_count: int = 0
    under_capacity_sessions_count: int = 0
    overbooked_sessions_count: int = 0
    total_registered: int = 0
    total_waitlisted: int = 0
    waitlist_by_session: Dict[str, int] = {}
    session_capacities: List[SessionCapacity] = []
