# scheduling_service/schemas/session.py
from pydantic import BaseModel, Field, model_validator
from typing import Optional
from datetime import datetime

from scheduling_service.models.resource import ResourceType, ResourceBookingStatus
from scheduling_service.models.check_in import CheckInType, CheckInMethod


class Session(BaseModel):
    id: str
    event_id: str
    title: str
    start_time: datetime
    end_time: datetime
    room: Optional[str] = None
    capacity: Optional[int] = None
    is_active: bool = True
    model_config = {"from_attributes": True}


class SessionCreate(BaseModel):
    event_id: str
    title: str = Field(..., json_schema_extra={"example": "The Future of LLM's"})
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    room: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=0)
    is_active: bool = True

    @model_validator(mode="after")
    def check_window(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class SessionUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    room: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class RegistrationCreate(BaseModel):
    event_id: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None


class ResourceCreate(BaseModel):
    name: str
    type: ResourceType = ResourceType.OTHER
    capacity: Optional[int] = Field(None, ge=0)
    location: Optional[str] = None
    is_bookable: bool = True


class SessionResourceCreate(BaseModel):
    session_id: str
    resource_id: str
    quantity_needed: int = Field(1, ge=1)
    quantity_allocated: int = Field(0, ge=0)
    booking_start: Optional[datetime] = None
    booking_end: Optional[datetime] = None
    status: ResourceBookingStatus = ResourceBookingStatus.REQUESTED
    notes: Optional[str] = None


class CheckInCreate(BaseModel):
    registration_id: str
    session_id: Optional[str] = None
    type: CheckInType = CheckInType.SESSION
    method: CheckInMethod = CheckInMethod.MANUAL
    checked_in_by: Optional[str] = None
