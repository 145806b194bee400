from pydantic import BaseModel, field_validator
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Any


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # timestamps without a designator are UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EventCreate(BaseModel):
    name: Optional[str] = None
    device_id: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    temperature: Optional[int] = None

    is_recurring: bool = False
    recurring_type: Optional[str] = None
    days_of_week: Optional[List[int]] = None
    recurring_start_date: Optional[date] = None
    recurring_end_date: Optional[date] = None
    time_start: Optional[str] = None
    time_end: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def utc_instants(cls, value):
        return _as_utc(value)


class EventUpdate(BaseModel):
    name: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    temperature: Optional[int] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def utc_instants(cls, value):
        return _as_utc(value)


class EventResponse(BaseModel):
    id: int
    name: str
    event_type: str
    created_by_role: str
    tenant_id: int
    sub_tenant_id: Optional[int] = None
    device_id: int
    start_time: datetime
    end_time: datetime
    original_end_time: Optional[datetime] = None
    temperature: int
    power_on: bool
    status: str
    is_disabled: bool
    disabled_at: Optional[datetime] = None
    total_disabled_duration: int = 0
    is_recurring: bool
    recurring_type: Optional[str] = None
    days_of_week: Optional[List[int]] = None
    recurring_start_date: Optional[date] = None
    recurring_end_date: Optional[date] = None
    time_start: Optional[str] = None
    time_end: Optional[str] = None
    parent_recurring_event_id: Optional[int] = None
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OperationResponse(BaseModel):
    success: bool
    message: str
    event: Optional[EventResponse] = None
    data: Dict[str, Any] = {}
    warnings: List[str] = []
