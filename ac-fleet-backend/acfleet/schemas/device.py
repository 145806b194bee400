from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

class DeviceResponse(BaseModel):
    id: int
    name: str
    serial_number: str
    venue_id: int
    is_on: bool = False
    temperature: Optional[int] = None
    locked: bool = False
    room_temperature: Optional[float] = None
    last_room_temp_update: Optional[datetime] = None
    last_temperature_change: Optional[datetime] = None
    changed_by: Optional[str] = None
    connected: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class PowerCommand(BaseModel):
    on: bool

class TemperatureCommand(BaseModel):
    temperature: int = Field(..., ge=16, le=30)

class LockCommand(BaseModel):
    locked: bool

class CommandResponse(BaseModel):
    success: bool
    serial_number: str
    delivered: bool
    message: str
