import uuid
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator

from ..services.time_rules import ensure_utc


EventSource = Literal["ONLINE", "OFFLINE_SYNCED"]


class _DeviceFix(BaseModel):
    job_id: uuid.UUID
    at: Optional[datetime] = None  # Defaults to server time when omitted
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy_meters: Optional[float] = Field(default=None, ge=0)
    source: EventSource = "ONLINE"


class ClockEventCreate(_DeviceFix):
    type: Literal["CLOCK_IN", "CLOCK_OUT"]


class BreakEventCreate(_DeviceFix):
    type: Literal["BREAK_START", "BREAK_END"]


class ClockEventResponse(BaseModel):
    id: uuid.UUID
    job_id: uuid.UUID
    cleaner_id: uuid.UUID
    type: str
    at: datetime
    lat: float
    lng: float
    accuracy_meters: Optional[float] = None
    is_within_geofence: Optional[bool] = None
    distance_meters: Optional[float] = None
    source: str

    @field_validator("at", mode="after")
    @classmethod
    def to_utc(cls, v):
        return ensure_utc(v)

    class Config:
        from_attributes = True


class BreakEventResponse(BaseModel):
    id: uuid.UUID
    job_id: Optional[uuid.UUID] = None
    cleaner_id: uuid.UUID
    type: str
    at: datetime
    lat: float
    lng: float
    accuracy_meters: Optional[float] = None
    source: str

    @field_validator("at", mode="after")
    @classmethod
    def to_utc(cls, v):
        return ensure_utc(v)

    class Config:
        from_attributes = True
