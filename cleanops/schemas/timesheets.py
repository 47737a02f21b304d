import uuid
from datetime import date, datetime
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, Field, StrictInt, field_validator, model_validator

from ..services.time_rules import ensure_utc


PeriodStatus = Literal["OPEN", "SUBMITTED", "APPROVED"]


class PeriodCreate(BaseModel):
    start_date: date
    end_date: date
    status: PeriodStatus = "OPEN"

    @model_validator(mode="after")
    def ordered_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class PeriodUpdate(BaseModel):
    status: PeriodStatus


class PeriodResponse(BaseModel):
    id: uuid.UUID
    start_date: date
    end_date: date
    status: str

    class Config:
        from_attributes = True


class TimesheetEntryResponse(BaseModel):
    id: uuid.UUID
    cleaner_id: uuid.UUID
    job_id: uuid.UUID
    period_id: Optional[uuid.UUID] = None
    clock_in_at: Optional[datetime] = None
    clock_out_at: Optional[datetime] = None
    break_minutes: int = 0
    minutes_worked: Optional[int] = None
    exceptions_json: Optional[Dict[str, Any]] = None

    @field_validator("clock_in_at", "clock_out_at", mode="after")
    @classmethod
    def to_utc(cls, v):
        return ensure_utc(v) if v is not None else None

    class Config:
        from_attributes = True


class SettingUpdate(BaseModel):
    # Whole minutes; floats and booleans are rejected rather than coerced
    value: StrictInt = Field(ge=0)
