import uuid
from datetime import date, datetime, time
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from ..services.job_status import JobStatus
from ..services.time_rules import ensure_utc


class JobCreate(BaseModel):
    site_id: uuid.UUID
    scheduled_start: datetime
    scheduled_end: datetime
    assigned_cleaner_id: Optional[uuid.UUID] = None
    expected_duration_mins: Optional[int] = Field(default=None, ge=0)
    checklist_template_id: Optional[uuid.UUID] = None
    job_type: Optional[str] = None
    instructions: Optional[str] = None
    status: JobStatus = JobStatus.DRAFT

    @field_validator('scheduled_start', 'scheduled_end', mode='after')
    @classmethod
    def to_utc(cls, v):
        return ensure_utc(v)

    @model_validator(mode="after")
    def end_after_start(self):
        if self.scheduled_end <= self.scheduled_start:
            raise ValueError("scheduled_end must be after scheduled_start")
        if self.status not in (JobStatus.DRAFT, JobStatus.PUBLISHED):
            raise ValueError("new jobs start as DRAFT or PUBLISHED")
        return self


class JobStatusUpdate(BaseModel):
    status: JobStatus
    note: Optional[str] = None


class JobReviewRequest(BaseModel):
    action: Literal["APPROVE", "REWORK"]
    rework_note: Optional[str] = None


class JobResponse(BaseModel):
    id: uuid.UUID
    site_id: uuid.UUID
    scheduled_start: datetime
    scheduled_end: datetime
    assigned_cleaner_id: Optional[uuid.UUID] = None
    expected_duration_mins: Optional[int] = None
    status: JobStatus
    checklist_template_id: Optional[uuid.UUID] = None
    job_type: Optional[str] = None
    instructions: Optional[str] = None
    rework_note: Optional[str] = None
    rework_note_by: Optional[uuid.UUID] = None
    rework_note_at: Optional[datetime] = None

    @field_validator('scheduled_start', 'scheduled_end', 'rework_note_at', mode='after')
    @classmethod
    def to_utc(cls, v):
        return ensure_utc(v) if v is not None else None

    class Config:
        from_attributes = True


class RecurringScheduleCreate(BaseModel):
    """
    Expand a weekly pattern into jobs.
    days_of_week uses 0=Sunday .. 6=Saturday; start_date and start_time are
    local to the business timezone.
    """
    site_id: uuid.UUID
    checklist_template_id: uuid.UUID
    start_date: date
    weeks: int = Field(default=4, ge=1, le=12)
    days_of_week: List[int] = Field(min_length=1)
    start_time: time
    duration_mins: int = Field(ge=15)
    assigned_cleaner_id: Optional[uuid.UUID] = None
    job_type: Optional[str] = None
    instructions: Optional[str] = None
    status: JobStatus = JobStatus.PUBLISHED

    @field_validator('days_of_week')
    @classmethod
    def valid_days(cls, v):
        if any(day < 0 or day > 6 for day in v):
            raise ValueError("days_of_week values must be 0-6")
        return sorted(set(v))

    @model_validator(mode="after")
    def draft_or_published(self):
        if self.status not in (JobStatus.DRAFT, JobStatus.PUBLISHED):
            raise ValueError("scheduled jobs start as DRAFT or PUBLISHED")
        return self


class RecurringScheduleResult(BaseModel):
    count: int
    job_ids: List[uuid.UUID]
