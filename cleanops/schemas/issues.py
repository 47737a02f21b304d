import uuid
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator

from ..services.time_rules import ensure_utc


IssueCategory = Literal["ACCESS", "SAFETY", "SUPPLIES", "CLIENT_REQUEST", "OTHER"]
IssueSeverity = Literal["LOW", "MEDIUM", "HIGH"]
IssueStatus = Literal["OPEN", "ACKNOWLEDGED", "RESOLVED"]


class IssueCreate(BaseModel):
    job_id: uuid.UUID
    category: IssueCategory
    severity: IssueSeverity
    message: str = Field(min_length=1)

    @field_validator("message")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be blank")
        return v.strip()


class IssueStatusUpdate(BaseModel):
    status: IssueStatus


class IssueResponse(BaseModel):
    id: uuid.UUID
    job_id: uuid.UUID
    created_by: Optional[uuid.UUID] = None
    category: str
    severity: str
    message: str
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def to_utc(cls, v):
        return ensure_utc(v) if v is not None else None

    class Config:
        from_attributes = True
