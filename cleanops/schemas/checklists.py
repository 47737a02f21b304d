import uuid
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from ..services.time_rules import ensure_utc


class TemplateCreate(BaseModel):
    name: str = Field(min_length=2)


class TemplateUpdate(BaseModel):
    name: str = Field(min_length=2)


class TemplateItemCreate(BaseModel):
    template_id: uuid.UUID
    title: str = Field(min_length=2)
    required_photo: bool = False
    sort_order: int = 0


class TemplateItemUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=2)
    required_photo: Optional[bool] = None
    sort_order: Optional[int] = None


class TemplateItemResponse(BaseModel):
    id: uuid.UUID
    template_id: uuid.UUID
    title: str
    required_photo: bool
    sort_order: int

    class Config:
        from_attributes = True


class TemplateResponse(BaseModel):
    id: uuid.UUID
    name: str
    created_by: Optional[uuid.UUID] = None
    items: List[TemplateItemResponse] = []

    class Config:
        from_attributes = True


class AddedItem(BaseModel):
    title: str = Field(min_length=1)
    required_photo: bool = False


class ChecklistOverrides(BaseModel):
    removed_item_ids: List[uuid.UUID] = []
    added_items: List[AddedItem] = []
    notes: Optional[str] = None


class OverrideUpsert(BaseModel):
    site_id: uuid.UUID
    template_id: uuid.UUID
    overrides_json: ChecklistOverrides


class OverrideResponse(BaseModel):
    id: uuid.UUID
    site_id: uuid.UUID
    template_id: uuid.UUID
    overrides_json: Optional[ChecklistOverrides] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class JobTaskUpdate(BaseModel):
    # Send completed_at null to reopen a task
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None


class JobTaskResponse(BaseModel):
    id: uuid.UUID
    job_id: uuid.UUID
    title: str
    required_photo: bool
    sort_order: int
    completed_at: Optional[datetime] = None
    completed_by: Optional[uuid.UUID] = None
    notes: Optional[str] = None

    @field_validator("completed_at", mode="after")
    @classmethod
    def to_utc(cls, v):
        return ensure_utc(v) if v is not None else None

    class Config:
        from_attributes = True
