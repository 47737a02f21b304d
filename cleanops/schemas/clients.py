import uuid
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class ClientBase(BaseModel):
    name: str
    billing_email: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('billing_email', 'notes', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class ClientCreate(ClientBase):
    pass


class ClientResponse(ClientBase):
    id: uuid.UUID

    class Config:
        from_attributes = True


class SiteBase(BaseModel):
    name: str
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = "AU"
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    access_notes: Optional[str] = None
    geofence_radius_meters: Optional[int] = Field(default=None, gt=0)

    @field_validator('address_line1', 'address_line2', 'city', 'state', 'postal_code', 'access_notes', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class SiteCreate(SiteBase):
    client_id: uuid.UUID


class SiteUpdate(BaseModel):
    name: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    access_notes: Optional[str] = None
    geofence_radius_meters: Optional[int] = Field(default=None, gt=0)


class SiteResponse(SiteBase):
    id: uuid.UUID
    client_id: uuid.UUID

    class Config:
        from_attributes = True
