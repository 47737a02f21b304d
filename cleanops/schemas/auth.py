from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List


ROLE_NAMES = ("HR", "SUPERVISOR", "CLEANER")


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MeResponse(BaseModel):
    id: str
    email: EmailStr
    name: str
    role: Optional[str] = None
    roles: List[str] = []
    employee_id: Optional[str] = None


class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1)
    password: str = Field(min_length=8)
    role: str
    phone: Optional[str] = None
    employee_id: Optional[str] = None

    @field_validator("role", mode="before")
    @classmethod
    def known_role(cls, v):
        v = str(v or "").strip().upper()
        if v not in ROLE_NAMES:
            raise ValueError(f"role must be one of {', '.join(ROLE_NAMES)}")
        return v


class UserUpdate(BaseModel):
    name: Optional[str] = None
    role: Optional[str] = None
    phone: Optional[str] = None
    employee_id: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("role", mode="before")
    @classmethod
    def known_role(cls, v):
        if v is None:
            return None
        v = str(v).strip().upper()
        if v not in ROLE_NAMES:
            raise ValueError(f"role must be one of {', '.join(ROLE_NAMES)}")
        return v
