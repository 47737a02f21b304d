from datetime import datetime
from typing import Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..models.models import User, Role
from ..schemas.auth import LoginRequest, TokenResponse, MeResponse, UserCreate, UserUpdate
from ..services.permissions import get_user_role
from .security import (
    get_password_hash,
    verify_password,
    create_access_token,
    get_current_user,
    require_permissions,
)


router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger(__name__)


def ensure_role(db: Session, name: str) -> Role:
    role = db.query(Role).filter(Role.name == name).first()
    if role is None:
        role = Role(name=name)
        db.add(role)
        db.flush()
    return role


def _user_to_dict(u: User) -> dict:
    return {
        "id": str(u.id),
        "email": u.email,
        "name": u.name,
        "role": get_user_role(u),
        "roles": sorted(r.name for r in u.roles),
        "phone": u.phone,
        "employee_id": u.employee_id,
        "is_active": u.is_active,
    }


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user: Optional[User] = db.query(User).filter(User.email == req.email.lower()).first()
    if not user or not user.is_active or not verify_password(req.password, user.password_hash):
        logger.info("login_failed", email=req.email)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_access_token(str(user.id), roles=[r.name for r in user.roles])
    return TokenResponse(access_token=token)


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    data = _user_to_dict(user)
    return MeResponse(**{k: data[k] for k in ("id", "email", "name", "role", "roles", "employee_id")})


@router.get("/users")
def list_users(
    role: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("operations:manage")),
):
    query = db.query(User)
    if role:
        query = query.join(User.roles).filter(Role.name == role.upper())
    return [_user_to_dict(u) for u in query.order_by(User.name.asc()).all()]


@router.post("/users")
def provision_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("users:admin")),
):
    email = payload.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=400, detail="Email already registered")
    user = User(
        email=email,
        name=payload.name.strip(),
        password_hash=get_password_hash(payload.password),
        phone=payload.phone,
        employee_id=payload.employee_id,
    )
    user.roles.append(ensure_role(db, payload.role))
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("user_provisioned", user_id=str(user.id), role=payload.role, actor_id=str(actor.id))
    return _user_to_dict(user)


@router.patch("/users/{user_id}")
def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("users:admin")),
):
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    data = payload.model_dump(exclude_unset=True)
    role = data.pop("role", None)
    for key, value in data.items():
        setattr(user, key, value)
    if role:
        user.roles = [ensure_role(db, role)]
    user.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(user)
    return _user_to_dict(user)
