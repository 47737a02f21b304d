from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import User
from ..auth.security import require_roles
from ..schemas.timesheets import SettingUpdate
from ..services.app_settings import defaults, put_setting, resolve_setting


router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("")
def list_settings(
    db: Session = Depends(get_db),
    _=Depends(require_roles("HR", "SUPERVISOR")),
):
    return {key: resolve_setting(db, key, default) for key, default in defaults().items()}


@router.get("/{key}")
def get_setting(
    key: str,
    db: Session = Depends(get_db),
    _=Depends(require_roles("HR", "SUPERVISOR")),
):
    if key not in defaults():
        raise HTTPException(status_code=404, detail="Unknown setting")
    return {"key": key, "value": resolve_setting(db, key)}


@router.put("/{key}")
def update_setting(
    key: str,
    payload: SettingUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("HR")),
):
    if key not in defaults():
        raise HTTPException(status_code=404, detail="Unknown setting")
    put_setting(db, key, payload.value, updated_by=user.id)
    db.commit()
    return {"key": key, "value": payload.value}
