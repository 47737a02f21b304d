"""
Business settings stored in the database, falling back to environment
configuration. Resolved values are passed into the attendance engine
explicitly; the engine never reads them itself.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..models.models import Setting
from ..config import settings


OVERTIME_THRESHOLD_MINUTES = "overtime_threshold_minutes"
CLOCK_GRACE_MINUTES = "clock_grace_minutes"


def defaults() -> Dict[str, Any]:
    return {
        OVERTIME_THRESHOLD_MINUTES: settings.overtime_threshold_minutes,
        CLOCK_GRACE_MINUTES: settings.clock_grace_minutes,
    }


def resolve_setting(db: Session, key: str, default: Any = None) -> Any:
    if default is None:
        default = defaults().get(key)
    row = db.query(Setting).filter(Setting.key == key).first()
    if not row or not isinstance(row.value, dict) or row.value.get("value") is None:
        return default
    return row.value["value"]


def resolve_int_setting(db: Session, key: str, default: Optional[int] = None) -> int:
    value = resolve_setting(db, key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(defaults()[key] if default is None else default)


def put_setting(db: Session, key: str, value: Any, updated_by=None) -> Setting:
    row = db.query(Setting).filter(Setting.key == key).first()
    if row is None:
        row = Setting(key=key)
        db.add(row)
    row.value = {"value": value}
    row.updated_by = updated_by
    row.updated_at = datetime.utcnow()
    return row
