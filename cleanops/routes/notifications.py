from datetime import datetime
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import Notification, User
from ..auth.security import get_current_user
from ..services.time_rules import ensure_utc


router = APIRouter(prefix="/notifications", tags=["notifications"])


def _notification_to_dict(n: Notification) -> dict:
    return {
        "id": str(n.id),
        "channel": n.channel,
        "template_key": n.template_key,
        "title": n.title,
        "body": n.body,
        "link_url": n.link_url,
        "status": n.status,
        "created_at": ensure_utc(n.created_at).isoformat() if n.created_at else None,
        "read_at": ensure_utc(n.read_at).isoformat() if n.read_at else None,
    }


@router.get("")
def list_notifications(
    unread_only: bool = False,
    limit: int = 50,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    limit = min(max(1, limit), 200)
    query = db.query(Notification).filter(
        Notification.user_id == user.id,
        Notification.channel == "push",
    )
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    rows = query.order_by(Notification.created_at.desc()).limit(limit).all()
    return [_notification_to_dict(n) for n in rows]


@router.post("/{notification_id}/read")
def mark_read(
    notification_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user.id,
    ).first()
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    if notification.read_at is None:
        notification.read_at = datetime.utcnow()
        db.commit()
        db.refresh(notification)
    return _notification_to_dict(notification)
