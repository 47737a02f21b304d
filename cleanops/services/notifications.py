"""
Notification service for push and email.
Records are queued here; delivery is handled by the channel workers.
"""
from typing import Optional, Dict, List
from sqlalchemy.orm import Session

from ..models.models import Notification
from ..config import settings


CHANNELS = ("push", "email")


def is_channel_enabled(channel: str) -> bool:
    if channel == "push":
        return settings.enable_push
    if channel == "email":
        return settings.enable_email
    return False


def create_notification(
    db: Session,
    user_id,
    channel: str,
    title: str,
    body: Optional[str] = None,
    link_url: Optional[str] = None,
    template_key: Optional[str] = None,
    payload_json: Optional[Dict] = None,
) -> Optional[Notification]:
    """
    Queue a notification record.
    Returns None when the channel is switched off globally.
    """
    if not is_channel_enabled(channel):
        return None

    notification = Notification(
        user_id=user_id,
        channel=channel,
        template_key=template_key,
        title=title,
        body=body,
        link_url=link_url,
        payload_json=payload_json,
        status="pending",
    )
    db.add(notification)
    return notification


def send_job_notification(
    db: Session,
    user_id,
    notification_type: str,  # "rework_required"|"assigned"|"approved"
    title: str,
    body: Optional[str],
    job_data: Dict,
) -> List[Notification]:
    """
    Queue a job notification on every enabled channel.

    Args:
        db: Database session
        user_id: User ID to notify
        notification_type: Type of notification
        title: Short title shown to the user
        body: Message body
        job_data: Job data for the notification payload
    """
    template_key = f"job_{notification_type}"
    payload = {
        "type": notification_type,
        "job": job_data,
    }
    link_url = f"/app/cleaner/jobs/{job_data.get('id')}" if job_data.get("id") else None

    created = []
    for channel in CHANNELS:
        notification = create_notification(db, user_id, channel, title, body, link_url, template_key, payload)
        if notification is not None:
            created.append(notification)
    return created
