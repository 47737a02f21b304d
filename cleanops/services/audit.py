"""
Audit logging service.
Append-only audit log with integrity hashing.
"""
import hashlib
import hmac
import json
from datetime import datetime
from typing import Optional, Dict
from sqlalchemy.orm import Session

from ..models.models import AuditLog
from ..config import settings
from .time_rules import ensure_utc


def compute_integrity_hash(
    entity_type: str,
    entity_id: str,
    action: str,
    timestamp_utc: datetime,
    actor_id: Optional[str] = None,
    actor_role: Optional[str] = None,
    source: Optional[str] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None,
) -> Optional[str]:
    if integrity_secret is None:
        integrity_secret = settings.jwt_secret
    if not integrity_secret:
        return None

    canonical_data = {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "action": action,
        "actor_id": str(actor_id) if actor_id else None,
        "actor_role": actor_role,
        "source": source,
        "timestamp_utc": timestamp_utc.isoformat(),
        "changes": changes_json,
        "context": context,
    }
    # Remove None values and sort keys for consistency
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)

    hash_input = f"{canonical_json}:{integrity_secret}"
    return hashlib.sha256(hash_input.encode()).hexdigest()


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id,
    action: str,
    actor_id=None,
    actor_role: Optional[str] = None,
    source: Optional[str] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None
) -> AuditLog:
    """
    Add an append-only audit log entry to the session.
    The caller commits, so the entry lands in the same transaction as the
    change it records.

    Args:
        db: Database session
        entity_type: Type of entity (job|clock_event|break_event|timesheet_period)
        entity_id: Entity ID
        action: Action performed (CREATE|STATUS_CHANGE|CLOCK_IN|CLOCK_OUT|...)
        actor_id: User ID who performed the action
        actor_role: Role of the actor (HR|SUPERVISOR|CLEANER|system)
        source: Source of the action (api|offline_sync|system)
        changes_json: Before/after diff
        context: Additional context (note, GPS data, geofence result)
        integrity_secret: Secret for integrity hash (defaults to JWT_SECRET)
    """
    timestamp_utc = datetime.utcnow().replace(tzinfo=None)
    source = source or "system"

    integrity_hash = compute_integrity_hash(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        timestamp_utc=timestamp_utc,
        actor_id=actor_id,
        actor_role=actor_role,
        source=source,
        changes_json=changes_json,
        context=context,
        integrity_secret=integrity_secret,
    )

    audit_log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        source=source,
        changes_json=changes_json,
        timestamp_utc=timestamp_utc,
        context=context,
        integrity_hash=integrity_hash,
    )
    db.add(audit_log)
    return audit_log


def get_audit_logs(
    db: Session,
    entity_type: Optional[str] = None,
    entity_id=None,
    limit: int = 100,
    offset: int = 0
) -> list:
    query = db.query(AuditLog)

    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)

    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)

    query = query.order_by(AuditLog.timestamp_utc.asc())
    query = query.limit(limit).offset(offset)

    return query.all()


def verify_audit_log(log: AuditLog, integrity_secret: Optional[str] = None) -> bool:
    """Recompute the hash of a stored entry; False means the row was altered."""
    if not log.integrity_hash:
        return False
    expected = compute_integrity_hash(
        entity_type=log.entity_type,
        entity_id=str(log.entity_id),
        action=log.action,
        timestamp_utc=ensure_utc(log.timestamp_utc).replace(tzinfo=None),
        actor_id=log.actor_id,
        actor_role=log.actor_role,
        source=log.source,
        changes_json=log.changes_json,
        context=log.context,
        integrity_secret=integrity_secret,
    )
    return hmac.compare_digest(expected or "", log.integrity_hash)


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    all_keys = set(before.keys()) | set(after.keys())

    for key in all_keys:
        before_val = before.get(key)
        after_val = after.get(key)

        if before_val != after_val:
            diff[key] = {
                "before": before_val,
                "after": after_val,
            }

    return diff
