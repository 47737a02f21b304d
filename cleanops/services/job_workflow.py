"""
Job status workflow.

Wraps the pure state machine with the checks and side effects of a status
change: who may act on the job, the rework note, the timesheet written on
approval and the notification sent on rework. Every check runs before the
first write, and all writes are committed together.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..models.models import BreakEvent, Job, JobClockEvent, TimesheetEntry, User
from .attendance import TimesheetSummary, compute_timesheet_from_events
from .audit import create_audit_log
from .job_status import (
    FORBIDDEN,
    INVALID_TRANSITION,
    JobStatus,
    check_transition,
)
from .notifications import send_job_notification
from .permissions import can_act_on_job, can_review_jobs, get_user_role
from .time_rules import ensure_utc, now_utc
from .timesheets import get_or_create_timesheet_period, upsert_timesheet_entry


logger = structlog.get_logger(__name__)

REWORK_NOTE_REQUIRED = "Rework note required"
REVIEW_ACTIONS = {
    "APPROVE": JobStatus.APPROVED,
    "REWORK": JobStatus.REWORK_REQUIRED,
}


class WorkflowError(Exception):
    """A caller-side precondition failed; nothing was written."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


@dataclass
class TransitionOutcome:
    job: Job
    previous_status: str
    changed: bool
    timesheet_entry: Optional[TimesheetEntry] = None


def load_job_events(db: Session, job_id) -> Tuple[List[JobClockEvent], List[BreakEvent]]:
    clock_events = db.query(JobClockEvent).filter(JobClockEvent.job_id == job_id).all()
    break_events = db.query(BreakEvent).filter(BreakEvent.job_id == job_id).all()
    return clock_events, break_events


def summarize_job(db: Session, job_id) -> TimesheetSummary:
    clock_events, break_events = load_job_events(db, job_id)
    return compute_timesheet_from_events(clock_events, break_events)


def _reject(job: Job, actor: User, requested: str, status_code: int, reason: str):
    logger.warning(
        "transition_rejected",
        job_id=str(job.id),
        from_status=job.status,
        to_status=str(getattr(requested, "value", requested)),
        actor_id=str(actor.id),
        reason=reason,
    )
    raise WorkflowError(status_code, reason)


def _record_timesheet(db: Session, job: Job, actor: User) -> Optional[TimesheetEntry]:
    if not job.assigned_cleaner_id:
        return None
    summary = summarize_job(db, job.id)
    period = get_or_create_timesheet_period(db, job.scheduled_start, created_by=actor.id)
    if period.status == "APPROVED":
        logger.warning("period_frozen", period_id=str(period.id), job_id=str(job.id))
    entry, _ = upsert_timesheet_entry(db, job.assigned_cleaner_id, job.id, period.id, summary)
    return entry


def transition_job(
    db: Session,
    job: Job,
    requested_status,
    actor: User,
    note: Optional[str] = None,
    source: str = "api",
    require_rework_note: bool = False,
) -> TransitionOutcome:
    """
    Move a job to `requested_status` on behalf of `actor`.

    Raises:
        WorkflowError: 403 when the actor may not act on the job or take the
            edge, 400 for an edge not in the transition table or a missing
            rework note
    """
    role = get_user_role(actor)
    if role is None or not can_act_on_job(actor, job):
        _reject(job, actor, requested_status, 403, FORBIDDEN)

    decision = check_transition(job.status, requested_status, role)
    if not decision.allowed:
        status_code = 400 if decision.reason == INVALID_TRANSITION else 403
        _reject(job, actor, requested_status, status_code, decision.reason)

    target = JobStatus(requested_status)
    previous = job.status
    changed = previous != target.value
    note = (note or "").strip() or None

    if target == JobStatus.REWORK_REQUIRED and (changed or require_rework_note) and not note:
        _reject(job, actor, requested_status, 400, REWORK_NOTE_REQUIRED)

    # A repeated APPROVED only refreshes payroll when a reviewer asks for it
    records_timesheet = target == JobStatus.APPROVED and (changed or can_review_jobs(actor))

    now = datetime.utcnow()
    entry = None
    try:
        job.status = target.value
        job.updated_at = now

        if target == JobStatus.REWORK_REQUIRED and note:
            job.rework_note = note
            job.rework_note_by = actor.id
            job.rework_note_at = now
        elif target == JobStatus.APPROVED:
            job.rework_note = None
            job.rework_note_by = None
            job.rework_note_at = None

        if changed:
            create_audit_log(
                db=db,
                entity_type="job",
                entity_id=job.id,
                action="STATUS_CHANGE",
                actor_id=actor.id,
                actor_role=role,
                source=source,
                changes_json={"status": {"before": previous, "after": target.value}},
                context={"note": note} if note else None,
            )

        if records_timesheet:
            entry = _record_timesheet(db, job, actor)

        if target == JobStatus.REWORK_REQUIRED and note and job.assigned_cleaner_id:
            send_job_notification(
                db,
                job.assigned_cleaner_id,
                "rework_required",
                title="Job requires rework",
                body=note,
                job_data={"id": str(job.id), "site_id": str(job.site_id), "status": target.value},
            )

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(job)
    if changed:
        logger.info(
            "job_status_changed",
            job_id=str(job.id),
            from_status=previous,
            to_status=target.value,
            actor_id=str(actor.id),
            actor_role=role,
        )
    return TransitionOutcome(job=job, previous_status=previous, changed=changed, timesheet_entry=entry)


def review_job(
    db: Session,
    job: Job,
    action: str,
    actor: User,
    rework_note: Optional[str] = None,
) -> TransitionOutcome:
    """Supervisor review: APPROVE or REWORK a completed job."""
    if not can_review_jobs(actor):
        _reject(job, actor, action, 403, FORBIDDEN)
    target = REVIEW_ACTIONS.get(str(action).upper())
    if target is None:
        raise WorkflowError(400, "Invalid payload")
    return transition_job(
        db,
        job,
        target,
        actor,
        note=rework_note,
        require_rework_note=target == JobStatus.REWORK_REQUIRED,
    )


def list_overdue_jobs(db: Session, grace_minutes: int, now: Optional[datetime] = None) -> List[Job]:
    """In-progress jobs whose scheduled end passed more than `grace_minutes` ago."""
    cutoff = ensure_utc(now or now_utc()) - timedelta(minutes=grace_minutes)
    jobs = db.query(Job).filter(Job.status == JobStatus.IN_PROGRESS.value).all()
    overdue = [job for job in jobs if ensure_utc(job.scheduled_end) <= cutoff]
    return sorted(overdue, key=lambda job: ensure_utc(job.scheduled_end))
