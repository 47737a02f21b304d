"""
Job scheduling: one-off jobs and weekly recurring patterns.

New jobs get a copy of their checklist as job tasks, and the assigned cleaner
is told about published jobs. Each call commits once.
"""
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..models.models import ChecklistTemplate, Job, Site, User
from .audit import create_audit_log
from .checklists import copy_checklist_to_job, effective_checklist
from .job_status import JobStatus
from .job_workflow import WorkflowError
from .notifications import send_job_notification
from .permissions import get_user_role
from .time_rules import combine_local


logger = structlog.get_logger(__name__)


def sunday_first_weekday(day: date) -> int:
    """0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


def expand_occurrences(
    start_date: date,
    weeks: int,
    days_of_week: Iterable[int],
    start_time: time,
    duration_mins: int,
    timezone_str: Optional[str] = None,
) -> List[Tuple[datetime, datetime]]:
    """
    (start, end) UTC pairs for every selected weekday in the `weeks * 7` days
    from `start_date`. The wall-clock start is kept across DST changes; the
    duration is elapsed time.
    """
    wanted = set(days_of_week)
    occurrences = []
    for offset in range(weeks * 7):
        day = start_date + timedelta(days=offset)
        if sunday_first_weekday(day) not in wanted:
            continue
        start = combine_local(day, start_time, timezone_str)
        occurrences.append((start, start + timedelta(minutes=duration_mins)))
    return occurrences


def _check_references(db: Session, site_id, cleaner_id=None, template_id=None) -> Site:
    site = db.query(Site).filter(Site.id == site_id).first()
    if not site:
        raise WorkflowError(404, "Site not found")
    if cleaner_id:
        cleaner = db.query(User).filter(User.id == cleaner_id).first()
        if not cleaner or not cleaner.is_active:
            raise WorkflowError(404, "Cleaner not found")
    if template_id and not db.query(ChecklistTemplate).filter(ChecklistTemplate.id == template_id).first():
        raise WorkflowError(404, "Checklist template not found")
    return site


def _add_job(db: Session, actor: User, source_context: Optional[dict] = None, **fields) -> Job:
    job = Job(created_by=actor.id, **fields)
    db.add(job)
    db.flush()
    create_audit_log(
        db=db,
        entity_type="job",
        entity_id=job.id,
        action="CREATE",
        actor_id=actor.id,
        actor_role=get_user_role(actor),
        source="api",
        changes_json={"after": {"status": job.status, "site_id": str(job.site_id)}},
        context=source_context,
    )
    if job.checklist_template_id:
        copy_checklist_to_job(db, job, job.checklist_template_id)
    if job.assigned_cleaner_id and job.status == JobStatus.PUBLISHED.value:
        send_job_notification(
            db,
            job.assigned_cleaner_id,
            "assigned",
            title="New job assigned",
            body="A new job was added to your schedule.",
            job_data={"id": str(job.id), "site_id": str(job.site_id), "status": job.status},
        )
    return job


def schedule_job(db: Session, payload, actor: User) -> Job:
    """Create a single job from a JobCreate payload."""
    _check_references(db, payload.site_id, payload.assigned_cleaner_id, payload.checklist_template_id)
    try:
        job = _add_job(
            db,
            actor,
            site_id=payload.site_id,
            scheduled_start=payload.scheduled_start,
            scheduled_end=payload.scheduled_end,
            assigned_cleaner_id=payload.assigned_cleaner_id,
            checklist_template_id=payload.checklist_template_id,
            expected_duration_mins=payload.expected_duration_mins,
            job_type=payload.job_type,
            instructions=payload.instructions,
            status=payload.status.value,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(job)
    return job


def schedule_recurring_jobs(db: Session, payload, actor: User) -> List[Job]:
    """
    Create one job per occurrence of a RecurringScheduleCreate pattern.

    Raises:
        WorkflowError: 404 for an unknown site, cleaner or template, 400 when
            the pattern yields no jobs or the checklist has no items
    """
    _check_references(db, payload.site_id, payload.assigned_cleaner_id, payload.checklist_template_id)

    occurrences = expand_occurrences(
        payload.start_date,
        payload.weeks,
        payload.days_of_week,
        payload.start_time,
        payload.duration_mins,
    )
    if not occurrences:
        raise WorkflowError(400, "No occurrences generated")
    if not effective_checklist(db, payload.checklist_template_id, payload.site_id):
        raise WorkflowError(400, "Missing template items")

    jobs = []
    try:
        for start, end in occurrences:
            jobs.append(_add_job(
                db,
                actor,
                source_context={"recurring": True},
                site_id=payload.site_id,
                scheduled_start=start,
                scheduled_end=end,
                assigned_cleaner_id=payload.assigned_cleaner_id,
                checklist_template_id=payload.checklist_template_id,
                expected_duration_mins=payload.duration_mins,
                job_type=payload.job_type,
                instructions=payload.instructions,
                status=payload.status.value,
            ))
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "recurring_jobs_scheduled",
        site_id=str(payload.site_id),
        count=len(jobs),
        first_start=occurrences[0][0].isoformat(),
        actor_id=str(actor.id),
    )
    return jobs
