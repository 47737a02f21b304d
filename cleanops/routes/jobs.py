"""
Job scheduling and lifecycle routes.
Status changes go through the job workflow; this module only translates
HTTP to workflow calls and workflow rejections to HTTP errors.
"""
from datetime import date, time, timedelta
from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import Job, User
from ..auth.security import get_current_user, require_permissions
from ..schemas.jobs import JobCreate, JobResponse, JobReviewRequest, JobStatusUpdate
from ..services.app_settings import CLOCK_GRACE_MINUTES, resolve_int_setting
from ..services.audit import get_audit_logs, verify_audit_log
from ..services.job_workflow import (
    WorkflowError,
    list_overdue_jobs,
    review_job,
    summarize_job,
    transition_job,
)
from ..services.permissions import can_act_on_job, is_cleaner
from ..services.scheduling import schedule_job
from ..services.time_rules import combine_local, ensure_utc


router = APIRouter(prefix="/jobs", tags=["jobs"])


def _get_job_or_404(db: Session, job_id: uuid.UUID) -> Job:
    job = db.query(Job).filter(Job.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


def workflow_call(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post("", response_model=JobResponse)
def create_job(
    payload: JobCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("operations:manage")),
):
    return workflow_call(schedule_job, db, payload, user)


@router.get("", response_model=List[JobResponse])
def list_jobs(
    day: Optional[date] = None,
    status: Optional[str] = None,
    cleaner_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    List jobs, optionally for one local calendar day.
    Cleaners only ever see their own assignments.
    """
    query = db.query(Job)
    if is_cleaner(user):
        query = query.filter(Job.assigned_cleaner_id == user.id)
    elif cleaner_id:
        query = query.filter(Job.assigned_cleaner_id == cleaner_id)
    if status:
        query = query.filter(Job.status == status.upper())
    if day:
        start = combine_local(day, time.min)
        end = start + timedelta(days=1)
        jobs = [j for j in query.all() if start <= ensure_utc(j.scheduled_start) < end]
    else:
        jobs = query.all()
    return sorted(jobs, key=lambda j: ensure_utc(j.scheduled_start))


@router.get("/overdue", response_model=List[JobResponse])
def overdue_jobs(
    db: Session = Depends(get_db),
    _=Depends(require_permissions("operations:manage")),
):
    grace = resolve_int_setting(db, CLOCK_GRACE_MINUTES)
    return list_overdue_jobs(db, grace)


@router.get("/{job_id}", response_model=JobResponse)
def get_job(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    job = _get_job_or_404(db, job_id)
    if not can_act_on_job(user, job):
        raise HTTPException(status_code=403, detail="Forbidden")
    return job


@router.patch("/{job_id}/status", response_model=JobResponse)
def update_job_status(
    job_id: uuid.UUID,
    payload: JobStatusUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    job = _get_job_or_404(db, job_id)
    outcome = workflow_call(transition_job, db, job, payload.status, user, note=payload.note)
    return outcome.job


@router.post("/{job_id}/review", response_model=JobResponse)
def review(
    job_id: uuid.UUID,
    payload: JobReviewRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("jobs:review")),
):
    job = _get_job_or_404(db, job_id)
    outcome = workflow_call(review_job, db, job, payload.action, user, rework_note=payload.rework_note)
    return outcome.job


@router.get("/{job_id}/history")
def job_history(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("operations:manage")),
):
    _get_job_or_404(db, job_id)
    logs = get_audit_logs(db, entity_type="job", entity_id=job_id)
    return [
        {
            "id": str(log.id),
            "action": log.action,
            "actor_id": str(log.actor_id) if log.actor_id else None,
            "actor_role": log.actor_role,
            "changes_json": log.changes_json,
            "context": log.context,
            "timestamp_utc": ensure_utc(log.timestamp_utc).isoformat() if log.timestamp_utc else None,
            "integrity_hash": log.integrity_hash,
            "integrity_ok": verify_audit_log(log),
        }
        for log in logs
    ]


@router.get("/{job_id}/timesheet-preview")
def timesheet_preview(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Summary the job would produce if it were approved now."""
    job = _get_job_or_404(db, job_id)
    if not can_act_on_job(user, job):
        raise HTTPException(status_code=403, detail="Forbidden")
    summary = summarize_job(db, job.id)
    data = summary.as_dict()
    data["job_id"] = str(job.id)
    data["requires_review"] = summary.requires_review
    return data
