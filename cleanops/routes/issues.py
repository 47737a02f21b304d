"""
Issue reports raised from jobs.
Anyone who can act on a job may report; supervisory roles triage.
"""
from datetime import datetime
from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..models.models import Issue, Job, User
from ..auth.security import get_current_user, require_permissions
from ..schemas.issues import IssueCreate, IssueResponse, IssueStatusUpdate
from ..services.notifications import create_notification
from ..services.permissions import can_act_on_job, is_cleaner


router = APIRouter(prefix="/issues", tags=["issues"])
logger = structlog.get_logger(__name__)


@router.post("", response_model=IssueResponse)
def report_issue(
    payload: IssueCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    job = db.query(Job).filter(Job.id == payload.job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    if not can_act_on_job(user, job):
        raise HTTPException(status_code=403, detail="Forbidden")

    issue = Issue(
        job_id=job.id,
        created_by=user.id,
        category=payload.category,
        severity=payload.severity,
        message=payload.message,
        status="OPEN",
        updated_at=datetime.utcnow(),
    )
    db.add(issue)
    db.commit()
    db.refresh(issue)

    log = logger.warning if issue.severity == "HIGH" else logger.info
    log("issue_reported", issue_id=str(issue.id), job_id=str(job.id), category=issue.category, severity=issue.severity)
    return issue


@router.get("", response_model=List[IssueResponse])
def list_issues(
    status: Optional[str] = None,
    job_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Newest first. Cleaners only see issues they reported."""
    query = db.query(Issue)
    if is_cleaner(user):
        query = query.filter(Issue.created_by == user.id)
    if status:
        query = query.filter(Issue.status == status.upper())
    if job_id:
        query = query.filter(Issue.job_id == job_id)
    return query.order_by(Issue.created_at.desc()).all()


@router.patch("/{issue_id}", response_model=IssueResponse)
def update_issue_status(
    issue_id: uuid.UUID,
    payload: IssueStatusUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("operations:manage")),
):
    issue = db.query(Issue).filter(Issue.id == issue_id).first()
    if not issue:
        raise HTTPException(status_code=404, detail="Issue not found")
    previous = issue.status
    issue.status = payload.status
    issue.updated_at = datetime.utcnow()
    if previous != issue.status and issue.created_by and issue.created_by != user.id:
        create_notification(
            db,
            issue.created_by,
            "push",
            title=f"Issue {issue.status.lower()}",
            body=issue.message,
            link_url="/app/cleaner/issues",
            template_key="issue_update",
            payload_json={"issue_id": str(issue.id), "job_id": str(issue.job_id), "status": issue.status},
        )
    db.commit()
    db.refresh(issue)
    logger.info("issue_status_changed", issue_id=str(issue.id), from_status=previous, to_status=issue.status)
    return issue
