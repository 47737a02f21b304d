from datetime import datetime
from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..models.models import Job, Site, TimesheetEntry, TimesheetPeriod, User
from ..auth.security import get_current_user, require_permissions
from ..schemas.timesheets import (
    PeriodCreate,
    PeriodResponse,
    PeriodUpdate,
    TimesheetEntryResponse,
)
from ..services.app_settings import OVERTIME_THRESHOLD_MINUTES, resolve_int_setting
from ..services.audit import create_audit_log, compute_diff
from ..services.permissions import can_view_timesheet_entry
from ..services.timesheets import (
    build_export_rows,
    exception_names,
    find_overlapping_period,
    list_cleaner_entries,
    list_period_entries,
    render_export_csv,
)


router = APIRouter(prefix="/timesheets", tags=["timesheets"])
logger = structlog.get_logger(__name__)


def _get_period_or_404(db: Session, period_id: uuid.UUID) -> TimesheetPeriod:
    period = db.query(TimesheetPeriod).filter(TimesheetPeriod.id == period_id).first()
    if not period:
        raise HTTPException(status_code=404, detail="Period not found")
    return period


@router.get("/periods", response_model=List[PeriodResponse])
def list_periods(
    db: Session = Depends(get_db),
    _=Depends(require_permissions("operations:manage")),
):
    return db.query(TimesheetPeriod).order_by(TimesheetPeriod.start_date.desc()).all()


@router.post("/periods", response_model=PeriodResponse)
def create_period(
    payload: PeriodCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("timesheets:approve")),
):
    if find_overlapping_period(db, payload.start_date, payload.end_date):
        raise HTTPException(status_code=400, detail="Period overlaps an existing period")
    period = TimesheetPeriod(
        start_date=payload.start_date,
        end_date=payload.end_date,
        status=payload.status,
        created_by=user.id,
    )
    db.add(period)
    db.commit()
    db.refresh(period)
    return period


@router.patch("/periods/{period_id}", response_model=PeriodResponse)
def update_period(
    period_id: uuid.UUID,
    payload: PeriodUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("timesheets:approve")),
):
    period = _get_period_or_404(db, period_id)
    before = {"status": period.status}
    period.status = payload.status
    period.updated_at = datetime.utcnow()
    changes = compute_diff(before, {"status": period.status})
    if changes:
        create_audit_log(
            db=db,
            entity_type="timesheet_period",
            entity_id=period.id,
            action="UPDATE",
            actor_id=user.id,
            actor_role="HR",
            source="api",
            changes_json=changes,
        )
    db.commit()
    db.refresh(period)
    logger.info("timesheet_period_updated", period_id=str(period.id), status=period.status)
    return period


@router.get("/entries")
def list_entries(
    period_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("operations:manage")),
):
    if not period_id:
        raise HTTPException(status_code=400, detail="period_id required")
    entries = list_period_entries(db, period_id)
    users = {u.id: u for u in db.query(User).filter(User.id.in_({e.cleaner_id for e in entries})).all()} if entries else {}
    jobs = {j.id: j for j in db.query(Job).filter(Job.id.in_({e.job_id for e in entries})).all()} if entries else {}
    site_ids = {j.site_id for j in jobs.values()}
    sites = {s.id: s for s in db.query(Site).filter(Site.id.in_(site_ids)).all()} if site_ids else {}

    items = []
    for entry in entries:
        data = TimesheetEntryResponse.model_validate(entry).model_dump(mode="json")
        data["exceptions"] = exception_names(entry.exceptions_json)
        user = users.get(entry.cleaner_id)
        job = jobs.get(entry.job_id)
        site = sites.get(job.site_id) if job else None
        data["profile"] = {"name": user.name, "employee_id": user.employee_id} if user else None
        data["job"] = {
            "site_id": str(job.site_id),
            "site_name": site.name if site else None,
            "scheduled_start": job.scheduled_start.isoformat(),
            "scheduled_end": job.scheduled_end.isoformat(),
        } if job else None
        items.append(data)
    return items


@router.get("/entries/{entry_id}", response_model=TimesheetEntryResponse)
def get_entry(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    entry = db.query(TimesheetEntry).filter(TimesheetEntry.id == entry_id).first()
    if not entry:
        raise HTTPException(status_code=404, detail="Entry not found")
    if not can_view_timesheet_entry(user, entry.cleaner_id):
        raise HTTPException(status_code=403, detail="Forbidden")
    return entry


@router.get("/mine", response_model=List[TimesheetEntryResponse])
def my_entries(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return list_cleaner_entries(db, user.id)


@router.get("/export")
def export_period(
    period_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("timesheets:approve")),
):
    if not period_id:
        raise HTTPException(status_code=400, detail="period_id required")
    period = _get_period_or_404(db, period_id)
    threshold = resolve_int_setting(db, OVERTIME_THRESHOLD_MINUTES)
    rows = build_export_rows(db, period.id, threshold)
    logger.info("timesheet_export", period_id=str(period.id), rows=len(rows), threshold_minutes=threshold)
    return Response(
        content=render_export_csv(rows),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=timesheet-{period.id}.csv"},
    )
