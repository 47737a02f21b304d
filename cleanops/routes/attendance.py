"""
Clock and break event routes.
Handles geofence annotation at write time; events are never edited afterwards.
"""
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..models.models import BreakEvent, Job, JobClockEvent, Site, User
from ..auth.security import get_current_user
from ..config import settings
from ..schemas.attendance import (
    BreakEventCreate,
    BreakEventResponse,
    ClockEventCreate,
    ClockEventResponse,
)
from ..services.audit import create_audit_log
from ..services.geofence import evaluate_geofence
from ..services.job_status import JobStatus
from ..services.job_workflow import load_job_events
from ..services.permissions import can_act_on_job, get_user_role
from ..services.time_rules import ensure_utc, now_utc


router = APIRouter(tags=["attendance"])
logger = structlog.get_logger(__name__)

JOB_CLOSED = "Job is closed to new events"


def _get_actionable_job(db: Session, job_id: uuid.UUID, user: User) -> Job:
    job = db.query(Job).filter(Job.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    if not can_act_on_job(user, job):
        raise HTTPException(status_code=403, detail="Forbidden")
    return job


def _check_job_open(job: Job, payload) -> None:
    """
    Cancelled jobs take no events. Approved jobs only take replays of events
    queued offline before approval; those change payroll once a reviewer
    approves the job again.
    """
    if job.status == JobStatus.CANCELLED.value:
        raise HTTPException(status_code=400, detail=JOB_CLOSED)
    if job.status == JobStatus.APPROVED.value:
        if payload.source != "OFFLINE_SYNCED":
            raise HTTPException(status_code=400, detail=JOB_CLOSED)
        logger.warning("event_synced_after_approval", job_id=str(job.id), event_type=payload.type)


def _gps_context(payload) -> dict:
    return {
        "gps_lat": payload.lat,
        "gps_lng": payload.lng,
        "gps_accuracy_m": payload.accuracy_meters,
    }


@router.post("/clock-events", response_model=ClockEventResponse)
def create_clock_event(
    payload: ClockEventCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    job = _get_actionable_job(db, payload.job_id, user)
    _check_job_open(job, payload)
    site = db.query(Site).filter(Site.id == job.site_id).first()

    fence = evaluate_geofence(
        payload.lat,
        payload.lng,
        site.lat if site else None,
        site.lng if site else None,
        (site.geofence_radius_meters if site else None) or settings.geo_radius_m_default,
    )

    event = JobClockEvent(
        job_id=job.id,
        cleaner_id=job.assigned_cleaner_id or user.id,
        type=payload.type,
        at=ensure_utc(payload.at) if payload.at else now_utc(),
        lat=payload.lat,
        lng=payload.lng,
        accuracy_meters=payload.accuracy_meters,
        is_within_geofence=fence.is_within,
        distance_meters=fence.distance_meters,
        source=payload.source,
    )
    db.add(event)
    db.flush()

    context = _gps_context(payload)
    context.update({"inside_geofence": fence.is_within, "distance_meters": fence.distance_meters})
    create_audit_log(
        db=db,
        entity_type="clock_event",
        entity_id=event.id,
        action=payload.type,
        actor_id=user.id,
        actor_role=get_user_role(user),
        source="offline_sync" if payload.source == "OFFLINE_SYNCED" else "api",
        context=dict(context, job_id=str(job.id)),
    )
    db.commit()
    db.refresh(event)

    if fence.is_within is False:
        logger.warning(
            "clock_event_outside_geofence",
            job_id=str(job.id),
            event_id=str(event.id),
            distance_meters=round(fence.distance_meters, 1),
        )
    return event


@router.post("/break-events", response_model=BreakEventResponse)
def create_break_event(
    payload: BreakEventCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    job = _get_actionable_job(db, payload.job_id, user)
    _check_job_open(job, payload)

    event = BreakEvent(
        job_id=job.id,
        cleaner_id=job.assigned_cleaner_id or user.id,
        type=payload.type,
        at=ensure_utc(payload.at) if payload.at else now_utc(),
        lat=payload.lat,
        lng=payload.lng,
        accuracy_meters=payload.accuracy_meters,
        source=payload.source,
    )
    db.add(event)
    db.flush()
    create_audit_log(
        db=db,
        entity_type="break_event",
        entity_id=event.id,
        action=payload.type,
        actor_id=user.id,
        actor_role=get_user_role(user),
        source="offline_sync" if payload.source == "OFFLINE_SYNCED" else "api",
        context=dict(_gps_context(payload), job_id=str(job.id)),
    )
    db.commit()
    db.refresh(event)
    return event


@router.get("/jobs/{job_id}/events")
def list_job_events(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    job = _get_actionable_job(db, job_id, user)
    clock_events, break_events = load_job_events(db, job.id)
    clock_events = sorted(clock_events, key=lambda e: ensure_utc(e.at))
    break_events = sorted(break_events, key=lambda e: ensure_utc(e.at))
    return {
        "clock_events": [ClockEventResponse.model_validate(e).model_dump(mode="json") for e in clock_events],
        "break_events": [BreakEventResponse.model_validate(e).model_dump(mode="json") for e in break_events],
    }
