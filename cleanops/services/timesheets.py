"""
Timesheet persistence and payroll export.
"""
import csv
import io
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

import pytz
import structlog
from sqlalchemy.orm import Session

from ..models.models import Job, Site, TimesheetEntry, TimesheetPeriod, User
from .attendance import EXCEPTION_FLAGS, TimesheetSummary, allocate_period_overtime
from .time_rules import Timestamp, ensure_utc, local_date, week_bounds


logger = structlog.get_logger(__name__)

PERIOD_STATUSES = ("OPEN", "SUBMITTED", "APPROVED")

EXPORT_COLUMNS = [
    "cleaner",
    "employee_id",
    "site",
    "scheduled_start",
    "scheduled_end",
    "clock_in_at",
    "clock_out_at",
    "minutes_worked",
    "break_minutes",
    "regular_minutes",
    "overtime_minutes",
    "exceptions",
]

_EPOCH = datetime(1970, 1, 1, tzinfo=pytz.UTC)


def _iso(value: Optional[datetime]) -> str:
    return ensure_utc(value).isoformat() if value else ""


def find_period_covering(db: Session, day: date) -> Optional[TimesheetPeriod]:
    return (
        db.query(TimesheetPeriod)
        .filter(TimesheetPeriod.start_date <= day, TimesheetPeriod.end_date >= day)
        .order_by(TimesheetPeriod.start_date.desc())
        .first()
    )


def find_overlapping_period(db: Session, start_date: date, end_date: date) -> Optional[TimesheetPeriod]:
    return (
        db.query(TimesheetPeriod)
        .filter(TimesheetPeriod.start_date <= end_date, TimesheetPeriod.end_date >= start_date)
        .first()
    )


def get_or_create_timesheet_period(db: Session, moment: Timestamp, created_by=None) -> TimesheetPeriod:
    """
    Find the period whose date range holds the local day of `moment`, or
    create the OPEN Monday-start week period for it.
    """
    period = find_period_covering(db, local_date(moment))
    if period:
        return period

    start_date, end_date = week_bounds(moment)
    period = TimesheetPeriod(
        start_date=start_date,
        end_date=end_date,
        status="OPEN",
        created_by=created_by,
    )
    db.add(period)
    db.flush()
    logger.info("timesheet_period_created", period_id=str(period.id), start_date=start_date.isoformat())
    return period


def upsert_timesheet_entry(
    db: Session,
    cleaner_id,
    job_id,
    period_id,
    summary: TimesheetSummary,
) -> Tuple[TimesheetEntry, bool]:
    """
    Write the summary for a (cleaner, job) pair, replacing any earlier entry.

    Returns:
        (entry, created) where created is False when an existing row was overwritten
    """
    entry = db.query(TimesheetEntry).filter(
        TimesheetEntry.cleaner_id == cleaner_id,
        TimesheetEntry.job_id == job_id,
    ).first()
    created = entry is None
    if created:
        entry = TimesheetEntry(cleaner_id=cleaner_id, job_id=job_id)
        db.add(entry)

    entry.period_id = period_id
    entry.clock_in_at = summary.clock_in_at
    entry.clock_out_at = summary.clock_out_at
    entry.break_minutes = summary.break_minutes
    entry.minutes_worked = summary.minutes_worked
    entry.exceptions_json = summary.exceptions_json
    entry.updated_at = datetime.utcnow()
    db.flush()

    logger.info(
        "timesheet_entry_upserted",
        entry_id=str(entry.id),
        cleaner_id=str(cleaner_id),
        job_id=str(job_id),
        created=created,
        minutes_worked=summary.minutes_worked,
        exceptions=list(summary.exceptions),
    )
    return entry, created


def _clock_in_key(entry: TimesheetEntry):
    return (ensure_utc(entry.clock_in_at) if entry.clock_in_at else _EPOCH, str(entry.id))


def list_period_entries(db: Session, period_id) -> List[TimesheetEntry]:
    entries = db.query(TimesheetEntry).filter(TimesheetEntry.period_id == period_id).all()
    return sorted(entries, key=_clock_in_key)


def list_cleaner_entries(db: Session, cleaner_id) -> List[TimesheetEntry]:
    entries = db.query(TimesheetEntry).filter(TimesheetEntry.cleaner_id == cleaner_id).all()
    return sorted(entries, key=_clock_in_key, reverse=True)


def exception_names(exceptions_json: Optional[Dict]) -> List[str]:
    if not exceptions_json:
        return []
    flagged = [name for name, value in exceptions_json.items() if value]
    known = [name for name in EXCEPTION_FLAGS if name in flagged]
    return known + sorted(name for name in flagged if name not in EXCEPTION_FLAGS)


def build_export_rows(db: Session, period_id, threshold_minutes: int) -> List[Dict]:
    """
    Payroll rows for a period, with regular/overtime minutes allocated per
    cleaner in chronological order across all of their jobs in the period.
    """
    entries = list_period_entries(db, period_id)
    if not entries:
        return []

    cleaner_ids = {e.cleaner_id for e in entries}
    job_ids = {e.job_id for e in entries}
    users = {u.id: u for u in db.query(User).filter(User.id.in_(cleaner_ids)).all()}
    jobs = {j.id: j for j in db.query(Job).filter(Job.id.in_(job_ids)).all()}
    site_ids = {j.site_id for j in jobs.values()}
    sites = {s.id: s for s in db.query(Site).filter(Site.id.in_(site_ids)).all()} if site_ids else {}

    allocation = allocate_period_overtime(
        entries,
        threshold_minutes,
        scheduled_starts={job_id: job.scheduled_start for job_id, job in jobs.items()},
    )

    rows = []
    for entry in entries:
        user = users.get(entry.cleaner_id)
        job = jobs.get(entry.job_id)
        site = sites.get(job.site_id) if job else None
        split = allocation.get(entry.id)
        rows.append({
            "cleaner": user.name if user else "",
            "employee_id": (user.employee_id or "") if user else "",
            "site": site.name if site else "",
            "scheduled_start": _iso(job.scheduled_start) if job else "",
            "scheduled_end": _iso(job.scheduled_end) if job else "",
            "clock_in_at": _iso(entry.clock_in_at),
            "clock_out_at": _iso(entry.clock_out_at),
            "minutes_worked": entry.minutes_worked or 0,
            "break_minutes": entry.break_minutes or 0,
            "regular_minutes": split.regular_minutes if split else 0,
            "overtime_minutes": split.overtime_minutes if split else 0,
            "exceptions": ", ".join(exception_names(entry.exceptions_json)),
        })
    return rows


def render_export_csv(rows: List[Dict]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow(row)
    return buffer.getvalue()
