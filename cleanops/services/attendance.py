"""
Attendance engine.

Reduces a job's clock and break events to payroll minutes. Every function here
is pure: events are sorted internally, nothing is cached between calls, and a
full recomputation over the complete event set always gives the same result,
so re-running after a late offline sync never double counts.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pytz

from .time_rules import parse_timestamp, whole_minutes_between


CLOCK_IN = "CLOCK_IN"
CLOCK_OUT = "CLOCK_OUT"
BREAK_START = "BREAK_START"
BREAK_END = "BREAK_END"

MISSING_CLOCK_IN = "missing_clock_in"
MISSING_CLOCK_OUT = "missing_clock_out"
OUTSIDE_GEOFENCE = "outside_geofence"
BREAK_MISSING_START = "break_missing_start"
BREAK_MISSING_END = "break_missing_end"

# Canonical order used for stored and exported exception flags
EXCEPTION_FLAGS = (
    MISSING_CLOCK_IN,
    MISSING_CLOCK_OUT,
    OUTSIDE_GEOFENCE,
    BREAK_MISSING_START,
    BREAK_MISSING_END,
)

_EPOCH = datetime(1970, 1, 1, tzinfo=pytz.UTC)


@dataclass(frozen=True)
class BreakSummary:
    break_minutes: int
    missing_start: bool
    missing_end: bool
    on_break: bool


@dataclass(frozen=True)
class OvertimeSplit:
    regular_minutes: int
    overtime_minutes: int


@dataclass(frozen=True)
class TimesheetSummary:
    clock_in_at: Optional[datetime]
    clock_out_at: Optional[datetime]
    break_minutes: int
    minutes_worked: Optional[int]
    exceptions: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def exceptions_json(self) -> Dict[str, bool]:
        return {name: True for name in self.exceptions}

    @property
    def requires_review(self) -> bool:
        return bool(self.exceptions)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "clock_in_at": self.clock_in_at.isoformat() if self.clock_in_at else None,
            "clock_out_at": self.clock_out_at.isoformat() if self.clock_out_at else None,
            "break_minutes": self.break_minutes,
            "minutes_worked": self.minutes_worked,
            "exceptions": list(self.exceptions),
        }


def _field(event: Any, name: str, default: Any = None) -> Any:
    # Events arrive as ORM rows, pydantic models or plain dicts
    if isinstance(event, Mapping):
        return event.get(name, default)
    return getattr(event, name, default)


def _event_type(event: Any) -> str:
    value = _field(event, "type")
    return getattr(value, "value", value)


def _sorted_break_events(events: Iterable[Any]) -> List[Tuple[datetime, str]]:
    # A start and an end at the same instant pair up as a zero-minute break
    rank = {BREAK_START: 0, BREAK_END: 1}
    parsed = [(parse_timestamp(_field(e, "at")), _event_type(e)) for e in events]
    return sorted(parsed, key=lambda item: (item[0], rank.get(item[1], 2)))


def calculate_break_summary(events: Iterable[Any]) -> BreakSummary:
    """
    Pair break starts with the next end and total the closed intervals.

    A start that is followed by another start is never credited: the new start
    replaces it and the summary is flagged missing_end. An end with no open
    start is discarded and flagged missing_start.
    """
    open_start: Optional[datetime] = None
    total = 0
    missing_start = False
    missing_end = False

    for at, event_type in _sorted_break_events(events):
        if event_type == BREAK_START:
            if open_start is not None:
                missing_end = True
            open_start = at
        elif event_type == BREAK_END:
            if open_start is None:
                missing_start = True
                continue
            total += max(0, whole_minutes_between(open_start, at))
            open_start = None

    if open_start is not None:
        missing_end = True

    return BreakSummary(
        break_minutes=total,
        missing_start=missing_start,
        missing_end=missing_end,
        on_break=open_start is not None,
    )


def calculate_overtime_minutes(total_minutes: int, threshold_minutes: int) -> OvertimeSplit:
    regular = max(0, min(total_minutes, threshold_minutes))
    overtime = max(0, total_minutes - threshold_minutes)
    return OvertimeSplit(regular_minutes=regular, overtime_minutes=overtime)


def compute_timesheet_from_events(
    clock_events: Iterable[Any],
    break_events: Iterable[Any],
) -> TimesheetSummary:
    """
    Build a timesheet summary for one job from its complete event set.

    Args:
        clock_events: CLOCK_IN / CLOCK_OUT events with `at` and optional
            `is_within_geofence`
        break_events: BREAK_START / BREAK_END events with `at`

    Returns:
        TimesheetSummary; minutes_worked is None when either boundary is missing
    """
    clock_events = list(clock_events)
    clock_ins = sorted(parse_timestamp(_field(e, "at")) for e in clock_events if _event_type(e) == CLOCK_IN)
    clock_outs = sorted(parse_timestamp(_field(e, "at")) for e in clock_events if _event_type(e) == CLOCK_OUT)

    first_in = clock_ins[0] if clock_ins else None
    last_out = clock_outs[-1] if clock_outs else None
    breaks = calculate_break_summary(break_events)

    minutes_worked = None
    if first_in is not None and last_out is not None:
        minutes_worked = max(0, whole_minutes_between(first_in, last_out) - breaks.break_minutes)

    flags = set()
    if first_in is None:
        flags.add(MISSING_CLOCK_IN)
    if last_out is None:
        flags.add(MISSING_CLOCK_OUT)
    if any(_field(e, "is_within_geofence") is False for e in clock_events):
        flags.add(OUTSIDE_GEOFENCE)
    if breaks.missing_start:
        flags.add(BREAK_MISSING_START)
    if breaks.missing_end:
        flags.add(BREAK_MISSING_END)

    return TimesheetSummary(
        clock_in_at=first_in,
        clock_out_at=last_out,
        break_minutes=breaks.break_minutes,
        minutes_worked=minutes_worked,
        exceptions=tuple(name for name in EXCEPTION_FLAGS if name in flags),
    )


def allocate_period_overtime(
    entries: Iterable[Any],
    threshold_minutes: int,
    scheduled_starts: Optional[Mapping[Any, Any]] = None,
) -> Dict[Any, OvertimeSplit]:
    """
    Split each entry's worked minutes into regular and overtime for a period.

    Entries are grouped per cleaner and walked chronologically (clock-in,
    falling back to the job's scheduled start). Each cleaner's regular budget
    starts at the threshold and is consumed across jobs in that order, so the
    split for one entry depends on what the cleaner worked before it.

    Args:
        entries: timesheet entries with id, cleaner_id, job_id, clock_in_at,
            minutes_worked
        threshold_minutes: regular-time budget per cleaner per period
        scheduled_starts: job id -> scheduled start, used when clock-in is absent

    Returns:
        Mapping of entry id to OvertimeSplit
    """
    scheduled_starts = scheduled_starts or {}
    by_cleaner: Dict[Any, List[Any]] = defaultdict(list)
    for entry in entries:
        by_cleaner[str(_field(entry, "cleaner_id"))].append(entry)

    def sort_key(entry: Any):
        moment = _field(entry, "clock_in_at") or scheduled_starts.get(_field(entry, "job_id"))
        return (parse_timestamp(moment) if moment else _EPOCH, str(_field(entry, "id")))

    allocation: Dict[Any, OvertimeSplit] = {}
    for cleaner_entries in by_cleaner.values():
        remaining = threshold_minutes
        for entry in sorted(cleaner_entries, key=sort_key):
            minutes = _field(entry, "minutes_worked") or 0
            regular = max(0, min(remaining, minutes))
            overtime = max(0, minutes - regular)
            remaining = max(0, remaining - regular)
            allocation[_field(entry, "id")] = OvertimeSplit(regular_minutes=regular, overtime_minutes=overtime)
    return allocation
