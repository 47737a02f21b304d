"""
Time rules and conversion helpers.
Handles timestamp normalisation, whole-minute durations and the
Monday-start payroll week.
"""
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple, Union
import pytz

from ..config import settings


Timestamp = Union[datetime, str]

ONE_MINUTE = timedelta(minutes=1)


def ensure_utc(dt: datetime) -> datetime:
    """
    Return a timezone-aware UTC datetime.
    Naive values are taken to already be UTC (SQLite drops tzinfo on read).
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def parse_timestamp(value: Timestamp) -> datetime:
    """
    Parse an ISO-8601 string (trailing 'Z' accepted) or pass a datetime through.

    Returns:
        UTC datetime (timezone-aware)
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value).strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def whole_minutes_between(start: datetime, end: datetime) -> int:
    """Floor of (end - start) in minutes. Negative when end precedes start."""
    return (ensure_utc(end) - ensure_utc(start)) // ONE_MINUTE


def utc_to_local(utc_datetime: datetime, timezone_str: Optional[str] = None) -> datetime:
    """
    Convert UTC datetime to local timezone.

    Args:
        utc_datetime: UTC datetime (naive values are treated as UTC)
        timezone_str: Timezone string (defaults to TZ_DEFAULT)

    Returns:
        Local datetime (timezone-aware)
    """
    tz = pytz.timezone(timezone_str or settings.tz_default)
    return ensure_utc(utc_datetime).astimezone(tz)


def combine_local(date_val: date, time_val: time, timezone_str: Optional[str] = None) -> datetime:
    """
    Combine a local date and time in the business timezone, then convert to UTC.

    Returns:
        UTC datetime (timezone-aware)
    """
    tz = pytz.timezone(timezone_str or settings.tz_default)
    local_dt = tz.localize(datetime.combine(date_val, time_val))
    return local_dt.astimezone(pytz.UTC)


def local_date(moment: Timestamp, timezone_str: Optional[str] = None) -> date:
    return utc_to_local(parse_timestamp(moment), timezone_str).date()


def week_bounds(moment: Timestamp, timezone_str: Optional[str] = None) -> Tuple[date, date]:
    """
    Monday-start payroll week containing the given moment, evaluated on the
    local calendar of the business timezone.

    Returns:
        (monday, sunday) local dates
    """
    local_day = local_date(moment, timezone_str)
    monday = local_day - timedelta(days=local_day.weekday())
    return monday, monday + timedelta(days=6)


def now_utc() -> datetime:
    return datetime.now(tz=pytz.UTC)
