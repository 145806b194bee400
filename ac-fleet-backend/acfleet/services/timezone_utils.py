"""
Conversions between the fixed local civil timezone and UTC instants.

Every instant that leaves this module is timezone-aware UTC.  Calendar
questions ("which day is today", "which weekday") are answered only after
converting to local time.
"""
import re
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Iterable, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from acfleet.database import settings, get_utc_datetime
from acfleet.services.errors import InvalidTimeFormat

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")

DEFAULT_FORMAT = "%Y-%m-%d %H:%M:%S"


@lru_cache(maxsize=8)
def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError as e:
        raise InvalidTimeFormat(f"Unknown timezone: {name}") from e


def local_zone() -> ZoneInfo:
    return _zone(settings.local_timezone)


def now_utc() -> datetime:
    return get_utc_datetime()


def local_now() -> datetime:
    """Current instant expressed in the local civil timezone"""
    return now_utc().astimezone(local_zone())


def local_today() -> date:
    return local_now().date()


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive values, convert aware ones"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_utc_instant(value) -> datetime:
    """Parse an externally supplied timestamp into an aware UTC instant.

    ISO-8601 strings with a ``Z`` or offset designator are honoured; strings
    without one are read as UTC.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise InvalidTimeFormat(f"Invalid timestamp: {value!r}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise InvalidTimeFormat(f"Invalid timestamp: {value!r}") from e
    return ensure_utc(parsed)


def parse_time_of_day(value: str) -> time:
    """Parse HH:MM or HH:MM:SS"""
    if isinstance(value, time):
        return value
    match = _TIME_RE.match(value or "") if isinstance(value, str) else None
    if not match:
        raise InvalidTimeFormat(f"Invalid time {value!r}, expected HH:MM or HH:MM:SS")
    hours, minutes, seconds = match.groups()
    return time(int(hours), int(minutes), int(seconds or 0))


def normalize_time_of_day(value: str) -> str:
    return parse_time_of_day(value).strftime("%H:%M:%S")


def local_datetime_to_utc(day: date, time_of_day) -> datetime:
    """Combine a local calendar date and time-of-day into a UTC instant"""
    if isinstance(time_of_day, str):
        time_of_day = parse_time_of_day(time_of_day)
    local = datetime.combine(day, time_of_day, tzinfo=local_zone())
    return local.astimezone(timezone.utc)


def utc_to_local(instant: datetime) -> datetime:
    return ensure_utc(instant).astimezone(local_zone())


def format_local(instant: datetime, pattern: str = DEFAULT_FORMAT) -> str:
    if instant is None:
        return ""
    return utc_to_local(instant).strftime(pattern)


def local_day_bounds_utc(day: date) -> Tuple[datetime, datetime]:
    """UTC instants spanning the local calendar day [start, end)"""
    start = local_datetime_to_utc(day, time(0, 0))
    end = local_datetime_to_utc(day + timedelta(days=1), time(0, 0))
    return start, end


def weekday_index(day: date) -> int:
    """Weekday with 0 = Sunday"""
    return (day.weekday() + 1) % 7


def first_occurrence(start: date, end: Optional[date], days_of_week: Iterable[int]) -> Optional[date]:
    """Earliest date >= start whose weekday is in days_of_week, bounded by end"""
    wanted = set(days_of_week)
    for offset in range(7):
        candidate = start + timedelta(days=offset)
        if end is not None and candidate > end:
            return None
        if weekday_index(candidate) in wanted:
            return candidate
    return None
