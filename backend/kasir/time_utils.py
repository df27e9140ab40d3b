from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

# Every timestamp in the database is UTC without tzinfo. The business
# timezone only matters for the calendar day (invoice numbers, exports).


def utcnow() -> datetime:
    """Current UTC time, naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    ISO-8601 text to a UTC-naive datetime.

    Blank input gives None. "2026-01-13" is midnight UTC, a naive time is
    taken as UTC, and an explicit offset or trailing Z is converted.
    Raises ValueError for anything else.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"
    return _as_utc_naive(datetime.fromisoformat(text))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """UTC-naive (or aware) datetime to "YYYY-MM-DDTHH:MM:SSZ"."""
    if dt is None:
        return None
    return _as_utc_naive(dt).replace(microsecond=0).isoformat() + "Z"


def resolve_timezone(name: Optional[str]) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def to_business_time(dt: datetime, tz_name: Optional[str]) -> datetime:
    """Wall-clock time in the business timezone for a UTC-naive datetime (naive result)."""
    aware = dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt
    return aware.astimezone(resolve_timezone(tz_name)).replace(tzinfo=None)


def from_business_time(dt: datetime, tz_name: Optional[str]) -> datetime:
    """Naive wall-clock time in the business timezone to UTC-naive."""
    return dt.replace(tzinfo=resolve_timezone(tz_name)).astimezone(timezone.utc).replace(tzinfo=None)


def start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_month(dt: datetime) -> datetime:
    return start_of_day(dt).replace(day=1)


def end_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=23, minute=59, second=59, microsecond=999999)
