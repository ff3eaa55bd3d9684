# Overview: UTC time helpers; every stored timestamp is naive UTC.

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into naive UTC.

    Used for back-dated sale times and report bounds.
    - None / blank -> None
    - no offset -> taken as UTC
    - "Z" or "+HH:MM" -> converted to UTC
    Raises ValueError on anything else.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(s))


def parse_range_bound(value, *, end: bool = False) -> Optional[datetime]:
    """
    Parse a report range bound.

    Date-only values cover the whole day: a start bound becomes 00:00:00 and an
    end bound becomes 23:59:59.999999, so both ends are inclusive.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.max if end else time.min)

    s = str(value).strip()
    if not s:
        return None
    if len(s) == 10:
        day = date.fromisoformat(s)
        return datetime.combine(day, time.max if end else time.min)
    return parse_iso_datetime(s)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Format as 'YYYY-MM-DDTHH:MM:SSZ' (seconds precision); naive means UTC."""
    if dt is None:
        return None
    dt = to_naive_utc(dt).replace(microsecond=0)
    return dt.isoformat() + "Z"


def not_in_future(dt: datetime, *, grace: timedelta = timedelta(minutes=2)) -> bool:
    return dt <= utcnow() + grace
