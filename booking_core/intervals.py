"""
Time interval helpers shared by the booking engine.

All intervals are half-open, ``[start, end)``: the end instant is not part of
the interval, so a booking ending at 10:00 and another starting at 10:00 do
not overlap.
"""
import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional

_CLOCK_RE = re.compile(r"^\s*(\d{1,2})(?::?(\d{2}))?\s*$")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime, tz: tzinfo = timezone.utc) -> datetime:
    """
    Attach ``tz`` to a naive datetime, leave aware datetimes untouched.

    Parameters
    ----------
    value : datetime
        Datetime to normalise.
    tz : tzinfo
        Zone assumed for naive values. Defaults to UTC.

    Returns
    -------
    datetime
        An aware datetime that can be compared with any other aware value.
    """
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=tz)
    return value


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Return True if ``[a_start, a_end)`` and ``[b_start, b_end)`` intersect."""
    return a_start < b_end and b_start < a_end


def duration_hours(start: datetime, end: datetime) -> float:
    """Length of ``[start, end)`` in hours (negative if end precedes start)."""
    return (end - start).total_seconds() / 3600


def normalize_overnight(start: datetime, end: datetime) -> datetime:
    """
    Reinterpret an end time-of-day that is not after the start as next-day.

    Only meant for clock-face input where both ends were entered as times on
    the same date (e.g. 10:00 PM to 01:00 AM). Fully dated input must not go
    through this.

    Parameters
    ----------
    start : datetime
        Start of the span.
    end : datetime
        End of the span, built on the same date as ``start``.

    Returns
    -------
    datetime
        ``end`` unchanged if it is after ``start``, otherwise ``end`` + 24h.
    """
    if end <= start:
        return end + timedelta(days=1)
    return end


def to_24_hour(hour_minute: Optional[str], meridiem: Optional[str]) -> Optional[str]:
    """
    Convert clock-face input such as ``"2:30"`` + ``"PM"`` to ``"14:30"``.

    Accepted forms are ``H``, ``HH``, ``H:MM``, ``HH:MM`` and ``HHMM``. Hours
    must be within 0-12 and minutes within 0-59.

    Parameters
    ----------
    hour_minute : Optional[str]
        Time as typed by the user.
    meridiem : Optional[str]
        ``"AM"`` or ``"PM"`` (case-insensitive).

    Returns
    -------
    Optional[str]
        ``"HH:MM"`` in 24-hour form, or None when the input cannot be parsed.
    """
    if not hour_minute or not meridiem:
        return None

    period = meridiem.strip().upper()
    if period not in ("AM", "PM"):
        return None

    match = _CLOCK_RE.match(hour_minute)
    if not match:
        return None

    hours = int(match.group(1))
    minutes = int(match.group(2) or "0")
    if hours > 12 or minutes > 59:
        return None

    if period == "PM" and hours < 12:
        hours += 12
    if period == "AM" and hours == 12:
        hours = 0

    return f"{hours:02d}:{minutes:02d}"


def combine_local(day: date, hhmm: str, tz: tzinfo = timezone.utc) -> datetime:
    """Build an aware datetime from a date and a ``"HH:MM"`` string in ``tz``."""
    hours, minutes = (int(part) for part in hhmm.split(":"))
    return datetime.combine(day, time(hour=hours, minute=minutes), tzinfo=tz)
