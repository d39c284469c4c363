"""
Time helpers

All booking/stock logic works on two types only:
- `date` for calendar days (stock cells, booking ranges)
- naive UTC `datetime` for instants (holds, payments, audit stamps)

Anything arriving from the outside (ISO strings, epoch seconds, aware
datetimes) goes through `to_datetime` / `to_date` once, at the boundary.
"""

from datetime import date, datetime, timedelta, timezone
from typing import List, Union
from zoneinfo import ZoneInfo

from ..config import settings

TimestampLike = Union[datetime, date, str, int, float]


def utcnow() -> datetime:
    """Current instant as naive UTC (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_datetime(value: TimestampLike) -> datetime:
    """
    Normalize a timestamp-like value to naive UTC.

    - aware datetime -> converted to UTC, tzinfo dropped
    - naive datetime -> assumed UTC
    - date -> midnight UTC
    - int/float -> epoch seconds
    - str -> ISO 8601 (a trailing 'Z' is accepted)

    Raises ValueError for anything else instead of silently using "now".
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, bool):
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_datetime(datetime.fromisoformat(text))
        except ValueError:
            raise ValueError(f"Invalid timestamp: {value!r}")
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def to_date(value: TimestampLike) -> date:
    """Normalize a date-like value to a calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and len(value.strip()) == 10:
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            raise ValueError(f"Invalid date: {value!r}")
    return to_datetime(value).date()


def local_today(now: datetime = None) -> date:
    """Business-local calendar date for a naive UTC instant."""
    now = now or utcnow()
    aware = now.replace(tzinfo=timezone.utc)
    return aware.astimezone(ZoneInfo(settings.timezone)).date()


def expand_days(start: date, end: date) -> List[date]:
    """Inclusive list of calendar days from start to end."""
    if end < start:
        raise ValueError("end date must not be before start date")
    days = []
    current = start
    while current <= end:
        days.append(current)
        current += timedelta(days=1)
    return days
