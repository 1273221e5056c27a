"""
Date helpers.

Timestamps are persisted as naive UTC; day-level filters and the
"opened today" rule are evaluated in the store's local timezone.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from app.core.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_tz() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def to_local(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(local_tz())


def local_today() -> date:
    return datetime.now(local_tz()).date()


def local_day_start_utc(day: date) -> datetime:
    """Local midnight of ``day`` expressed as naive UTC."""
    local_midnight = datetime.combine(day, time.min, tzinfo=local_tz())
    return local_midnight.astimezone(timezone.utc).replace(tzinfo=None)


def local_range_utc(start: Optional[date], end: Optional[date]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Inclusive local-day range as a half-open naive UTC interval
    ``[start 00:00, (end + 1) 00:00)``. Either bound may be None.
    """
    lower = local_day_start_utc(start) if start else None
    upper = local_day_start_utc(end + timedelta(days=1)) if end else None
    return lower, upper
