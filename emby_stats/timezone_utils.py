"""
Timezone utilities shared across the app.

Timestamps are stored as naive UTC; calendar days and hours of day are
bucketed in the configured local zone.
"""

import os
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def get_local_timezone() -> ZoneInfo:
    """Return the configured timezone (TZ env) or default to UTC."""
    tz_name = os.environ.get('TZ', 'UTC')
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo('UTC')


def to_local(value: datetime) -> datetime:
    """Convert a stored (naive UTC) or aware datetime to the local zone."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(get_local_timezone())


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_midnight_utc(day: date) -> datetime:
    """Naive UTC instant of local midnight at the start of ``day``."""
    local_start = datetime.combine(day, time.min, tzinfo=get_local_timezone())
    return local_start.astimezone(timezone.utc).replace(tzinfo=None)


def local_day_bounds(day: date) -> tuple[datetime, datetime]:
    """
    Stored-column bounds of one local calendar day.

    Returns:
        (start, end) as naive UTC, start inclusive and end exclusive
    """
    return local_midnight_utc(day), local_midnight_utc(day + timedelta(days=1))


def local_range_bounds(first: date, last: date) -> tuple[datetime, datetime]:
    """Bounds covering the local days ``first`` through ``last`` inclusive."""
    return local_midnight_utc(first), local_midnight_utc(last + timedelta(days=1))


def local_date(value: datetime) -> date:
    """Local calendar date of a stored or aware datetime."""
    return to_local(value).date()
