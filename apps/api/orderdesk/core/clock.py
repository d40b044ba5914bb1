"""
Time helpers.

Timestamps are stored as naive UTC datetimes (the columns are plain
``DateTime``). Restaurant-local time is only used for offer day/time windows.
"""
from datetime import datetime, timezone
from typing import Optional

import pytz


def utcnow() -> datetime:
    """Current instant as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """Normalize an aware or naive datetime to naive UTC."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_restaurant_local(dt: datetime, restaurant_timezone: Optional[str] = None) -> datetime:
    """
    Convert a naive UTC datetime to restaurant local time.

    Returns the input unchanged when no timezone is configured.
    """
    if not restaurant_timezone:
        return dt
    aware = pytz.UTC.localize(to_naive_utc(dt))
    return aware.astimezone(pytz.timezone(restaurant_timezone)).replace(tzinfo=None)
