"""
UTC helpers shared by the renewal, maintenance and API layers.

Every instant the service stores or compares is a timezone-aware UTC datetime.
SQLite drops the zone on the way back, so values read from the database go
through ensure_utc before any comparison.
"""
from __future__ import annotations

import math
from datetime import date, datetime, time, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day(d: date) -> datetime:
    """Midnight UTC of a calendar date."""
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def whole_days_between(earlier: datetime, later: datetime) -> int:
    """Days from earlier to later, rounded up; negative spans count as zero."""
    seconds = (ensure_utc(later) - ensure_utc(earlier)).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 86400)
