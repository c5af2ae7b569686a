"""
Timezone-aware datetime helpers.

All functions return timezone-aware datetimes in UTC. SQLite drops tzinfo on
round-trip, so values read back from the database go through ensure_utc().
"""

from datetime import datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def utc_from_timestamp(timestamp: Union[int, float]) -> datetime:
    """
    Convert a Unix timestamp to a timezone-aware UTC datetime.

    Messenger delivers millisecond timestamps; values above 1e11 are treated
    as milliseconds.
    """
    if timestamp > 1e11:
        timestamp = timestamp / 1000.0
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware and in UTC.

    Naive datetimes are assumed to already be UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def unix_seconds(dt: Optional[datetime] = None) -> int:
    """Whole Unix seconds for dt (defaults to now)."""
    return int(ensure_utc(dt or utc_now()).timestamp())


def isoformat_utc(dt: Optional[datetime] = None) -> str:
    """ISO-8601 string for dt (defaults to now) in UTC."""
    return ensure_utc(dt or utc_now()).isoformat()
