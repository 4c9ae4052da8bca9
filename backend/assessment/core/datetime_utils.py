"""
Datetime utility functions for handling timezone-aware datetimes.
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Return the current datetime in UTC timezone.

    Use this instead of datetime.now(timezone.utc) so tests can patch a
    single call site.
    """
    return datetime.now(timezone.utc)


def ensure_timezone_aware(dt: Optional[datetime]) -> datetime:
    """
    Ensure a datetime object is timezone-aware (UTC).
    SQLite may return timezone-naive datetimes even when stored as timezone-aware.

    Raises:
        ValueError: If dt is None
    """
    if dt is None:
        raise ValueError("datetime cannot be None")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def client_timestamp_or_now(dt: Optional[datetime]) -> datetime:
    """
    Normalize a client-reported event time.

    Clients report violation timestamps from their own clocks; a missing
    value falls back to server time, a naive value is treated as UTC.
    """
    if dt is None:
        return utc_now()
    return ensure_timezone_aware(dt)


def epoch_millis(dt: Optional[datetime] = None) -> int:
    """Milliseconds since the Unix epoch for dt (default: now)."""
    moment = ensure_timezone_aware(dt) if dt is not None else utc_now()
    return int(moment.timestamp() * 1000)
