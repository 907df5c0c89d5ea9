"""Datetime helpers for timezone-aware comparisons.

SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
columns, so anything read from the store goes through ``ensure_utc``
before being compared with ``utcnow()``.
"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Ensure a datetime object is timezone-aware and in UTC.

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_expired(expires_at: datetime | None, now: datetime | None = None) -> bool:
    """Check if a datetime has passed. ``None`` never expires."""
    if expires_at is None:
        return False
    return (now or utcnow()) >= ensure_utc(expires_at)


def seconds_from_now(seconds: int, now: datetime | None = None) -> datetime:
    return (now or utcnow()) + timedelta(seconds=seconds)
