"""
Timestamp helpers.
SQLite (tests) hands back naive datetimes for timezone-aware columns;
everything stored is UTC, so naive values are read as UTC.
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return value as an aware UTC datetime (None passes through)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_past(value: Optional[datetime], now: datetime) -> bool:
    """True when value is set and not after now."""
    value = as_utc(value)
    return value is not None and value <= now
