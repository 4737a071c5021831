"""DateTime utilities for the project."""

from datetime import datetime, timezone
from typing import Union


def utc_now() -> datetime:
    """Return the current UTC time."""
    return datetime.now(timezone.utc)


def parse_iso_timestamp(ts_iso: str) -> datetime:
    """Parse ISO timestamp string to datetime object."""
    return ensure_utc(datetime.fromisoformat(ts_iso.replace('Z', '+00:00')))


def ensure_utc(dt: Union[datetime, str]) -> datetime:
    """Return ``dt`` as a timezone-aware UTC datetime.

    Naive datetimes are assumed to already be in UTC.
    """
    if isinstance(dt, str):
        return parse_iso_timestamp(dt)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def hours_between(earlier: datetime, later: datetime) -> float:
    """Signed number of hours from ``earlier`` to ``later``."""
    return (ensure_utc(later) - ensure_utc(earlier)).total_seconds() / 3600.0
