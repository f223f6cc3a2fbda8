"""
Centralized datetime utilities for ISSA.

All datetimes are handled in UTC. Knowledge entries persist their
timestamps as ISO strings, so parsing and formatting live here.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC datetime.

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """
    Get current UTC datetime as ISO string with 'Z' suffix.

    Example: "2024-01-15T10:30:45.123456Z"
    """
    return format_iso(utc_now())


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure datetime is in UTC timezone.

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    elif dt.tzinfo == timezone.utc:
        return dt
    else:
        return dt.astimezone(timezone.utc)


def parse_iso_datetime(iso_string: str) -> datetime:
    """
    Parse ISO datetime string to datetime object.

    Handles the formats SQLite and the seed files produce:
    - 2024-01-01T12:00:00
    - 2024-01-01 12:00:00
    - 2024-01-01T12:00:00Z
    - 2024-01-01T12:00:00.123456+00:00

    Raises:
        ValueError: If string cannot be parsed as ISO datetime
    """
    if iso_string.endswith('Z'):
        iso_string = iso_string[:-1] + '+00:00'

    try:
        dt = datetime.fromisoformat(iso_string)
    except ValueError as e:
        raise ValueError(f"Invalid ISO datetime string: {iso_string}") from e
    return ensure_utc(dt)


def parse_optional_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse a nullable database column."""
    if not value:
        return None
    return parse_iso_datetime(value)


def format_iso(dt: datetime) -> str:
    """
    Format datetime to ISO string with Z suffix.

    Example: "2024-01-15T10:30:45.123456Z"
    """
    utc_dt = ensure_utc(dt)
    return utc_dt.isoformat().replace('+00:00', 'Z')
