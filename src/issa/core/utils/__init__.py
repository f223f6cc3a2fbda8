"""
Core utilities module for ISSA.
"""

from .datetime_utils import (
    utc_now,
    utc_now_iso,
    ensure_utc,
    parse_iso_datetime,
    parse_optional_datetime,
    format_iso,
)

__all__ = [
    'utc_now',
    'utc_now_iso',
    'ensure_utc',
    'parse_iso_datetime',
    'parse_optional_datetime',
    'format_iso',
]
