"""
Timestamp utilities for consistent time handling across the system.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(moment: Optional[datetime] = None) -> str:
    """Format a datetime as ISO-8601 with millisecond precision and a trailing Z.

    Args:
        moment: Datetime to format (optional, uses current UTC time if None)

    Returns:
        ISO-8601 string such as ``2024-09-25T16:29:06.475Z``
    """
    if moment is None:
        moment = utc_now()
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.isoformat(timespec='milliseconds') + 'Z'
