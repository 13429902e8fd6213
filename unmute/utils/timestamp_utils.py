"""
Timestamp utilities for consistent time handling across stores.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso_str(value: Optional[datetime] = None) -> str:
    """Convert a datetime to the ISO-8601 string stored in OpenSearch documents.

    Args:
        value: datetime to convert (optional, uses current UTC time if None)

    Returns:
        ISO-8601 timestamp string
    """
    if value is None:
        value = utc_now()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def from_iso_str(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO-8601 timestamp; None and empty strings stay None."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
