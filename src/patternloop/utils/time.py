"""Time utilities for patternloop.

Timezone-aware helpers used for pattern timestamps and age calculations.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO8601 timestamp, assuming UTC when no offset is present.

    Args:
        value: ISO8601 string as written by ``datetime.isoformat()``.

    Returns:
        Timezone-aware datetime, or None when value is empty.
    """
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def days_between(earlier: datetime, later: datetime) -> float:
    """Return the (possibly fractional) number of days from earlier to later."""
    return (later - earlier).total_seconds() / 86400.0
