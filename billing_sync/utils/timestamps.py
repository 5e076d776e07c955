"""Timestamp conversion utilities.

The billing provider reports times as Unix seconds; local records keep
timezone-aware UTC datetimes.
"""

from datetime import datetime, timezone
from typing import Any, Optional

# Upper sanity bound for provider timestamps (2100-01-01)
MAX_UNIX_SECONDS = 4102444800


def from_unix(value: Any) -> Optional[datetime]:
    """Convert a provider Unix timestamp (seconds) to a UTC datetime.

    Args:
        value: Unix seconds as int, float or numeric string; None or 0 means absent

    Returns:
        Timezone-aware UTC datetime, or None if the value is absent

    Raises:
        ValueError: If the value is not a number, is negative or is past the upper bound

    Examples:
        >>> from_unix(1000000000)
        datetime.datetime(2001, 9, 9, 1, 46, 40, tzinfo=datetime.timezone.utc)
        >>> from_unix(None) is None
        True
    """
    if value is None or value == 0 or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if not 0 < seconds <= MAX_UNIX_SECONDS:
        raise ValueError(f"Timestamp out of range: {value!r}")
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def to_unix(value: Optional[datetime]) -> Optional[int]:
    """Convert a datetime to Unix seconds (None passes through)."""
    if value is None:
        return None
    return int(ensure_utc(value).timestamp())


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_after(value: Optional[datetime], reference: datetime) -> bool:
    """True if value is present and strictly later than reference."""
    return value is not None and ensure_utc(value) > ensure_utc(reference)


def age_seconds(value: Optional[datetime], now: datetime) -> Optional[float]:
    """Seconds elapsed between value and now (None if value is absent)."""
    if value is None:
        return None
    return (ensure_utc(now) - ensure_utc(value)).total_seconds()
