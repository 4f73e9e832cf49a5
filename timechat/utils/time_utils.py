from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    Naive values are assumed to already be UTC (that is how they are stored).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def earliest(first: datetime, second: Optional[datetime]) -> datetime:
    """Return the earlier of two instants, treating None as "never"."""
    if second is None:
        return first
    return min(ensure_utc(first), ensure_utc(second))


def remaining(until: Optional[datetime], now: Optional[datetime] = None) -> Optional[timedelta]:
    """Time left until `until`, clamped at zero; None when there is no deadline."""
    if until is None:
        return None
    now = now or utcnow()
    left = ensure_utc(until) - ensure_utc(now)
    return max(left, timedelta(0))
