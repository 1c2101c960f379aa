"""
Time helpers.

All timestamps are stored as naive UTC datetimes so that sqlite and postgres
rows compare the same way.
"""
from datetime import datetime, timezone, timedelta
from typing import Optional

UTC = timezone.utc


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(UTC).replace(tzinfo=None)


def from_unix(timestamp: Optional[int]) -> Optional[datetime]:
    """Convert a unix timestamp (seconds) to naive UTC, passing None through."""
    if not timestamp:
        return None
    return datetime.fromtimestamp(int(timestamp), UTC).replace(tzinfo=None)


def is_older_than(moment: Optional[datetime], age: timedelta, now: Optional[datetime] = None) -> bool:
    """True when ``moment`` is missing or more than ``age`` in the past."""
    if moment is None:
        return True
    return (now or utcnow()) - moment > age
