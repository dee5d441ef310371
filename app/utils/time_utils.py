"""
Time helpers

All timestamps handled by the chat core are naive UTC datetimes.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional


def minutes_from(now: datetime, minutes: Optional[int]) -> Optional[datetime]:
    """
    Expiry for a duration in minutes.

    Args:
        now: reference time
        minutes: duration; None means no expiry

    Returns:
        now + minutes, or None for a permanent state
    """
    if minutes is None:
        return None
    return now + timedelta(minutes=minutes)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat()


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 string into a naive UTC datetime"""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def hour_bucket(dt: datetime) -> str:
    """Bucket key for hourly activity buffers, e.g. 2024-05-01-13"""
    return dt.strftime("%Y-%m-%d-%H")


def seconds_until(now: datetime, until: Optional[datetime]) -> Optional[int]:
    if until is None:
        return None
    return max(0, int((until - now).total_seconds()))


def utcnow() -> datetime:
    """Naive UTC now, used as a column default when no clock is involved"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
