"""Time helpers.

All persisted timestamps are naive UTC, matching the DateTime columns.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def isoformat(value):
    """ISO-8601 rendering used by every serializer, None passes through."""
    if value is None:
        return None
    return to_naive_utc(value).isoformat(timespec="microseconds") + "Z"
