"""Time helpers. All timestamps are stored as naive UTC."""

from datetime import datetime, time, timezone


def utcnow() -> datetime:
    """Current UTC time without tzinfo, matching the stored column format"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)


def to_naive_utc(moment: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC"""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)
