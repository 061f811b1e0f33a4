"""
Time helpers

The database stores naive UTC datetimes. Promotion and event windows are
compared at second precision.
"""
from datetime import datetime, timezone


def utc_now_naive() -> datetime:
    """
    Current UTC time, naive, truncated to the second

    Returns:
        naive datetime suitable for comparing with stored columns
    """
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def to_utc(dt: datetime) -> datetime:
    """
    Convert any datetime to naive UTC

    Args:
        dt: aware or naive datetime (naive is assumed to be UTC already)

    Returns:
        naive UTC datetime
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_second(dt: datetime) -> datetime:
    """Drop sub-second precision"""
    return to_utc(dt).replace(microsecond=0)
