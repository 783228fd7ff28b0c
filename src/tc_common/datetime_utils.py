"""Datetime utilities.

Timestamps are stored timezone-aware in UTC. Room schedules are wall-clock
"HH:MM" strings interpreted in the competition timezone.
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def local_now(tz_name: str) -> datetime:
    """Return timezone-aware now in the given IANA zone."""
    return datetime.now(ZoneInfo(tz_name))


def epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def clock_to_minutes(value: str) -> int:
    """'08:30' -> 510. Raises ValueError on anything that is not HH:MM."""
    hour_str, sep, minute_str = value.partition(":")
    if not sep or not hour_str.isdigit() or not minute_str.isdigit():
        raise ValueError(f"Clock time must be HH:MM, got {value!r}")
    hour, minute = int(hour_str), int(minute_str)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Clock time out of range: {value!r}")
    return hour * 60 + minute


def minutes_of_day(dt: datetime) -> int:
    return dt.hour * 60 + dt.minute
