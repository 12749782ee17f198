from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

_UNITS = {
    "second": "second",
    "seconds": "second",
    "s": "second",
    "minute": "minute",
    "minutes": "minute",
    "m": "minute",
    "hour": "hour",
    "hours": "hour",
    "h": "hour",
    "day": "day",
    "days": "day",
    "d": "day",
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_period(period: str) -> Tuple[int, str]:
    """
    "15 minute" -> (15, "minute"). Raises ValueError on anything else.
    """
    parts = str(period).split()
    if len(parts) != 2:
        raise ValueError(f"period must look like '<count> <unit>', got {period!r}")
    count_s, unit_s = parts
    try:
        count = int(count_s)
    except ValueError:
        raise ValueError(f"period count must be an integer, got {count_s!r}") from None
    if count < 1:
        raise ValueError(f"period count must be >= 1, got {count}")
    unit = _UNITS.get(unit_s.lower())
    if unit is None:
        raise ValueError(f"unsupported period unit {unit_s!r}")
    return count, unit


def floor_time(now: datetime, count: int, unit: str) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)

    if unit == "second":
        return now.replace(second=now.second - now.second % count, microsecond=0)
    if unit == "minute":
        return now.replace(minute=now.minute - now.minute % count, second=0, microsecond=0)
    if unit == "hour":
        return now.replace(hour=now.hour - now.hour % count, minute=0, second=0, microsecond=0)
    days = (now - _EPOCH).days
    return _EPOCH + timedelta(days=days - days % count)


class TimeBucketer:
    def __init__(self, period: str = "1 hour", pattern: str = "%Y%m%dT%H%M%S"):
        self.count, self.unit = parse_period(period)
        self.pattern = pattern

    def floor(self, now: Optional[datetime] = None) -> datetime:
        return floor_time(now or datetime.now(timezone.utc), self.count, self.unit)

    def bucket(self, now: Optional[datetime] = None) -> str:
        return self.floor(now).strftime(self.pattern)
