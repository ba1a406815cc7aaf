"""
Wall clock for the automatic engine.

All stored datetimes are naive wall-clock values in the configured TIMEZONE,
so "now" is produced the same way. Engines take a clock callable so tests
can drive time explicitly.
"""
from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

from bookingcrm.config import get_settings

Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Current wall-clock time in the configured timezone, without tzinfo."""
    tz = ZoneInfo(get_settings().TIMEZONE)
    return datetime.now(tz).replace(tzinfo=None, microsecond=0)


def to_local_naive(value: datetime | None) -> datetime | None:
    """Convert an offset-aware datetime to naive local time; naive values pass through."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(ZoneInfo(get_settings().TIMEZONE)).replace(tzinfo=None)
