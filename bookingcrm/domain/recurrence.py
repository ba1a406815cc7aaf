"""
Recurrence of repeating bookings.

A series is a linked chain: each spawned booking points at its predecessor
(parent_booking_id) and at the first booking of the chain (recurrence_root_id).
Only the next occurrence is ever materialised.

Patterns:
- weekly: +7 days
- biweekly: +14 days
- monthly: +1 calendar month, day clipped to the last day of the month
"""
import calendar
from datetime import date, datetime, timedelta

from bookingcrm.domain.booking import Recurrence


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, n: int) -> date:
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    last = last_day_of_month(year, month)
    day = min(d.day, last)
    return date(year, month, day)


def next_occurrence(start: datetime, pattern: Recurrence) -> datetime | None:
    """
    Start of the booking following one that started at `start`.

    Time of day is preserved. Returns None for non-repeating bookings.
    """
    pattern = Recurrence(pattern)
    if pattern == Recurrence.WEEKLY:
        return start + timedelta(weeks=1)
    if pattern == Recurrence.BIWEEKLY:
        return start + timedelta(weeks=2)
    if pattern == Recurrence.MONTHLY:
        d = add_months(start.date(), 1)
        return datetime.combine(d, start.time())
    return None


def chain_root_id(booking_id: str, recurrence_root_id: str | None) -> str:
    """Root shared by every booking in a chain."""
    return recurrence_root_id or booking_id
