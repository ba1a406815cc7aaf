"""
Safety check-in domain.

pending -> checkedIn   (user checks in, terminal success)
pending -> overdue     (automatic, once scheduled_time + buffer has passed)
pending|overdue -> alert  (user escalates to the safety contact)
"""
from datetime import datetime, timedelta
from enum import Enum


class SafetyCheckStatus(str, Enum):
    PENDING = "pending"
    CHECKED_IN = "checkedIn"
    OVERDUE = "overdue"
    ALERT = "alert"


DEFAULT_BUFFER_MINUTES = 15
REMINDER_LEAD_MINUTES = 5

CHECK_IN_FROM = frozenset({
    SafetyCheckStatus.PENDING, SafetyCheckStatus.OVERDUE, SafetyCheckStatus.ALERT,
})
ALERT_FROM = frozenset({SafetyCheckStatus.PENDING, SafetyCheckStatus.OVERDUE})


class SafetyCheckError(ValueError):
    pass


def scheduled_check_time(start: datetime, minutes_after: int | None, default_minutes: int = 15) -> datetime:
    """When the check-in is expected; 0 / unset falls back to the default offset."""
    return start + timedelta(minutes=minutes_after or default_minutes)


def deadline(scheduled_time: datetime, buffer_minutes: int) -> datetime:
    return scheduled_time + timedelta(minutes=buffer_minutes)


def is_overdue(now: datetime, scheduled_time: datetime, buffer_minutes: int) -> bool:
    return now >= deadline(scheduled_time, buffer_minutes)


def in_reminder_window(
    now: datetime,
    scheduled_time: datetime,
    buffer_minutes: int,
    lead_minutes: int = REMINDER_LEAD_MINUTES,
) -> bool:
    """True inside [deadline - lead, deadline)."""
    end = deadline(scheduled_time, buffer_minutes)
    return end - timedelta(minutes=lead_minutes) <= now < end
