"""
Tests for safety check-in timing
"""
from datetime import datetime

from bookingcrm.domain.safety_check import (
    deadline, in_reminder_window, is_overdue, scheduled_check_time,
)

START = datetime(2025, 3, 10, 20, 0)


def test_scheduled_time_uses_offset():
    assert scheduled_check_time(START, 30) == datetime(2025, 3, 10, 20, 30)


def test_zero_offset_falls_back_to_default():
    assert scheduled_check_time(START, 0) == datetime(2025, 3, 10, 20, 15)
    assert scheduled_check_time(START, None, default_minutes=20) == datetime(2025, 3, 10, 20, 20)


def test_overdue_exactly_at_deadline():
    t = scheduled_check_time(START, 15)
    assert deadline(t, 15) == datetime(2025, 3, 10, 20, 30)
    assert not is_overdue(datetime(2025, 3, 10, 20, 29), t, 15)
    assert is_overdue(datetime(2025, 3, 10, 20, 30), t, 15)


def test_reminder_window_is_half_open():
    t = datetime(2025, 3, 10, 20, 15)
    assert not in_reminder_window(datetime(2025, 3, 10, 20, 24), t, 15)
    assert in_reminder_window(datetime(2025, 3, 10, 20, 25), t, 15)
    assert in_reminder_window(datetime(2025, 3, 10, 20, 29), t, 15)
    assert not in_reminder_window(datetime(2025, 3, 10, 20, 30), t, 15)
