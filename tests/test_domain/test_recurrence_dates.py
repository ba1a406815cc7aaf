"""
Tests for recurrence date arithmetic
"""
from datetime import date, datetime

from bookingcrm.domain.booking import Recurrence
from bookingcrm.domain.recurrence import add_months, chain_root_id, next_occurrence


def test_weekly_keeps_time_of_day():
    start = datetime(2025, 3, 10, 19, 30)
    assert next_occurrence(start, Recurrence.WEEKLY) == datetime(2025, 3, 17, 19, 30)


def test_biweekly():
    assert next_occurrence(datetime(2025, 3, 28, 9, 0), Recurrence.BIWEEKLY) == datetime(2025, 4, 11, 9, 0)


def test_monthly_clips_to_month_end():
    assert next_occurrence(datetime(2025, 1, 31, 18, 0), Recurrence.MONTHLY) == datetime(2025, 2, 28, 18, 0)
    assert next_occurrence(datetime(2024, 1, 31, 18, 0), Recurrence.MONTHLY) == datetime(2024, 2, 29, 18, 0)


def test_monthly_over_year_end():
    assert next_occurrence(datetime(2025, 12, 15, 10, 0), Recurrence.MONTHLY) == datetime(2026, 1, 15, 10, 0)


def test_none_has_no_next():
    assert next_occurrence(datetime(2025, 3, 10, 10, 0), Recurrence.NONE) is None


def test_add_months():
    assert add_months(date(2025, 3, 31), 1) == date(2025, 4, 30)
    assert add_months(date(2025, 11, 30), 3) == date(2026, 2, 28)


def test_chain_root_id():
    assert chain_root_id("a", None) == "a"
    assert chain_root_id("b", "a") == "a"
