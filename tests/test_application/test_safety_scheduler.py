"""Tests for safety check scheduling, reminders and escalation."""
from datetime import timedelta

import pytest

from bookingcrm.application.safety_checks import (
    SafetyCheckScheduler, active_checks, add_contact, resolve_contact,
)
from bookingcrm.domain.booking import BookingStatus
from bookingcrm.domain.safety_check import SafetyCheckError, SafetyCheckStatus
from bookingcrm.infrastructure.db.models import BookingModel, SafetyCheckModel


@pytest.fixture
def scheduler(clock, sink, settings):
    return SafetyCheckScheduler(sink=sink, clock=clock, settings=settings)


@pytest.fixture
def started_check(scheduler, db_session, make_client, make_booking, clock):
    """Booking that started now; check-in at T = start + 15m"""
    client = make_client(alias="Sam")
    booking = make_booking(
        client=client, date_time=clock(), status=BookingStatus.IN_PROGRESS,
        requires_safety_check=True, safety_check_minutes_after=15,
    )
    return scheduler.ensure_check(db_session, booking)


def test_ensure_check_is_idempotent(scheduler, db_session, started_check):
    booking = db_session.get(BookingModel, started_check.booking_id)
    assert scheduler.ensure_check(db_session, booking) is None
    assert db_session.query(SafetyCheckModel).count() == 1


def test_ensure_check_skips_when_not_required(scheduler, db_session, make_booking):
    assert scheduler.ensure_check(db_session, make_booking()) is None


class TestEscalationTiming:
    def test_timeline(self, scheduler, db_session, started_check, clock, sink):
        t = started_check.scheduled_time

        assert scheduler.process_due(db_session, t + timedelta(minutes=9)) == 0
        assert sink.fired == []

        assert scheduler.process_due(db_session, t + timedelta(minutes=10)) == 0
        assert scheduler.process_due(db_session, t + timedelta(minutes=14)) == 0
        assert sink.tags() == [f"safety-reminder-{started_check.id}"]
        db_session.refresh(started_check)
        assert started_check.status == SafetyCheckStatus.PENDING

        assert scheduler.process_due(db_session, t + timedelta(minutes=15)) == 1
        db_session.refresh(started_check)
        assert started_check.status == SafetyCheckStatus.OVERDUE
        overdue = [n for n in sink.fired if n["tag"] == f"safety-overdue-{started_check.id}"]
        assert len(overdue) == 1
        assert overdue[0]["require_interaction"] is True
        assert "Sam" in overdue[0]["body"]

        assert scheduler.process_due(db_session, t + timedelta(minutes=30)) == 0
        assert len(sink.fired) == 2

    def test_fresh_scheduler_has_its_own_memory(self, db_session, started_check, clock, sink, settings):
        t = started_check.scheduled_time
        for _ in range(2):
            SafetyCheckScheduler(sink=sink, clock=clock, settings=settings).process_due(
                db_session, t + timedelta(minutes=12))
        assert len(sink.fired) == 2


class TestUserActions:
    def test_check_in(self, scheduler, db_session, started_check, clock):
        check = scheduler.check_in(db_session, started_check.id)
        assert check.status == SafetyCheckStatus.CHECKED_IN
        assert check.checked_in_at == clock()
        assert active_checks(db_session) == []

    def test_check_in_twice_fails(self, scheduler, db_session, started_check):
        scheduler.check_in(db_session, started_check.id)
        with pytest.raises(SafetyCheckError):
            scheduler.check_in(db_session, started_check.id)

    def test_alert_returns_primary_contact(self, scheduler, db_session, started_check):
        add_contact(db_session, "Robin", "555-0100", "friend")
        primary = add_contact(db_session, "Casey", "555-0199", "sister", is_primary=True)

        check, contact = scheduler.raise_alert(db_session, started_check.id)

        assert check.status == SafetyCheckStatus.ALERT
        assert contact.id == primary.id

    def test_cannot_alert_checked_in(self, scheduler, db_session, started_check):
        scheduler.check_in(db_session, started_check.id)
        with pytest.raises(SafetyCheckError, match="Cannot alert"):
            scheduler.raise_alert(db_session, started_check.id)

    def test_check_in_all(self, scheduler, db_session, make_booking, clock):
        for hours in (1, 2):
            booking = make_booking(date_time=clock() - timedelta(hours=hours), requires_safety_check=True)
            scheduler.ensure_check(db_session, booking)
        assert len(active_checks(db_session)) == 2
        assert scheduler.check_in_all(db_session) == 2
        assert active_checks(db_session) == []

    def test_unknown_check(self, scheduler, db_session):
        with pytest.raises(SafetyCheckError, match="not found"):
            scheduler.check_in(db_session, "missing")


def test_new_primary_contact_demotes_previous(db_session):
    old = add_contact(db_session, "Robin", "555-0100", is_primary=True)
    new = add_contact(db_session, "Casey", "555-0199", is_primary=True)
    db_session.refresh(old)
    assert old.is_primary is False
    assert resolve_contact(db_session, None).id == new.id


def test_contact_requires_phone(db_session):
    with pytest.raises(SafetyCheckError):
        add_contact(db_session, "Robin", "  ")
