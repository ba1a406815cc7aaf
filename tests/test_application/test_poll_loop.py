"""Tests for the poll loop - ticks, idempotence and error isolation."""
from datetime import timedelta

import pytest

from bookingcrm.application.ledger import LEDGER_MIGRATION_KEY
from bookingcrm.application.lifecycle import BookingLifecycleEngine
from bookingcrm.application.poll import PollLoop
from bookingcrm.domain.booking import BookingStatus, Recurrence
from bookingcrm.domain.safety_check import SafetyCheckStatus
from bookingcrm.infrastructure.db.models import AppMetadata, BookingModel, SafetyCheckModel


@pytest.fixture
def loop(session_factory, sink, clock, settings):
    return PollLoop(session_factory=session_factory, sink=sink, clock=clock, settings=settings)


def test_tick_advances_due_bookings(loop, db_session, make_booking, clock):
    started = make_booking(date_time=clock() - timedelta(minutes=10))
    finished = make_booking(date_time=clock() - timedelta(hours=3), recurrence=Recurrence.WEEKLY)
    future = make_booking(date_time=clock() + timedelta(days=1))

    report = loop.run_tick()

    db_session.expire_all()
    assert db_session.get(BookingModel, started.id).status == BookingStatus.IN_PROGRESS
    assert db_session.get(BookingModel, finished.id).status == BookingStatus.COMPLETED
    assert db_session.get(BookingModel, future.id).status == BookingStatus.CONFIRMED
    assert report.transitions == 3
    assert report.completed == [finished.id]
    assert len(report.spawned) == 1
    assert report.errors == 0


def test_second_tick_is_noop(loop, db_session, make_booking, clock, sink):
    make_booking(date_time=clock() - timedelta(minutes=20), requires_safety_check=True)
    make_booking(date_time=clock() - timedelta(hours=3), recurrence=Recurrence.WEEKLY)
    loop.run_tick()
    bookings_before = db_session.query(BookingModel).count()
    notifications_before = len(sink.fired)

    report = loop.run_tick()

    assert report.idle
    assert db_session.query(BookingModel).count() == bookings_before
    assert len(sink.fired) == notifications_before


def test_overlapping_tick_is_dropped(loop):
    assert loop._lock.acquire(blocking=False)
    try:
        assert loop.run_tick() is None
        assert loop.wake() is None
    finally:
        loop._lock.release()
    assert loop.run_tick() is not None


def test_failing_booking_does_not_block_others(loop, db_session, make_booking, clock, monkeypatch):
    bad = make_booking(date_time=clock() - timedelta(minutes=5))
    good = make_booking(date_time=clock() - timedelta(minutes=5))
    original = BookingLifecycleEngine.evaluate

    def flaky(self, booking, now=None):
        if booking.id == bad.id:
            raise RuntimeError("boom")
        return original(self, booking, now)

    monkeypatch.setattr(BookingLifecycleEngine, "evaluate", flaky)
    report = loop.run_tick()

    db_session.expire_all()
    assert report.errors == 1
    assert db_session.get(BookingModel, good.id).status == BookingStatus.IN_PROGRESS
    assert db_session.get(BookingModel, bad.id).status == BookingStatus.CONFIRMED


def test_tick_escalates_safety_checks(loop, db_session, make_booking, clock, sink):
    booking = make_booking(date_time=clock(), requires_safety_check=True, duration=120)
    report = loop.run_tick()
    assert report.checks_created == 1

    clock.advance(minutes=30)
    report = loop.run_tick()

    db_session.expire_all()
    check = db_session.query(SafetyCheckModel).filter(SafetyCheckModel.booking_id == booking.id).one()
    assert report.overdue == 1
    assert check.status == SafetyCheckStatus.OVERDUE
    assert sink.tags().count(f"safety-overdue-{check.id}") == 1


def test_migrate_runs_once(loop, db_session, make_booking):
    make_booking(deposit_amount=10000, deposit_received=True)
    assert loop.migrate() == 1
    assert loop.migrate() == 0
    assert db_session.get(AppMetadata, LEDGER_MIGRATION_KEY) is not None


def test_start_and_shutdown(session_factory, sink, clock, settings):
    settings.POLL_ON_STARTUP = False
    loop = PollLoop(session_factory=session_factory, sink=sink, clock=clock, settings=settings)

    loop.start()
    try:
        assert loop.running
    finally:
        loop.shutdown()
    assert not loop.running
