"""
Booking lifecycle engine

Automatic transitions (evaluated in priority order, repeated until none applies):
  1. Screening -> Pending Deposit | Confirmed    client became Screened
  2. Pending Deposit -> Confirmed                deposit received
  3. Confirmed -> In Progress                    start time reached
  4. In Progress -> Completed                    end time + grace reached

Manual transitions go through set_status() / cancel() / mark_no_show() and are
validated against MANUAL_TRANSITIONS. The automatic engine never cancels and
never moves a booking backwards.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from bookingcrm.application.ledger import PaymentLedger
from bookingcrm.application.notifications import NotificationSink, notify
from bookingcrm.application.recurrence import RecurrenceSpawner
from bookingcrm.application.safety_checks import SafetyCheckScheduler
from bookingcrm.config import Settings, get_settings
from bookingcrm.domain.booking import (
    STATUS_RANK, BookingStatus, CancelledBy, DepositOutcome, InvalidTransitionError, ScreeningStatus,
    assert_manual_transition, completion_due_at, escalate_risk, screened_target,
)
from bookingcrm.domain.ledger import LedgerValidationError, PaymentLabel
from bookingcrm.infrastructure.db.models import BookingModel, ClientModel
from bookingcrm.infrastructure.repository import EntityStore
from bookingcrm.utils.clock import Clock, local_now

logger = logging.getLogger(__name__)


@dataclass
class EvaluationResult:
    transitions: list[tuple[BookingStatus, BookingStatus]] = field(default_factory=list)
    spawned_id: str | None = None
    check_created: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.transitions)


class BookingLifecycleEngine:
    """
    One engine per DB session

    Usage:
        engine = BookingLifecycleEngine(db, safety=scheduler, sink=sink)
        result = engine.evaluate(booking)
    """

    def __init__(
        self,
        db: Session,
        safety: SafetyCheckScheduler | None = None,
        sink: NotificationSink | None = None,
        clock: Clock = local_now,
        settings: Settings | None = None,
    ):
        self.db = db
        self.store = EntityStore(db)
        self.clock = clock
        self.settings = settings or get_settings()
        self.sink = sink
        self.safety = safety or SafetyCheckScheduler(sink=sink, clock=clock, settings=self.settings)
        self.ledger = PaymentLedger(db, clock=clock)
        self.spawner = RecurrenceSpawner(db, clock=clock, settings=self.settings)

    # ------------------------------------------------------------------
    # Automatic transitions
    # ------------------------------------------------------------------

    def next_automatic_status(self, booking: BookingModel, now: datetime) -> BookingStatus | None:
        """First automatic rule that applies, or None."""
        status = booking.status

        if status == BookingStatus.SCREENING:
            client = self._client(booking)
            if client is not None and client.screening_status == ScreeningStatus.SCREENED:
                return screened_target(booking.deposit_amount, booking.deposit_received)
            return None

        if status == BookingStatus.PENDING_DEPOSIT:
            return BookingStatus.CONFIRMED if booking.deposit_received else None

        if status == BookingStatus.CONFIRMED:
            return BookingStatus.IN_PROGRESS if now >= booking.date_time else None

        if status == BookingStatus.IN_PROGRESS:
            due = completion_due_at(booking.date_time, booking.duration,
                                    self.settings.COMPLETION_GRACE_MINUTES)
            return BookingStatus.COMPLETED if now >= due else None

        return None

    def evaluate(self, booking: BookingModel, now: datetime | None = None) -> EvaluationResult:
        """
        Apply automatic transitions until the booking reaches a fixed point

        The whole chain, side effects included, commits as one unit. A
        second call with the same `now` changes nothing.
        """
        now = now or self.clock()
        result = EvaluationResult()
        completed = False

        with self.store.atomic():
            # bounded: every step strictly increases the rank
            for _ in range(len(STATUS_RANK)):
                target = self.next_automatic_status(booking, now)
                if target is None:
                    break
                previous = booking.status
                if STATUS_RANK[target] <= STATUS_RANK[previous]:
                    raise InvalidTransitionError(
                        f"Automatic move {previous.value} -> {target.value} is not forward"
                    )
                booking.status = target
                self._stamp(booking, target, now)
                result.transitions.append((previous, target))

                if target == BookingStatus.IN_PROGRESS:
                    result.check_created = self.safety.ensure_check(self.db, booking) is not None
                elif target == BookingStatus.COMPLETED:
                    self.settle(booking, now)
                    completed = True
                    child = self.spawner.spawn_next(booking)
                    if child is not None:
                        result.spawned_id = child.id
            self.db.flush()

        for previous, target in result.transitions:
            logger.info("Booking %s: %s -> %s", booking.id, previous.value, target.value)
        if completed:
            self._notify_completed(booking)
        return result

    # ------------------------------------------------------------------
    # Manual transitions
    # ------------------------------------------------------------------

    def set_status(self, booking: BookingModel, status: BookingStatus) -> BookingModel:
        """
        Editor / "advance" button status change

        Raises:
            InvalidTransitionError: the move is not in MANUAL_TRANSITIONS
        """
        status = BookingStatus(status)
        previous = booking.status
        assert_manual_transition(previous, status)
        if previous == status:
            return booking

        now = self.clock()
        with self.store.atomic():
            booking.status = status
            if previous == BookingStatus.CANCELLED:
                booking.cancelled_at = None
                booking.cancellation_reason = None
                booking.cancelled_by = None
                booking.deposit_outcome = None
            self.apply_status_effects(booking, status, now)

        logger.info("Booking %s manually set: %s -> %s", booking.id, previous.value, status.value)
        return booking

    def cancel(
        self,
        booking: BookingModel,
        reason: str | None = None,
        cancelled_by: CancelledBy | None = None,
        fee: int = 0,
        fee_method: str | None = None,
        deposit_outcome: DepositOutcome | None = None,
    ) -> BookingModel:
        with self.store.atomic():
            self.set_status(booking, BookingStatus.CANCELLED)
            booking.cancellation_reason = (reason or "").strip() or None
            booking.cancelled_by = CancelledBy(cancelled_by) if cancelled_by else None
            note = f"Cancellation fee - {booking.cancellation_reason}" if booking.cancellation_reason \
                else "Cancellation fee"
            self._apply_cancellation_money(booking, fee, fee_method, deposit_outcome, note)
        return booking

    def mark_no_show(
        self,
        booking: BookingModel,
        fee: int = 0,
        fee_method: str | None = None,
        deposit_outcome: DepositOutcome | None = None,
    ) -> BookingModel:
        with self.store.atomic():
            self.set_status(booking, BookingStatus.NO_SHOW)
            self._apply_cancellation_money(booking, fee, fee_method, deposit_outcome, "No-show fee")
        return booking

    def _apply_cancellation_money(
        self,
        booking: BookingModel,
        fee: int,
        fee_method: str | None,
        deposit_outcome: DepositOutcome | None,
        fee_note: str,
    ) -> None:
        if fee < 0:
            raise LedgerValidationError("Fee cannot be negative")
        if fee > 0:
            self.ledger.record_payment(
                booking.id, fee, PaymentLabel.CANCELLATION_FEE,
                method=fee_method, notes=fee_note, client_alias=self._alias(booking),
            )

        if deposit_outcome is None:
            return
        outcome = DepositOutcome(deposit_outcome)
        booking.deposit_outcome = outcome
        if outcome in (DepositOutcome.RETURNED, DepositOutcome.CREDIT):
            deposits = self.ledger.deposits_paid(booking.id)
            if deposits > 0:
                label = "returned" if outcome == DepositOutcome.RETURNED else "credited"
                self.ledger.record_refund(
                    booking.id, deposits, f"Deposit {label} - {self._alias(booking)}",
                )
        self.db.flush()

    # ------------------------------------------------------------------
    # Client-driven changes
    # ------------------------------------------------------------------

    def escalate_client_risk(self, client_id: str | None) -> None:
        if not client_id:
            return
        client = self.store.get(ClientModel, client_id)
        if client is None:
            return
        no_shows = (
            self.db.query(BookingModel)
            .filter(BookingModel.client_id == client_id, BookingModel.status == BookingStatus.NO_SHOW)
            .count()
        )
        new_level = escalate_risk(client.risk_level, no_shows)
        if new_level != client.risk_level:
            logger.info("Client %s risk %s -> %s after %d no-show(s)",
                        client.id, client.risk_level.value, new_level.value, no_shows)
            client.risk_level = new_level
            self.db.flush()

    def advance_bookings_on_screen(
        self, client_id: str, old: ScreeningStatus, new: ScreeningStatus,
    ) -> int:
        """Move the client's early-stage bookings forward once screening passes."""
        if new != ScreeningStatus.SCREENED or old == ScreeningStatus.SCREENED:
            return 0

        now = self.clock()
        moved = 0
        with self.store.atomic():
            bookings = (
                self.db.query(BookingModel)
                .filter(
                    BookingModel.client_id == client_id,
                    BookingModel.status.in_([BookingStatus.TO_BE_CONFIRMED, BookingStatus.SCREENING]),
                )
                .all()
            )
            for b in bookings:
                target = screened_target(b.deposit_amount, b.deposit_received)
                b.status = target
                self._stamp(b, target, now)
                moved += 1
            self.db.flush()

        if moved:
            logger.info("Client %s screened: advanced %d booking(s)", client_id, moved)
        return moved

    def downgrade_bookings_on_unscreen(
        self, client_id: str, old: ScreeningStatus, new: ScreeningStatus,
    ) -> int:
        """Send not-yet-started bookings back to Screening when a client loses Screened."""
        if old != ScreeningStatus.SCREENED or new == ScreeningStatus.SCREENED:
            return 0

        now = self.clock()
        moved = 0
        with self.store.atomic():
            bookings = (
                self.db.query(BookingModel)
                .filter(
                    BookingModel.client_id == client_id,
                    BookingModel.status.in_([BookingStatus.PENDING_DEPOSIT, BookingStatus.CONFIRMED]),
                    BookingModel.date_time > now,
                )
                .all()
            )
            for b in bookings:
                b.status = BookingStatus.SCREENING
                moved += 1
            self.db.flush()

        if moved:
            logger.info("Client %s unscreened: %d booking(s) back to Screening", client_id, moved)
        return moved

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _client(self, booking: BookingModel) -> ClientModel | None:
        if not booking.client_id:
            return None
        return self.store.get(ClientModel, booking.client_id)

    def _alias(self, booking: BookingModel) -> str:
        client = self._client(booking)
        return client.alias if client is not None else "client"

    @staticmethod
    def _stamp(booking: BookingModel, status: BookingStatus, now: datetime) -> None:
        if status == BookingStatus.CONFIRMED and booking.confirmed_at is None:
            booking.confirmed_at = now
        elif status == BookingStatus.COMPLETED:
            booking.completed_at = now
        elif status in (BookingStatus.CANCELLED, BookingStatus.NO_SHOW):
            booking.cancelled_at = now

    def apply_status_effects(self, booking: BookingModel, status: BookingStatus, now: datetime) -> None:
        """
        Side effects of a booking entering `status` by hand (editor or creation)

        Stamps the status timestamp, then: In Progress creates the safety
        check, Completed settles payment, No Show escalates the client's risk.
        """
        self._stamp(booking, status, now)
        if status == BookingStatus.IN_PROGRESS:
            self.safety.ensure_check(self.db, booking)
        elif status == BookingStatus.COMPLETED:
            self.settle(booking, now)
        elif status == BookingStatus.NO_SHOW:
            self.db.flush()
            self.escalate_client_risk(booking.client_id)
        self.db.flush()

    def settle(self, booking: BookingModel, now: datetime) -> None:
        """Completion side effects: payment settled, client last seen."""
        client = self._client(booking)
        self.ledger.complete_booking_payment(
            booking, client_alias=client.alias if client is not None else None,
        )
        if client is not None:
            client.last_seen = now
        self.db.flush()

    def _notify_completed(self, booking: BookingModel) -> None:
        notify(
            self.sink,
            "Session completed",
            f"{self._alias(booking)} · {booking.duration} min - tap to add session notes",
            tag="session-complete",
        )
