"""
Booking use cases - create / update / delete

Availability and double-booking checks run here, at edit time only.
"""
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from bookingcrm.application.availability import (
    check_availability_conflict, narrow_availability_to_booking,
)
from bookingcrm.application.lifecycle import BookingLifecycleEngine
from bookingcrm.application.notifications import NotificationSink
from bookingcrm.application.plan_limits import PlanLimitError, can_add_booking
from bookingcrm.config import Settings, get_settings
from bookingcrm.domain.availability import AvailabilityConflict
from bookingcrm.domain.booking import (
    BookingStatus, LocationType, Recurrence, forces_safety_check,
)
from bookingcrm.domain.ledger import PaymentLabel
from bookingcrm.infrastructure.db.models import (
    BookingModel, BookingPaymentModel, ClientModel, SafetyCheckModel, TransactionModel, new_id,
)
from bookingcrm.infrastructure.repository import EntityStore
from bookingcrm.utils.clock import Clock, local_now, to_local_naive

logger = logging.getLogger(__name__)

TRAVEL_LOCATIONS = (LocationType.OUTCALL, LocationType.TRAVEL)

# Fields the editor may change directly; status goes through the lifecycle engine
EDITABLE_FIELDS = frozenset({
    "client_id", "date_time", "duration", "location_type", "location_address",
    "location_notes", "base_rate", "extras", "travel_fee", "deposit_amount",
    "deposit_method", "payment_method", "notes", "requires_safety_check",
    "safety_check_minutes_after", "safety_contact_id", "recurrence",
})


class BookingValidationError(ValueError):
    pass


class BookingConflictError(ValueError):
    """The booking collides with another booking or with the day's availability"""

    def __init__(self, conflict: AvailabilityConflict):
        super().__init__(conflict.reason)
        self.conflict = conflict


def _validate_amounts(**amounts: int) -> None:
    for name, value in amounts.items():
        if value is None or value < 0:
            raise BookingValidationError(f"{name} cannot be negative")


def _resolve_conflict(
    db: Session,
    start: datetime,
    duration: int,
    exclude_booking_id: str | None,
    override: bool,
) -> AvailabilityConflict:
    """
    Raises BookingConflictError unless there is no conflict or the user
    explicitly overrides it.
    """
    conflict = check_availability_conflict(db, start, duration, exclude_booking_id)
    if conflict.has_conflict and not override:
        raise BookingConflictError(conflict)
    if conflict.has_conflict:
        logger.info("Booking at %s saved despite conflict: %s", start, conflict.reason)
    return conflict


class CreateBookingUseCase:
    def __init__(
        self,
        db: Session,
        clock: Clock = local_now,
        settings: Settings | None = None,
        sink: NotificationSink | None = None,
    ):
        self.db = db
        self.store = EntityStore(db)
        self.clock = clock
        self.settings = settings or get_settings()
        self.engine = BookingLifecycleEngine(db, sink=sink, clock=clock, settings=self.settings)

    def execute(
        self,
        date_time: datetime,
        duration: int = 60,
        client_id: str | None = None,
        status: BookingStatus = BookingStatus.TO_BE_CONFIRMED,
        location_type: LocationType = LocationType.INCALL,
        location_address: str | None = None,
        location_notes: str | None = None,
        base_rate: int = 0,
        extras: int = 0,
        travel_fee: int = 0,
        deposit_amount: int = 0,
        deposit_method: str | None = None,
        deposit_received: bool = False,
        payment_method: str | None = None,
        notes: str = "",
        requires_safety_check: bool = True,
        safety_check_minutes_after: int | None = None,
        safety_contact_id: str | None = None,
        recurrence: Recurrence = Recurrence.NONE,
        override: bool = False,
    ) -> BookingModel:
        """
        Create a booking

        Raises:
            BookingValidationError: bad duration / amounts / unknown client
            PlanLimitError: free plan monthly booking limit reached
            BookingConflictError: conflict and override is False
        """
        status = BookingStatus(status)
        location_type = LocationType(location_type)
        date_time = to_local_naive(date_time)
        if duration <= 0:
            raise BookingValidationError("Duration must be greater than zero")
        _validate_amounts(base_rate=base_rate, extras=extras, travel_fee=travel_fee,
                          deposit_amount=deposit_amount)

        client = None
        if client_id:
            client = self.store.get(ClientModel, client_id)
            if client is None:
                raise BookingValidationError(f"Client {client_id} not found")

        now = self.clock()
        if not can_add_booking(self.db, now, self.settings):
            raise PlanLimitError(
                f"Free plan allows {self.settings.FREE_MONTHLY_BOOKING_LIMIT} bookings per month"
            )

        conflict = _resolve_conflict(self.db, date_time, duration, None, override)

        if client is not None and forces_safety_check(client.risk_level):
            requires_safety_check = True
        if location_type not in TRAVEL_LOCATIONS:
            travel_fee = 0

        with self.store.atomic():
            booking = self.store.put(BookingModel(
                id=new_id(),
                client_id=client_id,
                date_time=date_time,
                duration=duration,
                location_type=location_type,
                location_address=location_address,
                location_notes=location_notes,
                status=status,
                base_rate=base_rate,
                extras=extras,
                travel_fee=travel_fee,
                deposit_amount=deposit_amount,
                deposit_method=deposit_method,
                payment_method=payment_method,
                deposit_received=False,
                payment_received=False,
                notes=notes or "",
                requires_safety_check=requires_safety_check,
                safety_check_minutes_after=(
                    safety_check_minutes_after or self.settings.DEFAULT_SAFETY_CHECK_MINUTES_AFTER
                ),
                safety_contact_id=safety_contact_id,
                recurrence=Recurrence(recurrence),
                created_at=now,
            ))

            if deposit_received and deposit_amount > 0:
                self.engine.ledger.record_payment(
                    booking.id, deposit_amount, PaymentLabel.DEPOSIT,
                    method=deposit_method,
                    client_alias=client.alias if client is not None else None,
                    paid_at=now,
                )

            self.engine.apply_status_effects(booking, status, now)

            if conflict.has_conflict and not conflict.is_double_book:
                narrow_availability_to_booking(self.db, date_time, duration, booking.id)

        logger.info("Booking %s created (%s, %s)", booking.id, status.value, date_time)
        return booking


class UpdateBookingUseCase:
    def __init__(
        self,
        db: Session,
        clock: Clock = local_now,
        settings: Settings | None = None,
        sink: NotificationSink | None = None,
    ):
        self.db = db
        self.store = EntityStore(db)
        self.clock = clock
        self.settings = settings or get_settings()
        self.engine = BookingLifecycleEngine(db, sink=sink, clock=clock, settings=self.settings)

    def execute(self, booking_id: str, override: bool = False, **changes) -> BookingModel:
        """
        Apply editor changes to a booking

        `status` is routed through the lifecycle engine; `deposit_received=True`
        records the deposit on the ledger when none is there yet.
        """
        booking = self.store.get(BookingModel, booking_id)
        if booking is None:
            raise BookingValidationError(f"Booking {booking_id} not found")

        status = changes.pop("status", None)
        deposit_received = changes.pop("deposit_received", None)
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise BookingValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        if changes.get("duration") is not None and changes["duration"] <= 0:
            raise BookingValidationError("Duration must be greater than zero")
        _validate_amounts(**{
            k: v for k, v in changes.items()
            if k in ("base_rate", "extras", "travel_fee", "deposit_amount")
        })
        if changes.get("client_id") and self.store.get(ClientModel, changes["client_id"]) is None:
            raise BookingValidationError(f"Client {changes['client_id']} not found")

        if changes.get("date_time") is not None:
            changes["date_time"] = to_local_naive(changes["date_time"])
        new_start = changes.get("date_time") or booking.date_time
        new_duration = changes.get("duration") or booking.duration
        conflict = AvailabilityConflict.none()
        if new_start != booking.date_time or new_duration != booking.duration:
            conflict = _resolve_conflict(self.db, new_start, new_duration, booking.id, override)

        with self.store.atomic():
            for key, value in changes.items():
                if key == "location_type":
                    value = LocationType(value)
                elif key == "recurrence":
                    value = Recurrence(value)
                setattr(booking, key, value)
            if booking.location_type not in TRAVEL_LOCATIONS:
                booking.travel_fee = 0

            if deposit_received and booking.deposit_amount > 0 \
                    and self.engine.ledger.deposits_paid(booking.id) == 0:
                self.engine.ledger.record_payment(
                    booking.id, booking.deposit_amount, PaymentLabel.DEPOSIT,
                    method=booking.deposit_method,
                )
            self.engine.ledger.reconcile(booking)

            if status is not None:
                self.engine.set_status(booking, BookingStatus(status))

            if conflict.has_conflict and not conflict.is_double_book:
                narrow_availability_to_booking(self.db, new_start, new_duration, booking.id)

        return booking


class DeleteBookingUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.store = EntityStore(db)

    def execute(self, booking_id: str) -> None:
        booking = self.store.get(BookingModel, booking_id)
        if booking is None:
            raise BookingValidationError(f"Booking {booking_id} not found")

        with self.store.atomic():
            delete_booking_rows(self.store, booking)
        logger.info("Booking %s deleted", booking_id)


def delete_booking_rows(store: EntityStore, booking: BookingModel) -> None:
    """Remove a booking together with its ledger, transactions and safety check."""
    store.delete_where(TransactionModel, "booking_id", booking.id)
    store.delete_where(BookingPaymentModel, "booking_id", booking.id)
    store.delete_where(SafetyCheckModel, "booking_id", booking.id)
    store.delete(booking)
