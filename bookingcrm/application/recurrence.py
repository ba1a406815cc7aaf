"""
Recurrence spawner - creates the next booking of a repeating series

Called when a booking is completed by the automatic engine. Every gate that
fails is a silent skip: nothing is created and nothing is raised.
"""
import logging

from sqlalchemy.orm import Session

from bookingcrm.application.plan_limits import can_add_booking
from bookingcrm.config import Settings, get_settings
from bookingcrm.domain.booking import BookingStatus, Recurrence, ScreeningStatus
from bookingcrm.domain.recurrence import chain_root_id, next_occurrence
from bookingcrm.infrastructure.db.models import BookingModel, ClientModel, new_id
from bookingcrm.infrastructure.repository import EntityStore
from bookingcrm.utils.clock import Clock, local_now

logger = logging.getLogger(__name__)


class RecurrenceSpawner:
    def __init__(self, db: Session, clock: Clock = local_now, settings: Settings | None = None):
        self.db = db
        self.store = EntityStore(db)
        self.clock = clock
        self.settings = settings or get_settings()

    def skip_reason(self, booking: BookingModel) -> str | None:
        """Why no successor may be spawned, or None when every gate passes."""
        if booking.recurrence == Recurrence.NONE:
            return "not recurring"
        if self.store.first(BookingModel, "parent_booking_id", booking.id) is not None:
            return "successor already exists"
        if booking.client_id:
            client = self.store.get(ClientModel, booking.client_id)
            if client is None:
                return "client deleted"
            if client.screening_status != ScreeningStatus.SCREENED:
                return "client not screened"
        if not can_add_booking(self.db, self.clock(), self.settings):
            return "plan booking limit reached"
        return None

    def spawn_next(self, booking: BookingModel) -> BookingModel | None:
        """
        Create the next occurrence of a recurring booking

        The successor is dated from the original booking's start (not from
        now), keeps the time of day and starts out Confirmed.

        Returns:
            The new booking, or None if a gate stopped it
        """
        reason = self.skip_reason(booking)
        if reason is not None:
            logger.debug("No successor for booking %s: %s", booking.id, reason)
            return None

        next_start = next_occurrence(booking.date_time, booking.recurrence)
        if next_start is None:
            return None

        now = self.clock()
        with self.store.atomic():
            child = self.store.put(BookingModel(
                id=new_id(),
                client_id=booking.client_id,
                date_time=next_start,
                duration=booking.duration,
                location_type=booking.location_type,
                location_address=booking.location_address,
                location_notes=booking.location_notes,
                status=BookingStatus.CONFIRMED,
                base_rate=booking.base_rate,
                extras=booking.extras,
                travel_fee=booking.travel_fee,
                deposit_amount=booking.deposit_amount,
                deposit_method=booking.deposit_method,
                payment_method=booking.payment_method,
                deposit_received=False,
                payment_received=False,
                notes="",
                requires_safety_check=booking.requires_safety_check,
                safety_check_minutes_after=booking.safety_check_minutes_after,
                safety_contact_id=booking.safety_contact_id,
                recurrence=booking.recurrence,
                parent_booking_id=booking.id,
                recurrence_root_id=chain_root_id(booking.id, booking.recurrence_root_id),
                created_at=now,
                confirmed_at=now,
            ))

        logger.info("Spawned booking %s (%s) after %s", child.id, next_start, booking.id)
        return child


def series(db: Session, root_id: str) -> list[BookingModel]:
    """Every booking of a chain, root first, in date order."""
    return (
        db.query(BookingModel)
        .filter((BookingModel.id == root_id) | (BookingModel.recurrence_root_id == root_id))
        .order_by(BookingModel.date_time.asc())
        .all()
    )
