"""
Availability and double-booking checks

Run only when a booking is created or edited, never by the automatic engine.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from bookingcrm.domain.availability import (
    AvailabilityConflict, AvailabilityStatus, DayRules, TimeSlot, booking_slot, evaluate_day,
    format_time12, merge_slots,
)
from bookingcrm.domain.booking import INACTIVE_STATUSES, booking_end, overlaps
from bookingcrm.infrastructure.db.models import BookingModel, DayAvailabilityModel, new_id
from bookingcrm.infrastructure.repository import EntityStore

logger = logging.getLogger(__name__)


def find_overlapping_booking(
    db: Session,
    start: datetime,
    duration: int,
    exclude_booking_id: str | None = None,
) -> BookingModel | None:
    """First active booking whose time range overlaps [start, start + duration)."""
    end = booking_end(start, duration)
    # Bookings are at most a day long in practice; widen the window generously
    candidates = (
        db.query(BookingModel)
        .filter(
            BookingModel.date_time < end,
            BookingModel.date_time >= start - timedelta(days=7),
            BookingModel.status.notin_(list(INACTIVE_STATUSES)),
        )
        .order_by(BookingModel.date_time.asc())
        .all()
    )
    for b in candidates:
        if b.id == exclude_booking_id:
            continue
        if overlaps(start, end, b.date_time, booking_end(b.date_time, b.duration)):
            return b
    return None


def day_rules(record: DayAvailabilityModel | None) -> DayRules | None:
    if record is None:
        return None
    return DayRules(
        status=AvailabilityStatus(record.status),
        start_time=record.start_time,
        end_time=record.end_time,
        open_slots=[TimeSlot.from_dict(s) for s in (record.open_slots or [])],
    )


def check_availability_conflict(
    db: Session,
    start: datetime,
    duration: int,
    exclude_booking_id: str | None = None,
) -> AvailabilityConflict:
    """
    Check a booking window against other bookings and the day's availability

    A double booking is reported before any availability conflict.
    """
    overlapping = find_overlapping_booking(db, start, duration, exclude_booking_id)
    if overlapping is not None:
        return AvailabilityConflict(
            has_conflict=True,
            reason="This overlaps with an existing booking at "
                   f"{format_time12(overlapping.date_time.strftime('%H:%M'))}.",
            is_double_book=True,
            conflicting_booking_id=overlapping.id,
        )

    record = EntityStore(db).first(DayAvailabilityModel, "date", start.date())
    return evaluate_day(day_rules(record), start.strftime("%H:%M"), duration)


def narrow_availability_to_booking(
    db: Session,
    start: datetime,
    duration: int,
    booking_id: str | None = None,
) -> DayAvailabilityModel:
    """
    Open the booking's slot on a day that was Off / Busy / Limited

    The day becomes Limited and the booking's half-hour aligned slot is merged
    into its open slots.
    """
    store = EntityStore(db)
    slot = booking_slot(start.strftime("%H:%M"), duration, booking_id)

    with store.atomic():
        record = store.first(DayAvailabilityModel, "date", start.date())
        if record is None:
            record = DayAvailabilityModel(
                id=new_id(),
                date=start.date(),
                status=AvailabilityStatus.LIMITED,
                open_slots=[slot.to_dict()],
            )
        else:
            current = [TimeSlot.from_dict(s) for s in (record.open_slots or [])]
            record.status = AvailabilityStatus.LIMITED
            # Reassign so the JSON column is marked dirty
            record.open_slots = [s.to_dict() for s in merge_slots([*current, slot])]
        store.put(record)

    logger.info("Availability on %s narrowed to include %s-%s", start.date(), slot.start, slot.end)
    return record
