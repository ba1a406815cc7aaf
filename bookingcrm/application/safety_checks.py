"""
Safety check scheduler

Creates the check-in when a booking starts, warns five minutes before the
grace period runs out and escalates pending checks to overdue afterwards.
"""
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from bookingcrm.application.notifications import NotificationSink, notify
from bookingcrm.config import Settings, get_settings
from bookingcrm.domain.safety_check import (
    ALERT_FROM, CHECK_IN_FROM, SafetyCheckError, SafetyCheckStatus, deadline,
    in_reminder_window, is_overdue, scheduled_check_time,
)
from bookingcrm.infrastructure.db.models import (
    BookingModel, ClientModel, SafetyCheckModel, SafetyContactModel, new_id,
)
from bookingcrm.infrastructure.repository import EntityStore
from bookingcrm.utils.clock import Clock, local_now

logger = logging.getLogger(__name__)


class SafetyCheckScheduler:
    """
    Owns the once-per-process notification bookkeeping

    One instance lives as long as the poll loop; the sets of already
    notified check ids are instance state so separate schedulers (tests,
    multiple apps) never share them.
    """

    def __init__(
        self,
        sink: NotificationSink | None = None,
        clock: Clock = local_now,
        settings: Settings | None = None,
    ):
        self.sink = sink
        self.clock = clock
        self.settings = settings or get_settings()
        self._reminded: set[str] = set()
        self._overdue_notified: set[str] = set()

    def ensure_check(self, db: Session, booking: BookingModel) -> SafetyCheckModel | None:
        """
        Create the booking's check-in unless it already has one

        Returns:
            The new check, or None if the booking needs none or already has one
        """
        if not booking.requires_safety_check:
            return None

        store = EntityStore(db)
        if store.first(SafetyCheckModel, "booking_id", booking.id) is not None:
            return None

        with store.atomic():
            check = store.put(SafetyCheckModel(
                id=new_id(),
                booking_id=booking.id,
                safety_contact_id=booking.safety_contact_id,
                scheduled_time=scheduled_check_time(
                    booking.date_time,
                    booking.safety_check_minutes_after,
                    self.settings.DEFAULT_SAFETY_CHECK_MINUTES_AFTER,
                ),
                buffer_minutes=self.settings.SAFETY_BUFFER_MINUTES,
                status=SafetyCheckStatus.PENDING,
            ))
        logger.info("Safety check %s scheduled at %s for booking %s",
                    check.id, check.scheduled_time, booking.id)
        return check

    def process_due(self, db: Session, now: datetime | None = None) -> int:
        """
        Remind and escalate pending checks

        Returns:
            Number of checks moved to overdue
        """
        now = now or self.clock()
        store = EntityStore(db)
        escalated = 0

        for check in store.query(SafetyCheckModel, "status", SafetyCheckStatus.PENDING):
            try:
                if is_overdue(now, check.scheduled_time, check.buffer_minutes):
                    with store.atomic():
                        check.status = SafetyCheckStatus.OVERDUE
                        db.flush()
                    escalated += 1
                    logger.warning("Safety check %s overdue (booking %s)", check.id, check.booking_id)
                    self._notify_overdue(db, check)
                elif in_reminder_window(
                    now, check.scheduled_time, check.buffer_minutes,
                    self.settings.SAFETY_REMINDER_LEAD_MINUTES,
                ):
                    self._notify_reminder(db, check)
            except Exception:
                logger.exception("Safety check %s processing failed", check.id)

        return escalated

    def _client_alias(self, db: Session, booking_id: str) -> str:
        booking = db.get(BookingModel, booking_id)
        if booking is not None and booking.client_id:
            client = db.get(ClientModel, booking.client_id)
            if client is not None:
                return client.alias
        return "client"

    def _notify_reminder(self, db: Session, check: SafetyCheckModel) -> None:
        if check.id in self._reminded:
            return
        self._reminded.add(check.id)
        due = deadline(check.scheduled_time, check.buffer_minutes)
        notify(
            self.sink,
            "Safety check-in due soon",
            f"Check in before {due.strftime('%H:%M')} - booking with {self._client_alias(db, check.booking_id)}",
            tag=f"safety-reminder-{check.id}",
        )

    def _notify_overdue(self, db: Session, check: SafetyCheckModel) -> None:
        if check.id in self._overdue_notified:
            return
        self._overdue_notified.add(check.id)
        notify(
            self.sink,
            "Safety check-in overdue",
            f"You missed your check-in for the booking with {self._client_alias(db, check.booking_id)}. "
            "Check in now or alert your safety contact.",
            tag=f"safety-overdue-{check.id}",
            require_interaction=True,
        )

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def check_in(self, db: Session, check_id: str) -> SafetyCheckModel:
        store = EntityStore(db)
        with store.atomic():
            check = _get_check(store, check_id)
            if check.status not in CHECK_IN_FROM:
                raise SafetyCheckError(f"Cannot check in from status {check.status.value}")
            check.status = SafetyCheckStatus.CHECKED_IN
            check.checked_in_at = self.clock()
            db.flush()
        return check

    def check_in_all(self, db: Session) -> int:
        """Check in every pending or overdue check."""
        store = EntityStore(db)
        count = 0
        with store.atomic():
            for check in active_checks(db):
                check.status = SafetyCheckStatus.CHECKED_IN
                check.checked_in_at = self.clock()
                count += 1
            db.flush()
        return count

    def raise_alert(self, db: Session, check_id: str) -> tuple[SafetyCheckModel, SafetyContactModel | None]:
        """
        Escalate a missed check-in

        Returns:
            The check and the contact to reach (the check's own contact,
            else the primary active one)
        """
        store = EntityStore(db)
        with store.atomic():
            check = _get_check(store, check_id)
            if check.status not in ALERT_FROM:
                raise SafetyCheckError(f"Cannot alert from status {check.status.value}")
            check.status = SafetyCheckStatus.ALERT
            db.flush()
        logger.warning("Safety alert raised for check %s", check.id)
        return check, resolve_contact(db, check.safety_contact_id)


def _get_check(store: EntityStore, check_id: str) -> SafetyCheckModel:
    check = store.get(SafetyCheckModel, check_id)
    if check is None:
        raise SafetyCheckError(f"Safety check {check_id} not found")
    return check


def active_checks(db: Session) -> list[SafetyCheckModel]:
    """Pending and overdue checks, earliest first."""
    return (
        db.query(SafetyCheckModel)
        .filter(SafetyCheckModel.status.in_([SafetyCheckStatus.PENDING, SafetyCheckStatus.OVERDUE]))
        .order_by(SafetyCheckModel.scheduled_time.asc())
        .all()
    )


def resolve_contact(db: Session, contact_id: str | None) -> SafetyContactModel | None:
    if contact_id:
        contact = db.get(SafetyContactModel, contact_id)
        if contact is not None and contact.is_active:
            return contact
    return (
        db.query(SafetyContactModel)
        .filter(SafetyContactModel.is_active.is_(True))
        .order_by(SafetyContactModel.is_primary.desc())
        .first()
    )


def list_contacts(db: Session) -> list[SafetyContactModel]:
    return (
        db.query(SafetyContactModel)
        .filter(SafetyContactModel.is_active.is_(True))
        .order_by(SafetyContactModel.is_primary.desc(), SafetyContactModel.name.asc())
        .all()
    )


def add_contact(
    db: Session,
    name: str,
    phone: str,
    relationship: str = "",
    is_primary: bool = False,
) -> SafetyContactModel:
    """Add a safety contact; a new primary contact demotes the previous one."""
    name, phone = (name or "").strip(), (phone or "").strip()
    if not name or not phone:
        raise SafetyCheckError("Safety contact needs a name and a phone number")

    store = EntityStore(db)
    with store.atomic():
        if is_primary:
            db.query(SafetyContactModel).filter(SafetyContactModel.is_primary.is_(True)).update(
                {SafetyContactModel.is_primary: False}, synchronize_session="fetch",
            )
        contact = store.put(SafetyContactModel(
            id=new_id(),
            name=name,
            phone=phone,
            relationship=relationship or "",
            is_primary=is_primary,
            is_active=True,
        ))
    return contact
