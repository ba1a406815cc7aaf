"""
Free tier limits

A Pro installation has no limits. Free installations may keep a handful of
active clients and create a limited number of bookings per calendar month
(spawned recurring bookings count too).
"""
from datetime import datetime

from sqlalchemy.orm import Session

from bookingcrm.config import Settings, get_settings
from bookingcrm.infrastructure.db.models import BookingModel, ClientModel


class PlanLimitError(ValueError):
    """The free plan does not allow this"""
    pass


def is_pro(settings: Settings | None = None) -> bool:
    return (settings or get_settings()).PRO_ACTIVATED


def monthly_booking_count(db: Session, now: datetime) -> int:
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return db.query(BookingModel).filter(BookingModel.created_at >= month_start).count()


def active_client_count(db: Session) -> int:
    return db.query(ClientModel).filter(ClientModel.is_blocked.is_(False)).count()


def can_add_booking(db: Session, now: datetime, settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    if settings.PRO_ACTIVATED:
        return True
    return monthly_booking_count(db, now) < settings.FREE_MONTHLY_BOOKING_LIMIT


def can_add_client(db: Session, settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    if settings.PRO_ACTIVATED:
        return True
    return active_client_count(db) < settings.FREE_CLIENT_LIMIT
