"""
SQLAlchemy ORM models

Money columns hold integer cents. Datetimes are naive wall-clock values in
the configured timezone.
"""
import uuid
from datetime import date as date_type, datetime

from sqlalchemy import (
    JSON, Boolean, Date, DateTime, Enum as SAEnum, ForeignKey, Integer, String, Text, func,
)
from sqlalchemy.orm import Mapped, mapped_column

from bookingcrm.domain.availability import AvailabilityStatus
from bookingcrm.domain.booking import (
    BookingStatus, CancelledBy, DepositOutcome, LocationType, Recurrence, RiskLevel,
    ScreeningStatus,
)
from bookingcrm.domain.ledger import PaymentLabel, TransactionCategory, TransactionType
from bookingcrm.domain.safety_check import SafetyCheckStatus
from bookingcrm.infrastructure.db.session import Base


def new_id() -> str:
    return str(uuid.uuid4())


def _enum(enum_cls):
    """Store str enums by value in a plain VARCHAR column."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class ClientModel(Base):
    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    alias: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    screening_status: Mapped[ScreeningStatus] = mapped_column(
        _enum(ScreeningStatus), nullable=False, default=ScreeningStatus.UNSCREENED, index=True
    )
    risk_level: Mapped[RiskLevel] = mapped_column(
        _enum(RiskLevel), nullable=False, default=RiskLevel.UNKNOWN, index=True
    )
    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_safety_check: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    date_added: Mapped[datetime] = mapped_column(DateTime, nullable=False, server_default=func.now())
    last_seen: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class BookingModel(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    # Weak reference: a booking may outlive its client
    client_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    date_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=60)  # minutes

    location_type: Mapped[LocationType] = mapped_column(
        _enum(LocationType), nullable=False, default=LocationType.INCALL
    )
    location_address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    location_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus), nullable=False, default=BookingStatus.TO_BE_CONFIRMED, index=True
    )

    base_rate: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    extras: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    travel_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deposit_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deposit_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Caches of ledger facts, recomputed by PaymentLedger
    deposit_received: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_received: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    requires_safety_check: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    safety_check_minutes_after: Mapped[int] = mapped_column(Integer, nullable=False, default=15)
    safety_contact_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    recurrence: Mapped[Recurrence] = mapped_column(
        _enum(Recurrence), nullable=False, default=Recurrence.NONE
    )
    parent_booking_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    recurrence_root_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[CancelledBy | None] = mapped_column(_enum(CancelledBy), nullable=True)
    deposit_outcome: Mapped[DepositOutcome | None] = mapped_column(_enum(DepositOutcome), nullable=True)


class BookingPaymentModel(Base):
    """
    Ledger row: money received against a booking
    """
    __tablename__ = "booking_payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    booking_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    label: Mapped[PaymentLabel] = mapped_column(_enum(PaymentLabel), nullable=False, index=True)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class TransactionModel(Base):
    """
    Financial ledger entry (income or expense), optionally tied to a booking
    """
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    booking_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    payment_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("booking_payments.id", ondelete="SET NULL"), nullable=True, index=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(_enum(TransactionType), nullable=False, index=True)
    category: Mapped[TransactionCategory] = mapped_column(
        _enum(TransactionCategory), nullable=False, default=TransactionCategory.OTHER, index=True
    )
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")


class SafetyContactModel(Base):
    __tablename__ = "safety_contacts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(64), nullable=False)
    relationship: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)


class SafetyCheckModel(Base):
    """
    Scheduled check-in for a booking (at most one per booking)
    """
    __tablename__ = "safety_checks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    booking_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True)
    safety_contact_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    scheduled_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    buffer_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=15)
    status: Mapped[SafetyCheckStatus] = mapped_column(
        _enum(SafetyCheckStatus), nullable=False, default=SafetyCheckStatus.PENDING, index=True
    )
    checked_in_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class DayAvailabilityModel(Base):
    __tablename__ = "availability"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    date: Mapped[date_type] = mapped_column(Date, nullable=False, unique=True, index=True)
    status: Mapped[AvailabilityStatus] = mapped_column(
        _enum(AvailabilityStatus), nullable=False, default=AvailabilityStatus.AVAILABLE
    )
    start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)  # "09:00"
    end_time: Mapped[str | None] = mapped_column(String(5), nullable=True)    # "22:00"
    # [{"start": "14:00", "end": "16:30", "booking_id": "..."}]
    open_slots: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class AppMetadata(Base):
    """
    Installation-level key/value markers (one-time migrations etc.)
    """
    __tablename__ = "app_metadata"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )


class PushSubscription(Base):
    """Web Push subscription for a device."""
    __tablename__ = "push_subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    endpoint: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    p256dh: Mapped[str] = mapped_column(Text, nullable=False)
    auth: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
