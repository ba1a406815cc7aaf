"""
Booking API endpoints
"""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from bookingcrm.api.deps import get_clock, get_db, get_sink, http_error
from bookingcrm.application.availability import check_availability_conflict
from bookingcrm.application.bookings import (
    CreateBookingUseCase, DeleteBookingUseCase, UpdateBookingUseCase,
)
from bookingcrm.application.lifecycle import BookingLifecycleEngine
from bookingcrm.application.recurrence import series
from bookingcrm.domain.booking import (
    BookingStatus, CancelledBy, DepositOutcome, LocationType, Recurrence, booking_end, booking_total,
)
from bookingcrm.infrastructure.db.models import BookingModel
from bookingcrm.utils.clock import Clock, to_local_naive
from bookingcrm.utils.money import cents_to_str, to_cents
from bookingcrm.utils.validation import validate_and_normalize_amount

router = APIRouter(prefix="/api/v1/bookings", tags=["bookings"])

# An explicit null clears these; for every other field null means "unchanged"
NULLABLE_FIELDS = frozenset({
    "client_id", "location_address", "location_notes", "deposit_method",
    "payment_method", "safety_contact_id",
})


# === Request/Response models ===

def _amount(v: str | None) -> str | None:
    if v is None:
        return v
    return validate_and_normalize_amount(v, max_decimal_places=2)


class CreateBookingRequest(BaseModel):
    date_time: datetime
    duration: int = 60  # minutes
    client_id: str | None = None
    status: BookingStatus = BookingStatus.TO_BE_CONFIRMED
    location_type: LocationType = LocationType.INCALL
    location_address: str | None = None
    location_notes: str | None = None
    base_rate: str = "0"
    extras: str = "0"
    travel_fee: str = "0"
    deposit_amount: str = "0"
    deposit_method: str | None = None
    deposit_received: bool = False
    payment_method: str | None = None
    notes: str = ""
    requires_safety_check: bool = True
    safety_check_minutes_after: int | None = None
    safety_contact_id: str | None = None
    recurrence: Recurrence = Recurrence.NONE
    override: bool = False

    @field_validator("base_rate", "extras", "travel_fee", "deposit_amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        """Decimal string, dot or comma, at most 2 places"""
        return _amount(v)

    @field_validator("date_time")
    @classmethod
    def validate_date_time(cls, v: datetime) -> datetime:
        return to_local_naive(v)


class UpdateBookingRequest(BaseModel):
    date_time: datetime | None = None
    duration: int | None = None
    client_id: str | None = None
    status: BookingStatus | None = None
    location_type: LocationType | None = None
    location_address: str | None = None
    location_notes: str | None = None
    base_rate: str | None = None
    extras: str | None = None
    travel_fee: str | None = None
    deposit_amount: str | None = None
    deposit_method: str | None = None
    deposit_received: bool | None = None
    payment_method: str | None = None
    notes: str | None = None
    requires_safety_check: bool | None = None
    safety_check_minutes_after: int | None = None
    safety_contact_id: str | None = None
    recurrence: Recurrence | None = None
    override: bool = False

    @field_validator("base_rate", "extras", "travel_fee", "deposit_amount")
    @classmethod
    def validate_amount(cls, v: str | None) -> str | None:
        return _amount(v)

    @field_validator("date_time")
    @classmethod
    def validate_date_time(cls, v: datetime | None) -> datetime | None:
        return to_local_naive(v)


class StatusRequest(BaseModel):
    status: BookingStatus


class CancelRequest(BaseModel):
    reason: str | None = None
    cancelled_by: CancelledBy | None = None
    fee: str = "0"
    fee_method: str | None = None
    deposit_outcome: DepositOutcome | None = None

    @field_validator("fee")
    @classmethod
    def validate_fee(cls, v: str) -> str:
        return _amount(v)


class NoShowRequest(BaseModel):
    fee: str = "0"
    fee_method: str | None = None
    deposit_outcome: DepositOutcome | None = None

    @field_validator("fee")
    @classmethod
    def validate_fee(cls, v: str) -> str:
        return _amount(v)


class BookingResponse(BaseModel):
    id: str
    client_id: str | None
    date_time: datetime
    end_time: datetime
    duration: int
    status: BookingStatus
    location_type: LocationType
    location_address: str | None
    location_notes: str | None
    base_rate: str
    extras: str
    travel_fee: str
    total: str
    deposit_amount: str
    deposit_method: str | None
    payment_method: str | None
    deposit_received: bool
    payment_received: bool
    notes: str
    requires_safety_check: bool
    safety_check_minutes_after: int
    safety_contact_id: str | None
    recurrence: Recurrence
    parent_booking_id: str | None
    recurrence_root_id: str | None
    created_at: datetime
    confirmed_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    cancelled_by: CancelledBy | None
    deposit_outcome: DepositOutcome | None


class ConflictResponse(BaseModel):
    has_conflict: bool
    is_double_book: bool
    reason: str
    day_status: str | None
    conflicting_booking_id: str | None


# === Helper functions ===

def booking_response(b: BookingModel) -> BookingResponse:
    return BookingResponse(
        id=b.id,
        client_id=b.client_id,
        date_time=b.date_time,
        end_time=booking_end(b.date_time, b.duration),
        duration=b.duration,
        status=b.status,
        location_type=b.location_type,
        location_address=b.location_address,
        location_notes=b.location_notes,
        base_rate=cents_to_str(b.base_rate),
        extras=cents_to_str(b.extras),
        travel_fee=cents_to_str(b.travel_fee),
        total=cents_to_str(booking_total(b.base_rate, b.extras, b.travel_fee)),
        deposit_amount=cents_to_str(b.deposit_amount),
        deposit_method=b.deposit_method,
        payment_method=b.payment_method,
        deposit_received=b.deposit_received,
        payment_received=b.payment_received,
        notes=b.notes,
        requires_safety_check=b.requires_safety_check,
        safety_check_minutes_after=b.safety_check_minutes_after,
        safety_contact_id=b.safety_contact_id,
        recurrence=b.recurrence,
        parent_booking_id=b.parent_booking_id,
        recurrence_root_id=b.recurrence_root_id,
        created_at=b.created_at,
        confirmed_at=b.confirmed_at,
        completed_at=b.completed_at,
        cancelled_at=b.cancelled_at,
        cancellation_reason=b.cancellation_reason,
        cancelled_by=b.cancelled_by,
        deposit_outcome=b.deposit_outcome,
    )


def _get_booking(db: Session, booking_id: str) -> BookingModel:
    booking = db.get(BookingModel, booking_id)
    if booking is None:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


# === Endpoints ===

@router.post("/", response_model=BookingResponse)
def create_booking(
    req: CreateBookingRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    sink=Depends(get_sink),
):
    """Create a booking; a conflict is rejected unless override is set"""
    data = req.model_dump()
    for key in ("base_rate", "extras", "travel_fee", "deposit_amount"):
        data[key] = to_cents(data[key])
    try:
        booking = CreateBookingUseCase(db, clock=clock, sink=sink).execute(**data)
    except ValueError as e:
        raise http_error(e)
    return booking_response(booking)


@router.get("/", response_model=list[BookingResponse])
def list_bookings(
    db: Session = Depends(get_db),
    status: BookingStatus | None = None,
    client_id: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
):
    """Bookings in date order, optionally filtered"""
    date_from, date_to = to_local_naive(date_from), to_local_naive(date_to)
    query = db.query(BookingModel)
    if status is not None:
        query = query.filter(BookingModel.status == status)
    if client_id:
        query = query.filter(BookingModel.client_id == client_id)
    if date_from is not None:
        query = query.filter(BookingModel.date_time >= date_from)
    if date_to is not None:
        query = query.filter(BookingModel.date_time < date_to)
    return [booking_response(b) for b in query.order_by(BookingModel.date_time.asc()).all()]


@router.get("/conflicts", response_model=ConflictResponse)
def check_conflicts(
    date_time: datetime,
    duration: int = 60,
    exclude_booking_id: str | None = None,
    db: Session = Depends(get_db),
):
    """Dry-run availability / double-booking check for the editor"""
    conflict = check_availability_conflict(db, to_local_naive(date_time), duration, exclude_booking_id)
    return ConflictResponse(
        has_conflict=conflict.has_conflict,
        is_double_book=conflict.is_double_book,
        reason=conflict.reason,
        day_status=conflict.day_status,
        conflicting_booking_id=conflict.conflicting_booking_id,
    )


@router.get("/series/{root_id}", response_model=list[BookingResponse])
def list_series(root_id: str, db: Session = Depends(get_db)):
    """Every booking of a recurring chain"""
    return [booking_response(b) for b in series(db, root_id)]


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(booking_id: str, db: Session = Depends(get_db)):
    return booking_response(_get_booking(db, booking_id))


@router.patch("/{booking_id}", response_model=BookingResponse)
def update_booking(
    booking_id: str,
    req: UpdateBookingRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    sink=Depends(get_sink),
):
    _get_booking(db, booking_id)
    changes = {
        k: v for k, v in req.model_dump(exclude_unset=True).items()
        if v is not None or k in NULLABLE_FIELDS
    }
    override = changes.pop("override", False)
    for key in ("base_rate", "extras", "travel_fee", "deposit_amount"):
        if changes.get(key) is not None:
            changes[key] = to_cents(changes[key])
    try:
        booking = UpdateBookingUseCase(db, clock=clock, sink=sink).execute(
            booking_id, override=override, **changes,
        )
    except ValueError as e:
        raise http_error(e)
    return booking_response(booking)


@router.delete("/{booking_id}")
def delete_booking(booking_id: str, db: Session = Depends(get_db)):
    """Delete a booking with its payments, transactions and safety check"""
    _get_booking(db, booking_id)
    DeleteBookingUseCase(db).execute(booking_id)
    return {"success": True}


@router.post("/{booking_id}/status", response_model=BookingResponse)
def set_status(
    booking_id: str,
    req: StatusRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    sink=Depends(get_sink),
):
    booking = _get_booking(db, booking_id)
    try:
        BookingLifecycleEngine(db, sink=sink, clock=clock).set_status(booking, req.status)
    except ValueError as e:
        raise http_error(e)
    return booking_response(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    req: CancelRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    sink=Depends(get_sink),
):
    booking = _get_booking(db, booking_id)
    try:
        BookingLifecycleEngine(db, sink=sink, clock=clock).cancel(
            booking,
            reason=req.reason,
            cancelled_by=req.cancelled_by,
            fee=to_cents(req.fee),
            fee_method=req.fee_method,
            deposit_outcome=req.deposit_outcome,
        )
    except ValueError as e:
        raise http_error(e)
    return booking_response(booking)


@router.post("/{booking_id}/no-show", response_model=BookingResponse)
def mark_no_show(
    booking_id: str,
    req: NoShowRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    sink=Depends(get_sink),
):
    booking = _get_booking(db, booking_id)
    try:
        BookingLifecycleEngine(db, sink=sink, clock=clock).mark_no_show(
            booking,
            fee=to_cents(req.fee),
            fee_method=req.fee_method,
            deposit_outcome=req.deposit_outcome,
        )
    except ValueError as e:
        raise http_error(e)
    return booking_response(booking)
