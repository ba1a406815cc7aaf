"""
Payment ledger API endpoints
"""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from bookingcrm.api.deps import get_clock, get_db, http_error
from bookingcrm.application.ledger import PaymentLedger
from bookingcrm.domain.ledger import PaymentLabel
from bookingcrm.infrastructure.db.models import BookingModel, ClientModel
from bookingcrm.utils.clock import Clock
from bookingcrm.utils.money import cents_to_str, to_cents
from bookingcrm.utils.validation import validate_and_normalize_amount

router = APIRouter(prefix="/api/v1", tags=["payments"])


class RecordPaymentRequest(BaseModel):
    amount: str
    label: PaymentLabel = PaymentLabel.PAYMENT
    method: str | None = None
    notes: str | None = None
    paid_at: datetime | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return validate_and_normalize_amount(v, max_decimal_places=2)


class PaymentResponse(BaseModel):
    id: str
    booking_id: str
    amount: str
    method: str | None
    label: PaymentLabel
    date: datetime
    notes: str | None


class LedgerResponse(BaseModel):
    booking_id: str
    total: str
    paid: str
    balance: str
    deposit_received: bool
    payment_received: bool
    payments: list[PaymentResponse]


def _ledger_response(ledger: PaymentLedger, booking: BookingModel) -> LedgerResponse:
    return LedgerResponse(
        booking_id=booking.id,
        total=cents_to_str(ledger.total_of(booking)),
        paid=cents_to_str(ledger.total_paid(booking.id)),
        balance=cents_to_str(ledger.balance(booking)),
        deposit_received=booking.deposit_received,
        payment_received=booking.payment_received,
        payments=[
            PaymentResponse(
                id=p.id,
                booking_id=p.booking_id,
                amount=cents_to_str(p.amount),
                method=p.method,
                label=p.label,
                date=p.date,
                notes=p.notes,
            )
            for p in ledger.payments_for(booking.id)
        ],
    )


def _get_booking(db: Session, booking_id: str) -> BookingModel:
    booking = db.get(BookingModel, booking_id)
    if booking is None:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


@router.get("/bookings/{booking_id}/payments", response_model=LedgerResponse)
def list_payments(booking_id: str, db: Session = Depends(get_db)):
    booking = _get_booking(db, booking_id)
    return _ledger_response(PaymentLedger(db), booking)


@router.post("/bookings/{booking_id}/payments", response_model=LedgerResponse)
def record_payment(
    booking_id: str,
    req: RecordPaymentRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Append a payment and return the updated ledger"""
    booking = _get_booking(db, booking_id)
    client = db.get(ClientModel, booking.client_id) if booking.client_id else None
    ledger = PaymentLedger(db, clock=clock)
    try:
        ledger.record_payment(
            booking_id,
            to_cents(req.amount),
            req.label,
            method=req.method,
            notes=req.notes,
            client_alias=client.alias if client is not None else None,
            paid_at=req.paid_at,
        )
    except ValueError as e:
        raise http_error(e)
    return _ledger_response(ledger, booking)


@router.delete("/payments/{payment_id}")
def remove_payment(payment_id: str, db: Session = Depends(get_db)):
    """Delete a ledger row and its mirrored income transaction"""
    if not PaymentLedger(db).remove_payment(payment_id):
        raise HTTPException(status_code=404, detail="Payment not found")
    return {"success": True}
