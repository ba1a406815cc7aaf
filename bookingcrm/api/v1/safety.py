"""
Safety check-in API endpoints
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from bookingcrm.api.deps import get_clock, get_db, http_error
from bookingcrm.application.safety_checks import (
    SafetyCheckScheduler, active_checks, add_contact, list_contacts,
)
from bookingcrm.domain.safety_check import SafetyCheckStatus, deadline
from bookingcrm.infrastructure.db.models import SafetyCheckModel, SafetyContactModel
from bookingcrm.utils.clock import Clock

router = APIRouter(prefix="/api/v1", tags=["safety"])


class SafetyCheckResponse(BaseModel):
    id: str
    booking_id: str
    safety_contact_id: str | None
    scheduled_time: datetime
    deadline: datetime
    buffer_minutes: int
    status: SafetyCheckStatus
    checked_in_at: datetime | None


class SafetyContactResponse(BaseModel):
    id: str
    name: str
    phone: str
    relationship: str
    is_primary: bool


class CreateContactRequest(BaseModel):
    name: str
    phone: str
    relationship: str = ""
    is_primary: bool = False


class AlertResponse(BaseModel):
    check: SafetyCheckResponse
    contact: SafetyContactResponse | None


def check_response(c: SafetyCheckModel) -> SafetyCheckResponse:
    return SafetyCheckResponse(
        id=c.id,
        booking_id=c.booking_id,
        safety_contact_id=c.safety_contact_id,
        scheduled_time=c.scheduled_time,
        deadline=deadline(c.scheduled_time, c.buffer_minutes),
        buffer_minutes=c.buffer_minutes,
        status=c.status,
        checked_in_at=c.checked_in_at,
    )


def contact_response(c: SafetyContactModel) -> SafetyContactResponse:
    return SafetyContactResponse(
        id=c.id, name=c.name, phone=c.phone, relationship=c.relationship, is_primary=c.is_primary,
    )


@router.get("/safety-checks", response_model=list[SafetyCheckResponse])
def list_active(db: Session = Depends(get_db)):
    """Pending and overdue check-ins"""
    return [check_response(c) for c in active_checks(db)]


@router.post("/safety-checks/check-in-all")
def check_in_all(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    count = SafetyCheckScheduler(clock=clock).check_in_all(db)
    return {"success": True, "checked_in": count}


@router.post("/safety-checks/{check_id}/check-in", response_model=SafetyCheckResponse)
def check_in(check_id: str, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    try:
        check = SafetyCheckScheduler(clock=clock).check_in(db, check_id)
    except ValueError as e:
        raise http_error(e)
    return check_response(check)


@router.post("/safety-checks/{check_id}/alert", response_model=AlertResponse)
def raise_alert(check_id: str, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    """Mark the check as alerted and return who to contact"""
    try:
        check, contact = SafetyCheckScheduler(clock=clock).raise_alert(db, check_id)
    except ValueError as e:
        raise http_error(e)
    return AlertResponse(
        check=check_response(check),
        contact=contact_response(contact) if contact is not None else None,
    )


@router.get("/safety-contacts", response_model=list[SafetyContactResponse])
def get_contacts(db: Session = Depends(get_db)):
    return [contact_response(c) for c in list_contacts(db)]


@router.post("/safety-contacts", response_model=SafetyContactResponse)
def create_contact(req: CreateContactRequest, db: Session = Depends(get_db)):
    try:
        contact = add_contact(db, req.name, req.phone, req.relationship, req.is_primary)
    except ValueError as e:
        raise http_error(e)
    return contact_response(contact)
