"""
Client API endpoints
"""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from bookingcrm.api.deps import get_clock, get_db, http_error
from bookingcrm.application.clients import (
    CreateClientUseCase, DeleteClientUseCase, UpdateClientUseCase,
)
from bookingcrm.domain.booking import RiskLevel, ScreeningStatus
from bookingcrm.infrastructure.db.models import ClientModel
from bookingcrm.utils.clock import Clock

router = APIRouter(prefix="/api/v1/clients", tags=["clients"])


class CreateClientRequest(BaseModel):
    alias: str
    phone: str | None = None
    email: str | None = None
    screening_status: ScreeningStatus = ScreeningStatus.UNSCREENED
    risk_level: RiskLevel = RiskLevel.UNKNOWN
    requires_safety_check: bool = True
    notes: str = ""


class UpdateClientRequest(BaseModel):
    alias: str | None = None
    phone: str | None = None
    email: str | None = None
    screening_status: ScreeningStatus | None = None
    risk_level: RiskLevel | None = None
    is_blocked: bool | None = None
    requires_safety_check: bool | None = None
    notes: str | None = None


class ClientResponse(BaseModel):
    id: str
    alias: str
    phone: str | None
    email: str | None
    screening_status: ScreeningStatus
    risk_level: RiskLevel
    is_blocked: bool
    requires_safety_check: bool
    notes: str
    date_added: datetime
    last_seen: datetime | None


def client_response(c: ClientModel) -> ClientResponse:
    return ClientResponse(
        id=c.id,
        alias=c.alias,
        phone=c.phone,
        email=c.email,
        screening_status=c.screening_status,
        risk_level=c.risk_level,
        is_blocked=c.is_blocked,
        requires_safety_check=c.requires_safety_check,
        notes=c.notes,
        date_added=c.date_added,
        last_seen=c.last_seen,
    )


def _get_client(db: Session, client_id: str) -> ClientModel:
    client = db.get(ClientModel, client_id)
    if client is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


@router.post("/", response_model=ClientResponse)
def create_client(req: CreateClientRequest, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    try:
        client = CreateClientUseCase(db, clock=clock).execute(**req.model_dump())
    except ValueError as e:
        raise http_error(e)
    return client_response(client)


@router.get("/", response_model=list[ClientResponse])
def list_clients(db: Session = Depends(get_db), include_blocked: bool = False):
    query = db.query(ClientModel)
    if not include_blocked:
        query = query.filter(ClientModel.is_blocked.is_(False))
    return [client_response(c) for c in query.order_by(ClientModel.alias.asc()).all()]


@router.get("/{client_id}", response_model=ClientResponse)
def get_client(client_id: str, db: Session = Depends(get_db)):
    return client_response(_get_client(db, client_id))


@router.patch("/{client_id}", response_model=ClientResponse)
def update_client(
    client_id: str,
    req: UpdateClientRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Edit a client; screening changes advance or downgrade their bookings"""
    _get_client(db, client_id)
    try:
        client = UpdateClientUseCase(db, clock=clock).execute(
            client_id, **{k: v for k, v in req.model_dump(exclude_unset=True).items() if v is not None},
        )
    except ValueError as e:
        raise http_error(e)
    return client_response(client)


@router.delete("/{client_id}")
def delete_client(client_id: str, db: Session = Depends(get_db)):
    """Delete a client together with their bookings"""
    _get_client(db, client_id)
    removed = DeleteClientUseCase(db).execute(client_id)
    return {"success": True, "bookings_deleted": removed}
