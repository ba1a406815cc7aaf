"""
Client use cases - CRUD of the client book.

Changing a client's screening status moves their bookings along the
lifecycle (advance on Screened, downgrade when Screened is lost).
"""
import logging

from sqlalchemy.orm import Session

from bookingcrm.application.bookings import delete_booking_rows
from bookingcrm.application.lifecycle import BookingLifecycleEngine
from bookingcrm.application.plan_limits import PlanLimitError, can_add_client
from bookingcrm.config import Settings, get_settings
from bookingcrm.domain.booking import RiskLevel, ScreeningStatus
from bookingcrm.infrastructure.db.models import BookingModel, ClientModel, new_id
from bookingcrm.infrastructure.repository import EntityStore
from bookingcrm.utils.clock import Clock, local_now

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({
    "alias", "phone", "email", "risk_level", "is_blocked", "requires_safety_check", "notes",
})


class ClientValidationError(ValueError):
    pass


def _get_client(store: EntityStore, client_id: str) -> ClientModel:
    client = store.get(ClientModel, client_id)
    if client is None:
        raise ClientValidationError(f"Client {client_id} not found")
    return client


class CreateClientUseCase:
    def __init__(self, db: Session, clock: Clock = local_now, settings: Settings | None = None):
        self.db = db
        self.store = EntityStore(db)
        self.clock = clock
        self.settings = settings or get_settings()

    def execute(
        self,
        alias: str,
        phone: str | None = None,
        email: str | None = None,
        screening_status: ScreeningStatus = ScreeningStatus.UNSCREENED,
        risk_level: RiskLevel = RiskLevel.UNKNOWN,
        requires_safety_check: bool = True,
        notes: str = "",
    ) -> ClientModel:
        alias = (alias or "").strip()
        if not alias:
            raise ClientValidationError("Client alias cannot be empty")
        if not can_add_client(self.db, self.settings):
            raise PlanLimitError(f"Free plan allows {self.settings.FREE_CLIENT_LIMIT} clients")

        with self.store.atomic():
            client = self.store.put(ClientModel(
                id=new_id(),
                alias=alias,
                phone=(phone or "").strip() or None,
                email=(email or "").strip() or None,
                screening_status=ScreeningStatus(screening_status),
                risk_level=RiskLevel(risk_level),
                is_blocked=False,
                requires_safety_check=requires_safety_check,
                notes=notes or "",
                date_added=self.clock(),
            ))
        return client


class UpdateClientUseCase:
    def __init__(self, db: Session, clock: Clock = local_now, settings: Settings | None = None):
        self.db = db
        self.store = EntityStore(db)
        self.engine = BookingLifecycleEngine(db, clock=clock, settings=settings)

    def execute(self, client_id: str, **changes) -> ClientModel:
        client = _get_client(self.store, client_id)

        screening = changes.pop("screening_status", None)
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ClientValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
        if "alias" in changes:
            changes["alias"] = (changes["alias"] or "").strip()
            if not changes["alias"]:
                raise ClientValidationError("Client alias cannot be empty")

        with self.store.atomic():
            for key, value in changes.items():
                if key == "risk_level":
                    value = RiskLevel(value)
                setattr(client, key, value)

            if screening is not None:
                old = client.screening_status
                new = ScreeningStatus(screening)
                client.screening_status = new
                self.db.flush()
                self.engine.advance_bookings_on_screen(client.id, old, new)
                self.engine.downgrade_bookings_on_unscreen(client.id, old, new)
            self.db.flush()

        return client


class DeleteClientUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.store = EntityStore(db)

    def execute(self, client_id: str) -> int:
        """
        Delete a client and everything hanging off their bookings

        Returns:
            Number of bookings removed
        """
        client = _get_client(self.store, client_id)
        with self.store.atomic():
            bookings = self.store.query(BookingModel, "client_id", client.id)
            for booking in bookings:
                delete_booking_rows(self.store, booking)
            self.store.delete(client)
        logger.info("Client %s deleted with %d booking(s)", client_id, len(bookings))
        return len(bookings)
