"""
Pytest fixtures for testing
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from bookingcrm.config import Settings
from bookingcrm.domain.booking import BookingStatus, LocationType, RiskLevel, ScreeningStatus
from bookingcrm.infrastructure.db import models  # noqa: F401  (registers tables)
from bookingcrm.infrastructure.db.models import BookingModel, ClientModel, new_id
from bookingcrm.infrastructure.db.session import Base


class FakeClock:
    """Mutable wall clock: tests move time explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSink:
    """Notification sink that remembers what was fired."""

    def __init__(self):
        self.fired: list[dict] = []

    def fire(self, title, body, *, tag, require_interaction=False):
        self.fired.append({
            "title": title,
            "body": body,
            "tag": tag,
            "require_interaction": require_interaction,
        })

    def tags(self) -> list[str]:
        return [n["tag"] for n in self.fired]


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across threads (TestClient, poll loop)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine)


@pytest.fixture
def db_session(session_factory) -> Session:
    """Create database session for tests"""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock():
    """Monday 10 March 2025, 12:00 local time"""
    return FakeClock(datetime(2025, 3, 10, 12, 0))


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def settings():
    """Pro installation: no plan limits get in the way"""
    return Settings(_env_file=None, PRO_ACTIVATED=True)


@pytest.fixture
def free_settings():
    return Settings(_env_file=None, PRO_ACTIVATED=False)


@pytest.fixture
def make_client(db_session, clock):
    """Insert a committed client."""
    def _make(alias="Alex", screening=ScreeningStatus.SCREENED, risk=RiskLevel.LOW, **kwargs):
        client = ClientModel(
            id=new_id(),
            alias=alias,
            screening_status=screening,
            risk_level=risk,
            is_blocked=False,
            requires_safety_check=True,
            notes="",
            date_added=clock(),
            **kwargs,
        )
        db_session.add(client)
        db_session.commit()
        return client
    return _make


@pytest.fixture
def make_booking(db_session, clock):
    """Insert a committed booking; money in cents."""
    def _make(
        date_time=None,
        status=BookingStatus.CONFIRMED,
        client=None,
        duration=60,
        base_rate=60000,
        **kwargs,
    ):
        fields = dict(
            location_type=LocationType.INCALL,
            extras=0,
            travel_fee=0,
            deposit_amount=0,
            deposit_received=False,
            payment_received=False,
            notes="",
            requires_safety_check=False,
            safety_check_minutes_after=15,
            created_at=clock(),
        )
        fields.update(kwargs)
        booking = BookingModel(
            id=new_id(),
            client_id=client.id if client is not None else None,
            date_time=date_time or clock() + timedelta(days=1),
            duration=duration,
            status=status,
            base_rate=base_rate,
            **fields,
        )
        db_session.add(booking)
        db_session.commit()
        return booking
    return _make
