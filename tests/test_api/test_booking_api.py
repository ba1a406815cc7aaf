"""
Tests for the HTTP API (FastAPI TestClient against in-memory SQLite)
"""
from datetime import timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from bookingcrm.api.deps import get_clock, get_db
from bookingcrm.application.poll import PollLoop
from bookingcrm.config import get_settings
from bookingcrm.main import create_app


@pytest.fixture
def client(session_factory, clock, sink, settings):
    """Test client wired to the test database and clock"""
    app = create_app()

    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.state.poll_loop = PollLoop(session_factory=session_factory, sink=sink, clock=clock, settings=settings)
    app.state.notification_sink = sink
    return TestClient(app)


@pytest.fixture
def client_id(client):
    resp = client.post("/api/v1/clients/", json={"alias": "Alex", "screening_status": "Screened",
                                                 "risk_level": "Low Risk"})
    assert resp.status_code == 200
    return resp.json()["id"]


def _iso(dt):
    return dt.isoformat()


def test_health(client):
    assert client.get("/health").text == "ok"


class TestBookings:
    def test_create_and_get(self, client, client_id, clock):
        resp = client.post("/api/v1/bookings/", json={
            "date_time": _iso(clock() + timedelta(days=1)),
            "duration": 120,
            "client_id": client_id,
            "status": "Confirmed",
            "base_rate": "600",
            "deposit_amount": "150,00",
            "deposit_received": True,
        })
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == "600.00"
        assert data["deposit_amount"] == "150.00"
        assert data["deposit_received"] is True
        assert data["status"] == "Confirmed"

        got = client.get(f"/api/v1/bookings/{data['id']}").json()
        assert got["end_time"] == _iso(clock() + timedelta(days=1, hours=2))

    def test_invalid_amount(self, client, clock):
        resp = client.post("/api/v1/bookings/", json={
            "date_time": _iso(clock()), "base_rate": "10.999",
        })
        assert resp.status_code == 422

    def test_conflict_is_409(self, client, clock):
        start = clock() + timedelta(days=1)
        client.post("/api/v1/bookings/", json={"date_time": _iso(start), "duration": 120})
        resp = client.post("/api/v1/bookings/", json={"date_time": _iso(start + timedelta(hours=1))})
        assert resp.status_code == 409
        assert resp.json()["detail"]["is_double_book"] is True

        resp = client.post("/api/v1/bookings/", json={
            "date_time": _iso(start + timedelta(hours=1)), "override": True,
        })
        assert resp.status_code == 200

    def test_offset_datetime_is_stored_as_local_time(self, client, clock):
        start = clock() + timedelta(days=1)
        client.post("/api/v1/bookings/", json={"date_time": _iso(start), "duration": 120})
        later_utc = (start + timedelta(hours=1)).replace(tzinfo=ZoneInfo(get_settings().TIMEZONE)) \
            .astimezone(timezone.utc).replace(tzinfo=None)

        resp = client.post("/api/v1/bookings/", json={"date_time": _iso(later_utc) + "Z"})
        assert resp.status_code == 409
        assert resp.json()["detail"]["is_double_book"] is True

        resp = client.post("/api/v1/bookings/", json={
            "date_time": _iso(later_utc) + "Z", "override": True,
        })
        assert resp.status_code == 200
        assert resp.json()["date_time"] == _iso(start + timedelta(hours=1))

        resp = client.get("/api/v1/bookings/conflicts", params={"date_time": _iso(later_utc) + "Z"})
        assert resp.json()["has_conflict"] is True

    def test_invalid_status_change_is_400(self, client, clock):
        booking = client.post("/api/v1/bookings/", json={
            "date_time": _iso(clock() + timedelta(days=1)), "status": "Completed",
        }).json()
        resp = client.post(f"/api/v1/bookings/{booking['id']}/status", json={"status": "Confirmed"})
        assert resp.status_code == 400

    def test_missing_booking_is_404(self, client):
        assert client.get("/api/v1/bookings/nope").status_code == 404

    def test_cancel_with_fee(self, client, clock):
        booking = client.post("/api/v1/bookings/", json={
            "date_time": _iso(clock() + timedelta(days=1)), "base_rate": "400",
        }).json()
        resp = client.post(f"/api/v1/bookings/{booking['id']}/cancel", json={
            "reason": "Weather", "cancelled_by": "client", "fee": "100",
        })
        assert resp.status_code == 200
        assert resp.json()["status"] == "Cancelled"

        ledger = client.get(f"/api/v1/bookings/{booking['id']}/payments").json()
        assert [p["label"] for p in ledger["payments"]] == ["Cancellation Fee"]
        assert ledger["paid"] == "100.00"

    def test_delete(self, client, clock):
        booking = client.post("/api/v1/bookings/", json={"date_time": _iso(clock())}).json()
        assert client.delete(f"/api/v1/bookings/{booking['id']}").json() == {"success": True}
        assert client.get(f"/api/v1/bookings/{booking['id']}").status_code == 404


class TestPayments:
    def test_record_and_remove(self, client, clock):
        booking = client.post("/api/v1/bookings/", json={
            "date_time": _iso(clock() + timedelta(days=1)), "base_rate": "300",
        }).json()

        ledger = client.post(f"/api/v1/bookings/{booking['id']}/payments", json={
            "amount": "300", "label": "Payment", "method": "Cash",
        }).json()
        assert ledger["payment_received"] is True
        assert ledger["balance"] == "0.00"

        payment_id = ledger["payments"][0]["id"]
        assert client.delete(f"/api/v1/payments/{payment_id}").status_code == 200
        assert client.delete(f"/api/v1/payments/{payment_id}").status_code == 404

        ledger = client.get(f"/api/v1/bookings/{booking['id']}/payments").json()
        assert ledger["payment_received"] is False

    def test_zero_amount_is_400(self, client, clock):
        booking = client.post("/api/v1/bookings/", json={"date_time": _iso(clock())}).json()
        resp = client.post(f"/api/v1/bookings/{booking['id']}/payments", json={"amount": "0"})
        assert resp.status_code == 400


def test_wake_runs_tick(client, clock):
    booking = client.post("/api/v1/bookings/", json={
        "date_time": _iso(clock()), "status": "Confirmed", "requires_safety_check": True,
    }).json()

    data = client.post("/api/v1/poll/wake").json()

    assert data["ran"] is True
    assert data["transitions"] == 1
    assert data["checks_created"] == 1
    assert client.get(f"/api/v1/bookings/{booking['id']}").json()["status"] == "In Progress"

    checks = client.get("/api/v1/safety-checks").json()
    assert len(checks) == 1
    resp = client.post(f"/api/v1/safety-checks/{checks[0]['id']}/check-in")
    assert resp.json()["status"] == "checkedIn"
    assert client.get("/api/v1/safety-checks").json() == []


def test_screening_client_advances_bookings(client, clock):
    person = client.post("/api/v1/clients/", json={"alias": "Riley", "screening_status": "In Progress"}).json()
    booking = client.post("/api/v1/bookings/", json={
        "date_time": _iso(clock() + timedelta(days=2)), "client_id": person["id"], "status": "Screening",
    }).json()

    resp = client.patch(f"/api/v1/clients/{person['id']}", json={"screening_status": "Screened"})

    assert resp.status_code == 200
    assert client.get(f"/api/v1/bookings/{booking['id']}").json()["status"] == "Confirmed"


def test_push_subscription(client):
    body = {"endpoint": "https://push.example/abc", "keys": {"p256dh": "k", "auth": "a"}}
    assert client.post("/api/v1/push/subscribe", json=body).json() == {"success": True}
    resp = client.request("DELETE", "/api/v1/push/unsubscribe", json=body)
    assert resp.json() == {"success": True, "deleted": 1}
