from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from app.auth import create_access_token
from app.database import get_db
from app.domain.bookings.router import get_notification_relay
from app.domain.verification.router import rate_limit_verify_otp
from app.main import app
from app.models import BookingVerification
from app.services.geocoding_service import get_geocoder
from app.services.payment_gateway import get_payment_gateway
from app.shared.validators import utc_now

from .conftest import HOURLY_RATE_CENTS, MEETING_LAT, MEETING_LON, booking_payload


@pytest.fixture
def api(db, gateway, geocoder, relay):
    def override_get_db():
        yield db

    async def no_rate_limit():
        return None

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_geocoder] = lambda: geocoder
    app.dependency_overrides[get_notification_relay] = lambda: relay
    app.dependency_overrides[rate_limit_verify_otp] = no_rate_limit
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


@pytest.fixture
def booking_json(gateway, client_user, companion_user):
    def _payload(**overrides):
        intent_id = gateway.add_intent(2 * HOURLY_RATE_CENTS, client_id=client_user.id)
        payload = booking_payload(companion_user.id, intent_id, **overrides)
        payload["booking_date"] = payload["booking_date"].isoformat()
        return payload

    return _payload


def test_health(api):
    response = api.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_security_headers(api, client_user):
    response = api.get("/bookings", headers=auth(client_user))
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["Cache-Control"] == "no-store"


def test_invalid_token(api):
    response = api.get("/bookings", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_create_and_fetch_booking(api, booking_json, client_user, companion_user):
    response = api.post("/bookings", json=booking_json(), headers=auth(client_user))
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "payment_held"
    assert body["total_amount_cents"] == 10000
    assert body["verification_status"] == "not_started"

    fetched = api.get(f"/bookings/{body['id']}", headers=auth(companion_user))
    assert fetched.status_code == 200
    assert fetched.json()["id"] == body["id"]


def test_total_mismatch_is_400(api, booking_json, client_user):
    response = api.post(
        "/bookings", json=booking_json(total_amount_cents=9000), headers=auth(client_user)
    )
    assert response.status_code == 400
    body = response.json()
    assert body["kind"] == "validation_error"
    assert body["expected_total_cents"] == 10000


def test_unauthorized_payment_is_402(api, gateway, client_user, companion_user):
    intent_id = gateway.add_intent(10000, status="requires_payment_method", client_id=client_user.id)
    payload = booking_payload(companion_user.id, intent_id)
    payload["booking_date"] = payload["booking_date"].isoformat()

    response = api.post("/bookings", json=payload, headers=auth(client_user))
    assert response.status_code == 402
    assert response.json()["kind"] == "payment_error"


def test_malformed_time_is_422(api, booking_json, client_user):
    response = api.post("/bookings", json=booking_json(start_time="25:00"), headers=auth(client_user))
    assert response.status_code == 422
    assert response.json()["kind"] == "validation_error"


def test_cancel_error_mapping(api, booking_json, client_user, other_client_user):
    booking_id = api.post("/bookings", json=booking_json(), headers=auth(client_user)).json()["id"]

    outsider = api.post(
        f"/bookings/{booking_id}/cancel", json={"reason": "x"}, headers=auth(other_client_user)
    )
    assert outsider.status_code == 403
    assert outsider.json()["kind"] == "permission_denied"

    first = api.post(f"/bookings/{booking_id}/cancel", json={"reason": "Sick"}, headers=auth(client_user))
    assert first.status_code == 200
    assert first.json()["cancelled_by"] == "client"

    second = api.post(f"/bookings/{booking_id}/cancel", json={"reason": "Sick"}, headers=auth(client_user))
    assert second.status_code == 409
    assert second.json()["kind"] == "invalid_state"


def test_unknown_booking_is_404(api, client_user):
    response = api.get("/bookings/4242", headers=auth(client_user))
    assert response.status_code == 404
    assert response.json()["kind"] == "not_found"


def test_verification_flow_over_http(api, db, booking_json, client_user, companion_user):
    booking_id = api.post("/bookings", json=booking_json(), headers=auth(client_user)).json()["id"]
    approved = api.post(f"/bookings/{booking_id}/approve", headers=auth(companion_user))
    assert approved.json()["status"] == "confirmed"

    issued = api.post(f"/bookings/{booking_id}/issue-codes", headers=auth(client_user))
    assert issued.status_code == 200
    code = issued.json()["code"]
    wrong = "000000" if code != "000000" else "111111"

    rejected = api.post(
        f"/bookings/{booking_id}/verify-otp",
        json={"code": wrong, "latitude": MEETING_LAT, "longitude": MEETING_LON},
        headers=auth(client_user),
    )
    assert rejected.status_code == 400
    assert rejected.json()["kind"] == "invalid_code"

    accepted = api.post(
        f"/bookings/{booking_id}/verify-otp",
        json={"code": code, "latitude": MEETING_LAT, "longitude": MEETING_LON},
        headers=auth(client_user),
    )
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "one_party_verified"

    status = api.get(f"/bookings/{booking_id}/verification-status", headers=auth(companion_user))
    assert status.json()["other_party_verified"] is True

    # Close the window
    verification = db.query(BookingVerification).one()
    verification.expires_at = utc_now() - timedelta(seconds=1)
    db.commit()

    companion_code = status.json()["code"]
    expired = api.post(
        f"/bookings/{booking_id}/verify-otp",
        json={"code": companion_code, "latitude": MEETING_LAT, "longitude": MEETING_LON},
        headers=auth(companion_user),
    )
    assert expired.status_code == 410
    assert expired.json()["kind"] == "verification_expired"

    booking = api.get(f"/bookings/{booking_id}", headers=auth(client_user)).json()
    assert booking["status"] == "cancelled"
    assert booking["cancelled_by"] == "system"
    assert booking["verification_status"] == "expired"


def test_notifications(api, booking_json, client_user, companion_user):
    api.post("/bookings", json=booking_json(), headers=auth(client_user))

    listed = api.get("/notifications", headers=auth(companion_user)).json()
    assert listed["unread_count"] == 1
    notification = listed["notifications"][0]
    assert notification["event"] == "booking.created"

    marked = api.post(f"/notifications/{notification['id']}/read", headers=auth(companion_user))
    assert marked.status_code == 200
    assert api.get("/notifications", headers=auth(companion_user)).json()["unread_count"] == 0

    # Another party cannot touch it
    assert api.post(f"/notifications/{notification['id']}/read", headers=auth(client_user)).status_code == 404
