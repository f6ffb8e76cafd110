from urllib.parse import parse_qs

import httpx
import pytest
import redis
from fastapi import HTTPException
from starlette.requests import Request

from app import rate_limiter
from app.email_templates import meeting_code_template
from app.models import Notification
from app.rate_limiter import check_rate_limit, create_rate_limiter, get_redis_client, memory_cache
from app.services.geocoding_service import NominatimGeocoder
from app.services.payment_gateway import PaymentGatewayError, StripePaymentGateway


def stripe_transport(requests, status_code=200, body=None):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if status_code == 404:
            return httpx.Response(404, json={"error": {"message": "No such payment_intent"}})
        return httpx.Response(status_code, json=body or {"id": "pi_123", "status": "requires_capture"})

    return httpx.MockTransport(handler)


class TestStripeGateway:
    async def test_create_uses_manual_capture(self):
        requests = []
        gateway = StripePaymentGateway(secret_key="sk_test", transport=stripe_transport(requests))

        intent = await gateway.create_payment_intent(11000, "usd", metadata={"client_id": 7})

        assert intent["id"] == "pi_123"
        form = parse_qs(requests[0].content.decode())
        assert form["amount"] == ["11000"]
        assert form["capture_method"] == ["manual"]
        assert form["metadata[client_id]"] == ["7"]
        assert requests[0].url.path == "/v1/payment_intents"

    async def test_capture_and_release_paths(self):
        requests = []
        gateway = StripePaymentGateway(secret_key="sk_test", transport=stripe_transport(requests))

        await gateway.capture_payment_intent("pi_123")
        await gateway.release_payment_intent("pi_123")

        assert [r.url.path for r in requests] == [
            "/v1/payment_intents/pi_123/capture",
            "/v1/payment_intents/pi_123/cancel",
        ]

    async def test_unknown_intent_is_none(self):
        gateway = StripePaymentGateway(secret_key="sk_test", transport=stripe_transport([], status_code=404))
        assert await gateway.retrieve_payment_intent("pi_missing") is None

    async def test_provider_error_raises(self):
        body = {"error": {"message": "Your card was declined"}}
        gateway = StripePaymentGateway(
            secret_key="sk_test", transport=stripe_transport([], status_code=402, body=body)
        )
        with pytest.raises(PaymentGatewayError) as exc_info:
            await gateway.capture_payment_intent("pi_123")
        assert exc_info.value.status_code == 402
        assert "declined" in str(exc_info.value)

    async def test_missing_key_raises(self):
        gateway = StripePaymentGateway(secret_key="", transport=stripe_transport([]))
        gateway.secret_key = None
        with pytest.raises(PaymentGatewayError):
            await gateway.retrieve_payment_intent("pi_123")


async def test_geocoder_parses_first_result():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["q"] == "Central Park"
        assert request.headers["User-Agent"]
        return httpx.Response(
            200, json=[{"lat": "40.78", "lon": "-73.96", "place_id": 99, "display_name": "Central Park"}]
        )

    geocoder = NominatimGeocoder(transport=httpx.MockTransport(handler))
    result = await geocoder.geocode("Central Park")
    assert result == {"lat": 40.78, "lon": -73.96, "place_id": "99", "display_name": "Central Park"}


async def test_geocoder_no_result():
    geocoder = NominatimGeocoder(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[])))
    assert await geocoder.geocode("Nowhere at all") is None


class TestNotificationRelay:
    async def test_stores_and_publishes_per_recipient(self, relay, publisher, db, client_user, companion_user):
        result = await relay.emit(
            [client_user.id, companion_user.id, client_user.id], "booking.approved", {"booking_id": 1}
        )

        assert result["delivered"] == [client_user.id, companion_user.id]
        assert [ch for ch, _ in publisher.messages] == [
            f"user:{client_user.id}",
            f"user:{companion_user.id}",
        ]
        assert publisher.messages[0][1] == {"event": "booking.approved", "data": {"booking_id": 1}}
        assert db.query(Notification).count() == 2
        assert db.query(Notification).first().title == "Booking confirmed"

    async def test_publish_failure_is_reported_not_raised(self, relay, publisher, db, client_user):
        publisher.fail = True
        result = await relay.emit([client_user.id], "booking.cancelled", {"booking_id": 1})

        assert result["delivered"] == []
        assert client_user.id in result["errors"]
        assert db.query(Notification).count() == 1


def test_rate_limit_memory_only():
    memory_cache.clear()
    key = "verify_otp:test:1"
    results = [check_rate_limit(key, 3, 60, None)[0] for _ in range(4)]
    assert results == [True, True, True, False]
    memory_cache.clear()


def test_meeting_code_email_mentions_code():
    mjml = meeting_code_template(
        user_name="Casey",
        code="482913",
        other_party_name="Jordan",
        meeting_location="Central Park",
        window_minutes=10,
        booking_id=5,
    )
    assert "482913" in mjml
    assert "Central Park" in mjml
    assert "<mjml>" in mjml


async def test_rate_limit_dependency_rejects_over_limit():
    memory_cache.clear()
    limiter = create_rate_limiter(limit=1, window_seconds=60, key_prefix="test_limit")
    request = Request({"type": "http", "headers": [], "client": ("10.0.0.1", 1234), "path_params": {}})

    await limiter(request)
    with pytest.raises(HTTPException) as exc_info:
        await limiter(request)
    assert exc_info.value.status_code == 429
    memory_cache.clear()


def test_redis_outage_is_not_retried_on_every_call(monkeypatch):
    pings = []

    class DownRedis:
        def ping(self):
            pings.append(1)
            raise redis.ConnectionError("Connection refused")

    monkeypatch.setenv("REDIS_URL", "redis://cache.internal:6379/0")
    monkeypatch.setattr(rate_limiter, "redis_client", None)
    monkeypatch.setattr(rate_limiter, "redis_retry_at", 0.0)
    monkeypatch.setattr(rate_limiter.redis, "from_url", lambda url, **kwargs: DownRedis())

    with pytest.raises(redis.ConnectionError):
        get_redis_client()
    with pytest.raises(redis.ConnectionError):
        get_redis_client()
    assert len(pings) == 1

    monkeypatch.setattr(rate_limiter, "redis_retry_at", 0.0)
    with pytest.raises(redis.ConnectionError):
        get_redis_client()
    assert len(pings) == 2
