import json
import os
from datetime import date, timedelta

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EMAIL_MODE"] = "log"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ.pop("REDIS_URL", None)
os.environ.pop("REDIS_HOST", None)

import pytest  # noqa: E402

from app.auth import ActingParty  # noqa: E402
from app.database import Base, SessionLocal, engine  # noqa: E402
from app.domain.booking_requests.schemas import BookingRequestCreate  # noqa: E402
from app.domain.booking_requests.service import BookingRequestService  # noqa: E402
from app.domain.bookings.schemas import BookingCreate  # noqa: E402
from app.domain.bookings.service import BookingService  # noqa: E402
from app.domain.verification.service import VerificationService  # noqa: E402
from app.models import User  # noqa: E402
from app.services.notification_service import NotificationRelay  # noqa: E402
from app.services.payment_gateway import PaymentGatewayError  # noqa: E402
from app.shared.validators import utc_now  # noqa: E402

HOURLY_RATE_CENTS = 5000

# Central Park, New York
MEETING_LAT = 40.7829
MEETING_LON = -73.9654


class FakeGateway:
    """In-memory stand-in for the Stripe PaymentIntents API"""

    def __init__(self):
        self.intents = {}
        self.captured = []
        self.released = []
        self.fail_capture = False
        self.fail_release = False

    def add_intent(self, amount_cents, status="requires_capture", client_id=None):
        intent_id = f"pi_test_{len(self.intents) + 1}"
        metadata = {"client_id": str(client_id)} if client_id is not None else {}
        self.intents[intent_id] = {
            "id": intent_id,
            "client_secret": f"{intent_id}_secret",
            "amount": amount_cents,
            "currency": "usd",
            "status": status,
            "metadata": metadata,
        }
        return intent_id

    async def create_payment_intent(self, amount_cents, currency="usd", metadata=None):
        intent_id = self.add_intent(amount_cents, status="requires_payment_method")
        self.intents[intent_id]["metadata"] = {k: str(v) for k, v in (metadata or {}).items()}
        return dict(self.intents[intent_id])

    async def retrieve_payment_intent(self, intent_id):
        intent = self.intents.get(intent_id)
        return dict(intent) if intent else None

    async def capture_payment_intent(self, intent_id):
        if self.fail_capture:
            raise PaymentGatewayError("capture declined", status_code=402)
        self.captured.append(intent_id)
        self.intents[intent_id]["status"] = "succeeded"
        return dict(self.intents[intent_id])

    async def release_payment_intent(self, intent_id):
        if self.fail_release:
            raise PaymentGatewayError("provider unavailable", status_code=503)
        self.released.append(intent_id)
        self.intents[intent_id]["status"] = "canceled"
        return dict(self.intents[intent_id])


class FakeGeocoder:
    def __init__(self, result=None):
        self.result = result
        self.calls = []

    async def geocode(self, address):
        self.calls.append(address)
        return self.result


class RecordingPublisher:
    """Captures realtime publishes instead of sending them to Redis"""

    def __init__(self):
        self.messages = []
        self.fail = False

    def __call__(self, channel, message):
        if self.fail:
            raise ConnectionError("redis down")
        self.messages.append((channel, json.loads(message)))

    def events(self, name):
        return [(channel, msg) for channel, msg in self.messages if msg["event"] == name]


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def relay(db, publisher):
    return NotificationRelay(db, publish=publisher)


def make_user(db, email, role, full_name, hourly_rate_cents=None):
    user = User(email=email, role=role, full_name=full_name, hourly_rate_cents=hourly_rate_cents)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def client_user(db):
    return make_user(db, "client@example.com", "client", "Casey Client")


@pytest.fixture
def other_client_user(db):
    return make_user(db, "other@example.com", "client", "Oakley Other")


@pytest.fixture
def companion_user(db):
    return make_user(
        db, "companion@example.com", "companion", "Jordan Companion", HOURLY_RATE_CENTS
    )


@pytest.fixture
def client_party(client_user):
    return ActingParty(id=client_user.id, role="client")


@pytest.fixture
def other_client_party(other_client_user):
    return ActingParty(id=other_client_user.id, role="client")


@pytest.fixture
def companion_party(companion_user):
    return ActingParty(id=companion_user.id, role="companion")


@pytest.fixture
def booking_service(db, gateway, geocoder, relay):
    return BookingService(db, gateway=gateway, geocoder=geocoder, relay=relay)


@pytest.fixture
def verification_service(db, gateway, relay, booking_service):
    return VerificationService(db, gateway=gateway, relay=relay, bookings=booking_service)


@pytest.fixture
def request_service(db, gateway, geocoder, relay):
    return BookingRequestService(db, gateway=gateway, geocoder=geocoder, relay=relay)


def future_date(days=7) -> date:
    return (utc_now() + timedelta(days=days)).date()


def booking_payload(companion_id, payment_intent_id, **overrides) -> dict:
    """Two hours at 18:00 UTC a week from now, meeting in Central Park"""
    payload = {
        "companion_id": companion_id,
        "payment_intent_id": payment_intent_id,
        "booking_date": future_date(),
        "start_time": "18:00",
        "end_time": "20:00",
        "timezone": "UTC",
        "meeting_location": "Central Park, New York",
        "meeting_location_lat": MEETING_LAT,
        "meeting_location_lon": MEETING_LON,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def create_booking(booking_service, gateway, client_party, companion_user):
    """Create a booking backed by a fresh authorized intent"""

    async def _create(party=None, intent_status="requires_capture", **overrides):
        party = party or client_party
        extra = overrides.get("extra_amount_cents", 0)
        amount = overrides.pop("intent_amount", None) or 2 * HOURLY_RATE_CENTS + extra
        intent_id = gateway.add_intent(amount, status=intent_status, client_id=party.id)
        data = BookingCreate(**booking_payload(companion_user.id, intent_id, **overrides))
        return await booking_service.create_with_payment(party, data)

    return _create


@pytest.fixture
def create_request(request_service, gateway, client_party, companion_user):
    """Create a pending booking request backed by a fresh authorized intent"""

    async def _create(party=None, **overrides):
        party = party or client_party
        intent_id = gateway.add_intent(2 * HOURLY_RATE_CENTS, client_id=party.id)
        data = BookingRequestCreate(**booking_payload(companion_user.id, intent_id, **overrides))
        return await request_service.create(party, data)

    return _create


@pytest.fixture
def confirmed_booking(create_booking, booking_service, companion_party):
    """A booking the companion has already approved"""

    async def _confirmed(**overrides):
        booking = await create_booking(**overrides)
        return await booking_service.approve(booking.id, companion_party)

    return _confirmed


@pytest.fixture
def verified_booking(confirmed_booking, verification_service, client_party, companion_party):
    """A confirmed booking whose meeting both parties checked in to"""

    async def _verified(**overrides):
        booking = await confirmed_booking(**overrides)
        now = booking.starts_at - timedelta(minutes=5)
        client = await verification_service.issue_codes(booking.id, party=client_party, now=now)
        companion = await verification_service.issue_codes(booking.id, party=companion_party, now=now)
        await verification_service.verify(
            booking.id, client_party, client["code"], MEETING_LAT, MEETING_LON, now=now
        )
        await verification_service.verify(
            booking.id, companion_party, companion["code"], MEETING_LAT, MEETING_LON, now=now
        )
        return verification_service.bookings.get_booking(booking.id)

    return _verified
