from datetime import timedelta

import pytest

from app.domain.bookings import status as booking_status
from app.domain.verification.repository import (
    AWAITING_CODES,
    BOTH_VERIFIED,
    EXPIRED,
    NOT_STARTED,
    ONE_PARTY_VERIFIED,
)
from app.domain.verification.service import EXPIRY_REASON, generate_code_pair
from app.models import BookingVerification, VerificationAttempt
from app.shared.errors import (
    ExpiredError,
    InvalidCodeError,
    InvalidStateError,
    PermissionDeniedError,
    ValidationError,
)

from .conftest import MEETING_LAT, MEETING_LON

# Boston, a few hundred kilometres from the meeting point
FAR_LAT = 42.3601
FAR_LON = -71.0589


@pytest.fixture
def issued(confirmed_booking, verification_service, client_party, companion_party):
    """A confirmed booking with codes issued five minutes before it starts"""

    async def _issued(**overrides):
        booking = await confirmed_booking(**overrides)
        now = booking.starts_at - timedelta(minutes=5)
        client = await verification_service.issue_codes(booking.id, party=client_party, now=now)
        companion = await verification_service.issue_codes(booking.id, party=companion_party, now=now)
        return booking, now, client["code"], companion["code"]

    return _issued


def test_code_pair_is_distinct_six_digits():
    for _ in range(50):
        client_code, companion_code = generate_code_pair()
        assert client_code != companion_code
        assert len(client_code) == 6 and client_code.isdigit()
        assert len(companion_code) == 6 and companion_code.isdigit()


class TestIssueCodes:
    async def test_issue_is_idempotent(self, confirmed_booking, verification_service, client_party, db):
        booking = await confirmed_booking()
        now = booking.starts_at - timedelta(minutes=5)

        first = await verification_service.issue_codes(booking.id, party=client_party, now=now)
        second = await verification_service.issue_codes(
            booking.id, party=client_party, now=now + timedelta(minutes=1)
        )

        assert first["issued"] is True
        assert second["issued"] is False
        assert first["code"] == second["code"]
        assert first["status"] == AWAITING_CODES
        assert first["seconds_remaining"] == 600
        assert second["seconds_remaining"] == 540
        assert db.query(BookingVerification).count() == 1

    async def test_parties_get_their_own_codes(self, issued):
        _, _, client_code, companion_code = await issued()
        assert client_code != companion_code

    async def test_requires_confirmed_booking(self, create_booking, verification_service, client_party):
        booking = await create_booking()
        with pytest.raises(InvalidStateError):
            await verification_service.issue_codes(booking.id, party=client_party)

    async def test_outsider_rejected(self, confirmed_booking, verification_service, other_client_party):
        booking = await confirmed_booking()
        with pytest.raises(PermissionDeniedError):
            await verification_service.issue_codes(booking.id, party=other_client_party)

    async def test_issue_after_window_elapsed_expires(
        self, issued, verification_service, client_party, booking_service
    ):
        booking, now, _, _ = await issued()
        with pytest.raises(ExpiredError):
            await verification_service.issue_codes(
                booking.id, party=client_party, now=now + timedelta(minutes=11)
            )
        assert booking_service.get_booking(booking.id).status == booking_status.CANCELLED

        with pytest.raises(ExpiredError):
            await verification_service.issue_codes(
                booking.id, party=client_party, now=now + timedelta(minutes=12)
            )


class TestVerify:
    async def test_wrong_code_changes_nothing(self, issued, verification_service, client_party, db):
        booking, now, client_code, _ = await issued()
        wrong = "000000" if client_code != "000000" else "111111"

        with pytest.raises(InvalidCodeError):
            await verification_service.verify(
                booking.id, client_party, wrong, MEETING_LAT, MEETING_LON, now=now
            )

        verification = db.query(BookingVerification).one()
        assert verification.status == AWAITING_CODES
        assert verification.client_verified_at is None
        assert db.query(VerificationAttempt).one().outcome == "invalid_code"

    async def test_other_partys_code_rejected(self, issued, verification_service, client_party):
        booking, now, _, companion_code = await issued()
        with pytest.raises(InvalidCodeError):
            await verification_service.verify(
                booking.id, client_party, companion_code, MEETING_LAT, MEETING_LON, now=now
            )

    async def test_code_formatting_ignored(self, issued, verification_service, client_party):
        booking, now, client_code, _ = await issued()
        spaced = f"{client_code[:3]} {client_code[3:]}"
        result = await verification_service.verify(
            booking.id, client_party, spaced, MEETING_LAT, MEETING_LON, now=now
        )
        assert result["status"] == ONE_PARTY_VERIFIED

    async def test_location_required_when_meeting_point_known(
        self, issued, verification_service, client_party
    ):
        booking, now, client_code, _ = await issued()
        with pytest.raises(ValidationError):
            await verification_service.verify(booking.id, client_party, client_code, now=now)

    async def test_location_mismatch_then_override(
        self, issued, verification_service, client_party, db
    ):
        booking, now, client_code, _ = await issued()

        result = await verification_service.verify(
            booking.id, client_party, client_code, FAR_LAT, FAR_LON, now=now
        )
        assert result["status"] == "location_mismatch"
        assert result["verified"] is False
        assert result["requires_confirmation"] is True
        assert result["distance_meters"] > 5000
        assert result["distance_formatted"].endswith("km")

        verification = db.query(BookingVerification).one()
        db.refresh(verification)
        assert verification.status == AWAITING_CODES
        assert verification.client_verified_at is None

        confirmed = await verification_service.verify(
            booking.id, client_party, client_code, FAR_LAT, FAR_LON, confirm_location=True, now=now
        )
        assert confirmed["status"] == ONE_PARTY_VERIFIED
        outcomes = [a.outcome for a in db.query(VerificationAttempt).order_by(VerificationAttempt.id)]
        assert outcomes == ["location_mismatch", "location_confirmed"]

    @pytest.mark.parametrize("companion_first", [False, True])
    async def test_both_parties_start_meeting_once(
        self,
        issued,
        verification_service,
        booking_service,
        client_party,
        companion_party,
        gateway,
        publisher,
        companion_first,
    ):
        booking, now, client_code, companion_code = await issued()
        order = [(client_party, client_code), (companion_party, companion_code)]
        if companion_first:
            order.reverse()
        (first_party, first_code), (second_party, second_code) = order

        first = await verification_service.verify(
            booking.id, first_party, first_code, MEETING_LAT, MEETING_LON, now=now
        )
        assert first["status"] == ONE_PARTY_VERIFIED
        assert first["both_verified"] is False
        assert gateway.captured == []

        second = await verification_service.verify(
            booking.id,
            second_party,
            second_code,
            MEETING_LAT + 0.001,
            MEETING_LON,
            now=now + timedelta(minutes=1),
        )
        assert second["status"] == BOTH_VERIFIED
        assert second["both_verified"] is True

        for party, code in order:
            repeat = await verification_service.verify(
                booking.id, party, code, MEETING_LAT, MEETING_LON, now=now + timedelta(minutes=2)
            )
            assert repeat["already_verified"] is True

        booking = booking_service.get_booking(booking.id)
        assert booking.status == booking_status.CONFIRMED
        assert booking.meeting_started_at == now + timedelta(minutes=1)
        assert booking.payment_status == "captured"
        assert gateway.captured == [booking.payment_intent_id]
        assert len(publisher.events("meeting.verified")) == 2

    async def test_verified_meeting_is_not_expired(
        self, issued, verification_service, booking_service, client_party, companion_party
    ):
        booking, now, client_code, companion_code = await issued()
        await verification_service.verify(
            booking.id, client_party, client_code, MEETING_LAT, MEETING_LON, now=now
        )
        await verification_service.verify(
            booking.id, companion_party, companion_code, MEETING_LAT, MEETING_LON, now=now
        )

        result = await verification_service.expire(booking.id, now=now + timedelta(hours=1))
        assert result["expired"] is False
        assert result["status"] == BOTH_VERIFIED
        assert booking_service.get_booking(booking.id).status == booking_status.CONFIRMED

    async def test_verify_after_window_elapsed(
        self, issued, verification_service, booking_service, client_party, gateway
    ):
        booking, now, client_code, _ = await issued()
        with pytest.raises(ExpiredError):
            await verification_service.verify(
                booking.id,
                client_party,
                client_code,
                MEETING_LAT,
                MEETING_LON,
                now=now + timedelta(minutes=10),
            )

        booking = booking_service.get_booking(booking.id)
        assert booking.status == booking_status.CANCELLED
        assert booking.cancelled_by == "system"
        assert gateway.released == [booking.payment_intent_id]

    async def test_verify_before_codes_issued(self, confirmed_booking, verification_service, client_party):
        booking = await confirmed_booking()
        with pytest.raises(InvalidStateError):
            await verification_service.verify(booking.id, client_party, "123456", MEETING_LAT, MEETING_LON)

    async def test_cancelled_booking_cannot_verify(
        self, issued, verification_service, booking_service, client_party, companion_party
    ):
        booking, now, _, companion_code = await issued()
        await booking_service.cancel(booking.id, client_party, "Running late", now=now)

        with pytest.raises(InvalidStateError):
            await verification_service.verify(
                booking.id, companion_party, companion_code, MEETING_LAT, MEETING_LON, now=now
            )


class TestExpire:
    async def test_noop_without_codes(self, confirmed_booking, verification_service):
        booking = await confirmed_booking()
        result = await verification_service.expire(booking.id)
        assert result["expired"] is False
        assert result["status"] == NOT_STARTED

    async def test_noop_while_window_open(self, issued, verification_service):
        booking, now, _, _ = await issued()
        result = await verification_service.expire(booking.id, now=now + timedelta(minutes=4))
        assert result["expired"] is False
        assert result["seconds_remaining"] == 360

    async def test_elapsed_window_cancels_booking(
        self, issued, verification_service, client_party, companion_party, gateway, publisher
    ):
        booking, now, client_code, _ = await issued()
        await verification_service.verify(
            booking.id, client_party, client_code, MEETING_LAT, MEETING_LON, now=now
        )

        result = await verification_service.expire(booking.id, now=now + timedelta(minutes=10))

        assert result["expired"] is True
        assert result["status"] == EXPIRED
        assert result["booking_status"] == booking_status.CANCELLED
        assert gateway.released == [booking.payment_intent_id]
        assert len(publisher.events("verification.expired")) == 2
        cancelled = publisher.events("booking.cancelled")
        assert {ch for ch, _ in cancelled} == {f"user:{client_party.id}", f"user:{companion_party.id}"}
        assert cancelled[0][1]["data"]["cancellation_reason"] == EXPIRY_REASON

    async def test_expire_is_idempotent(self, issued, verification_service, gateway, publisher):
        booking, now, _, _ = await issued()
        later = now + timedelta(minutes=15)

        first = await verification_service.expire(booking.id, now=later)
        second = await verification_service.expire(booking.id, now=later + timedelta(minutes=1))

        assert first["expired"] is True
        assert second["expired"] is True
        assert len(gateway.released) == 1
        assert len(publisher.events("verification.expired")) == 2


class TestExtend:
    async def test_extend_once(self, issued, verification_service, client_party, companion_party, publisher):
        booking, now, _, _ = await issued()

        status = await verification_service.extend(booking.id, client_party, now=now)
        assert status["extension_used"] is True
        assert status["can_extend"] is False
        assert status["seconds_remaining"] == 20 * 60
        assert len(publisher.events("verification.extended")) == 2

        with pytest.raises(InvalidStateError):
            await verification_service.extend(booking.id, companion_party, now=now)

        # The original deadline has passed but the extended one has not
        result = await verification_service.expire(booking.id, now=now + timedelta(minutes=15))
        assert result["expired"] is False

    async def test_verified_party_cannot_extend(self, issued, verification_service, client_party):
        booking, now, client_code, _ = await issued()
        await verification_service.verify(
            booking.id, client_party, client_code, MEETING_LAT, MEETING_LON, now=now
        )
        with pytest.raises(InvalidStateError):
            await verification_service.extend(booking.id, client_party, now=now)

    async def test_extend_after_expiry(self, issued, verification_service, companion_party):
        booking, now, _, _ = await issued()
        with pytest.raises(ExpiredError):
            await verification_service.extend(booking.id, companion_party, now=now + timedelta(minutes=11))


class TestStatus:
    async def test_before_issue(self, confirmed_booking, verification_service, client_party):
        booking = await confirmed_booking()
        status = verification_service.get_status(booking.id, client_party)
        assert status["status"] == NOT_STARTED
        assert status["codes_issued"] is False

    async def test_rejoin_mid_window(
        self, issued, verification_service, client_party, companion_party
    ):
        booking, now, client_code, companion_code = await issued()
        await verification_service.verify(
            booking.id, client_party, client_code, MEETING_LAT, MEETING_LON, now=now
        )

        later = now + timedelta(minutes=3)
        mine = verification_service.get_status(booking.id, client_party, now=later)
        theirs = verification_service.get_status(booking.id, companion_party, now=later)

        assert mine["user_verified"] is True
        assert mine["can_extend"] is False
        assert mine["seconds_remaining"] == 420
        assert theirs["other_party_verified"] is True
        assert theirs["code"] == companion_code
        assert theirs["can_extend"] is True

    async def test_elapsed_reported_without_side_effects(
        self, issued, verification_service, booking_service, client_party, gateway
    ):
        booking, now, _, _ = await issued()
        status = verification_service.get_status(booking.id, client_party, now=now + timedelta(minutes=30))

        assert status["status"] == EXPIRED
        assert status["seconds_remaining"] == 0
        assert status["code"] is None
        assert booking_service.get_booking(booking.id).status == booking_status.CONFIRMED
        assert gateway.released == []
