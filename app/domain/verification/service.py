"""
Meeting verification service

When a confirmed booking is about to start each party receives a 6-digit
code. Both must enter their code near the meeting point before the window
closes. The last party to check in moves the booking into the meeting and
captures the payment; if the window elapses first the booking is cancelled
and the hold released.
"""

import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...auth import ActingParty
from ...config import (
    PROXIMITY_THRESHOLD_METERS,
    VERIFICATION_EXTENSION_MINUTES,
    VERIFICATION_WINDOW_MINUTES,
)
from ...email_service import send_meeting_code_email
from ...models import Booking, BookingVerification
from ...services.notification_service import NotificationRelay
from ...shared.errors import (
    ExpiredError,
    InvalidCodeError,
    InvalidStateError,
    ValidationError,
)
from ...shared.geo import format_distance, haversine_meters
from ...shared.validators import OTP_LENGTH, normalize_otp, utc_now
from ..bookings import status as booking_status
from ..bookings.checkout import capture_payment
from ..bookings.service import BookingService
from .repository import (
    AWAITING_CODES,
    BOTH_VERIFIED,
    EXPIRED,
    NOT_STARTED,
    OPEN_STATUSES,
    VerificationRepository,
)

logger = logging.getLogger(__name__)

EXPIRY_REASON = "verification timeout"


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"


def generate_code_pair() -> tuple[str, str]:
    """Two independent codes that never coincide"""
    client_code = generate_code()
    companion_code = generate_code()
    while companion_code == client_code:
        companion_code = generate_code()
    return client_code, companion_code


def seconds_remaining(verification: BookingVerification, now: datetime) -> int:
    return max(0, int((verification.expires_at - now).total_seconds()))


def is_elapsed(verification: BookingVerification, now: datetime) -> bool:
    return verification.status in OPEN_STATUSES and now >= verification.expires_at


def party_verified_at(verification: BookingVerification, role: str) -> Optional[datetime]:
    return getattr(verification, f"{role}_verified_at")


def other_role(role: str) -> str:
    return "companion" if role == "client" else "client"


class VerificationService:
    """Service layer for meeting code issuance, check-in and expiry"""

    def __init__(self, db: Session, gateway=None, relay=None, bookings: Optional[BookingService] = None):
        self.db = db
        self.repo = VerificationRepository()
        self.gateway = gateway
        self.relay = relay or NotificationRelay(db)
        self.bookings = bookings or BookingService(db, gateway=gateway, relay=self.relay)

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    async def issue_codes(
        self,
        booking_id: int,
        party: Optional[ActingParty] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Issue the two meeting codes for a confirmed booking.

        Calling again while the window is open returns the existing codes;
        calling after it elapsed runs the expiry and raises ExpiredError.
        Codes are never reissued.
        """
        now = now or utc_now()
        if party is not None:
            booking = self.bookings.get_for_party(booking_id, party)
        else:
            booking = self.bookings.get_booking(booking_id)

        verification = self.repo.get_by_booking(self.db, booking.id)
        if verification is None:
            if booking.status != booking_status.CONFIRMED:
                raise InvalidStateError(
                    f"Meeting codes can only be issued for confirmed bookings (status: '{booking.status}')"
                )

            client_code, companion_code = generate_code_pair()
            try:
                verification = self.repo.create(
                    self.db,
                    booking_id=booking.id,
                    client_code=client_code,
                    companion_code=companion_code,
                    status=AWAITING_CODES,
                    issued_at=now,
                    expires_at=now + timedelta(minutes=VERIFICATION_WINDOW_MINUTES),
                )
            except IntegrityError:
                # A concurrent issuer created the row first; use theirs
                self.db.rollback()
                verification = self.repo.get_by_booking(self.db, booking.id)
                return self._issue_result(verification, party, now, issued=False)

            logger.info(
                f"🔐 Meeting codes issued for booking {booking.id}, expires at {verification.expires_at}"
            )
            await self._send_codes(booking, verification)
            return self._issue_result(verification, party, now, issued=True)

        if verification.status == EXPIRED:
            raise ExpiredError("The verification window for this booking has expired")
        if booking.status in booking_status.TERMINAL_STATUSES and verification.status != BOTH_VERIFIED:
            raise InvalidStateError(f"Booking is already {booking.status}")
        if is_elapsed(verification, now):
            await self.expire(booking.id, now=now)
            raise ExpiredError("The verification window for this booking has expired")

        return self._issue_result(verification, party, now, issued=False)

    def _issue_result(
        self,
        verification: BookingVerification,
        party: Optional[ActingParty],
        now: datetime,
        issued: bool,
    ) -> dict:
        return {
            "booking_id": verification.booking_id,
            "status": verification.status,
            "issued": issued,
            "code": getattr(verification, f"{party.role}_code") if party else None,
            "expires_at": verification.expires_at,
            "seconds_remaining": seconds_remaining(verification, now),
        }

    async def _send_codes(self, booking: Booking, verification: BookingVerification) -> None:
        client, companion = booking.client, booking.companion
        recipients = [
            (client, verification.client_code, companion),
            (companion, verification.companion_code, client),
        ]
        for user, code, other in recipients:
            if not user or not user.email:
                continue
            try:
                await send_meeting_code_email(
                    to=user.email,
                    user_name=user.full_name or "there",
                    code=code,
                    other_party_name=(other.full_name if other else None) or "your match",
                    meeting_location=booking.meeting_location,
                    window_minutes=VERIFICATION_WINDOW_MINUTES,
                    booking_id=booking.id,
                )
            except Exception as e:
                logger.warning(f"⚠️ Failed to email meeting code for booking {booking.id}: {e}")

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    async def verify(
        self,
        booking_id: int,
        party: ActingParty,
        code: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        confirm_location: bool = False,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Check in the acting party with their code and position.

        Returns a result dict whose status is one of one_party_verified,
        both_verified or location_mismatch. A location mismatch changes
        nothing; resubmitting with confirm_location=True overrides it.
        """
        now = now or utc_now()
        booking = self.bookings.get_for_party(booking_id, party)
        verification = self.repo.get_by_booking(self.db, booking.id)

        if verification is not None and verification.status == EXPIRED:
            self._log_attempt(booking, party, "expired", latitude, longitude)
            raise ExpiredError("The verification window for this booking has expired")
        if not booking_status.is_confirmed_like(booking.status):
            raise InvalidStateError(
                f"Booking is not awaiting a meeting (status: '{booking.status}')"
            )
        if verification is None:
            raise InvalidStateError("Meeting codes have not been issued for this booking yet")
        if is_elapsed(verification, now):
            self._log_attempt(booking, party, "expired", latitude, longitude)
            await self.expire(booking.id, now=now)
            raise ExpiredError("The verification window for this booking has expired")

        expected = getattr(verification, f"{party.role}_code")
        if not hmac.compare_digest(normalize_otp(code), expected):
            self._log_attempt(booking, party, "invalid_code", latitude, longitude)
            logger.warning(f"⚠️ Invalid meeting code for booking {booking.id} from {party.role} {party.id}")
            raise InvalidCodeError("Invalid verification code")

        if party_verified_at(verification, party.role) is not None:
            return self._verify_result(
                verification, now, "You have already checked in", already_verified=True
            )

        distance = None
        if booking.meeting_location_lat is not None and booking.meeting_location_lon is not None:
            if latitude is None or longitude is None:
                raise ValidationError("Your current location is required to check in")
            distance = haversine_meters(
                latitude, longitude, booking.meeting_location_lat, booking.meeting_location_lon
            )
            if distance > PROXIMITY_THRESHOLD_METERS and not confirm_location:
                self._log_attempt(booking, party, "location_mismatch", latitude, longitude, distance)
                logger.info(
                    f"📍 Location mismatch for booking {booking.id}: {party.role} is {format_distance(distance)} away"
                )
                return {
                    "booking_id": booking.id,
                    "status": "location_mismatch",
                    "verified": False,
                    "seconds_remaining": seconds_remaining(verification, now),
                    "distance_meters": round(distance, 1),
                    "distance_formatted": format_distance(distance),
                    "threshold_meters": PROXIMITY_THRESHOLD_METERS,
                    "requires_confirmation": True,
                    "message": (
                        f"You appear to be {format_distance(distance)} from the meeting location. "
                        "Confirm to check in anyway."
                    ),
                }

        if not self.repo.mark_party_verified(
            self.db, verification.id, party.role, now, latitude, longitude
        ):
            self.db.refresh(verification)
            if verification.status == EXPIRED or is_elapsed(verification, now):
                raise ExpiredError("The verification window for this booking has expired")
            if party_verified_at(verification, party.role) is not None:
                return self._verify_result(
                    verification, now, "You have already checked in", already_verified=True
                )
            raise InvalidStateError("Verification is no longer open")

        outcome = (
            "location_confirmed"
            if distance is not None and distance > PROXIMITY_THRESHOLD_METERS
            else "verified"
        )
        self._log_attempt(booking, party, outcome, latitude, longitude, distance)
        logger.info(f"✅ {party.role.capitalize()} {party.id} checked in for booking {booking.id}")

        if self.repo.mark_both_verified(self.db, verification.id, now):
            await self._start_meeting(booking, now)

        self.db.refresh(verification)
        if verification.status == BOTH_VERIFIED:
            return self._verify_result(verification, now, "Both parties verified. Enjoy your meeting!")
        return self._verify_result(
            verification, now, "Checked in. Waiting for the other party to verify."
        )

    async def _start_meeting(self, booking: Booking, now: datetime) -> None:
        """Side effects run once, by whichever caller completed the check-in"""
        self.bookings.repo.mark_meeting_started(self.db, booking.id, now)
        self.db.refresh(booking)
        logger.info(f"🤝 Both parties verified for booking {booking.id}; meeting started")

        if booking.payment_status == "authorized":
            payment_status = await capture_payment(self.gateway, booking.payment_intent_id)
            self.bookings.repo.update_fields(self.db, booking.id, payment_status=payment_status)
            self.db.refresh(booking)

        await self.relay.emit(
            [booking.client_id, booking.companion_id],
            "meeting.verified",
            {
                "booking_id": booking.id,
                "meeting_started_at": now.isoformat(),
                "payment_status": booking.payment_status,
            },
        )

    def _verify_result(
        self,
        verification: BookingVerification,
        now: datetime,
        message: str,
        already_verified: bool = False,
    ) -> dict:
        both = verification.status == BOTH_VERIFIED
        return {
            "booking_id": verification.booking_id,
            "status": verification.status,
            "verified": True,
            "both_verified": both,
            "already_verified": already_verified,
            "seconds_remaining": 0 if both else seconds_remaining(verification, now),
            "message": message,
        }

    def _log_attempt(
        self,
        booking: Booking,
        party: ActingParty,
        outcome: str,
        latitude: Optional[float],
        longitude: Optional[float],
        distance: Optional[float] = None,
    ) -> None:
        try:
            self.repo.log_attempt(
                self.db,
                booking_id=booking.id,
                user_id=party.id,
                role=party.role,
                outcome=outcome,
                latitude=latitude,
                longitude=longitude,
                distance_meters=distance,
            )
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to record verification attempt for booking {booking.id}: {e}")

    # ------------------------------------------------------------------
    # Expire / extend / status
    # ------------------------------------------------------------------

    async def expire(self, booking_id: int, now: Optional[datetime] = None) -> dict:
        """
        Close an elapsed verification window: the booking is cancelled by the
        system and the hold released. Safe to call repeatedly; does nothing
        when codes were never issued, the meeting is verified, the window is
        still open, or the expiry already happened.
        """
        now = now or utc_now()
        booking = self.bookings.get_booking(booking_id)
        verification = self.repo.get_by_booking(self.db, booking.id)

        def result(expired: bool, status: str, remaining: int = 0) -> dict:
            return {
                "booking_id": booking.id,
                "expired": expired,
                "status": status,
                "booking_status": booking.status,
                "seconds_remaining": remaining,
            }

        if verification is None:
            return result(False, NOT_STARTED)
        if verification.status == BOTH_VERIFIED:
            return result(False, BOTH_VERIFIED)
        if verification.status == EXPIRED:
            return result(True, EXPIRED)
        if booking.status == booking_status.CANCELLED:
            return result(False, verification.status)
        if now < verification.expires_at:
            return result(False, verification.status, seconds_remaining(verification, now))

        if not self.repo.mark_expired(self.db, verification.id, now):
            self.db.refresh(verification)
            self.db.refresh(booking)
            return result(verification.status == EXPIRED, verification.status)

        logger.info(f"⏰ Verification window elapsed for booking {booking.id}")
        parties = [booking.client_id, booking.companion_id]

        if booking.status in booking_status.CANCELLABLE_STATUSES:
            try:
                await self.bookings.cancel_booking(booking, "system", EXPIRY_REASON, now, notify=parties)
            except InvalidStateError:
                logger.info(f"Booking {booking.id} left the cancellable states before expiry")

        await self.relay.emit(
            parties,
            "verification.expired",
            {"booking_id": booking.id, "reason": EXPIRY_REASON},
        )
        self.db.refresh(booking)
        return result(True, EXPIRED)

    async def extend(
        self, booking_id: int, party: ActingParty, now: Optional[datetime] = None
    ) -> dict:
        """One-time extension of the window, requested by a party not yet checked in"""
        now = now or utc_now()
        booking = self.bookings.get_for_party(booking_id, party)
        verification = self.repo.get_by_booking(self.db, booking.id)

        if verification is None:
            raise InvalidStateError("Meeting codes have not been issued for this booking yet")
        if verification.status == EXPIRED:
            raise ExpiredError("The verification window for this booking has expired")
        if verification.status == BOTH_VERIFIED:
            raise InvalidStateError("The meeting is already verified")
        if is_elapsed(verification, now):
            await self.expire(booking.id, now=now)
            raise ExpiredError("The verification window for this booking has expired")
        if verification.extension_used:
            raise InvalidStateError("The verification window has already been extended")
        if party_verified_at(verification, party.role) is not None:
            raise InvalidStateError("You have already checked in")

        new_expires_at = verification.expires_at + timedelta(minutes=VERIFICATION_EXTENSION_MINUTES)
        if not self.repo.extend_window(self.db, verification.id, new_expires_at, party.id, now):
            raise InvalidStateError("The verification window could not be extended")
        self.db.refresh(verification)
        logger.info(f"⏳ Verification window for booking {booking.id} extended to {new_expires_at}")

        await self.relay.emit(
            [booking.client_id, booking.companion_id],
            "verification.extended",
            {
                "booking_id": booking.id,
                "expires_at": verification.expires_at.isoformat(),
                "requested_by": party.role,
            },
        )
        return self.get_status(booking.id, party, now=now)

    def get_status(
        self, booking_id: int, party: ActingParty, now: Optional[datetime] = None
    ) -> dict:
        """
        Server-side view of the check-in for a party rejoining the screen.
        Reports an elapsed window as expired without changing anything.
        """
        now = now or utc_now()
        booking = self.bookings.get_for_party(booking_id, party)
        verification = self.repo.get_by_booking(self.db, booking.id)

        if verification is None:
            return {
                "booking_id": booking.id,
                "booking_status": booking.status,
                "status": NOT_STARTED,
                "codes_issued": False,
            }

        status = EXPIRED if is_elapsed(verification, now) else verification.status
        user_verified = party_verified_at(verification, party.role) is not None
        is_open = status in OPEN_STATUSES

        return {
            "booking_id": booking.id,
            "booking_status": booking.status,
            "status": status,
            "codes_issued": True,
            "code": getattr(verification, f"{party.role}_code") if is_open else None,
            "user_verified": user_verified,
            "other_party_verified": party_verified_at(verification, other_role(party.role)) is not None,
            "both_verified": status == BOTH_VERIFIED,
            "extension_used": verification.extension_used,
            "can_extend": is_open and not verification.extension_used and not user_verified,
            "expires_at": verification.expires_at,
            "seconds_remaining": seconds_remaining(verification, now) if is_open else 0,
        }
