"""Booking service - Business logic for the booking lifecycle"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...auth import ActingParty
from ...config import AUTO_COMPLETE_GRACE_MINUTES, PAYMENT_CURRENCY
from ...email_service import send_booking_cancelled_email
from ...models import Booking
from ...services.notification_service import NotificationRelay
from ...services.payment_gateway import PaymentGatewayError
from ...shared.errors import (
    InvalidStateError,
    NotFoundError,
    PaymentError,
    PermissionDeniedError,
    ValidationError,
)
from ...shared.validators import utc_now
from . import status as booking_status
from .checkout import (
    authorize_payment,
    capture_payment,
    quote_amounts,
    release_payment,
    resolve_location,
    resolve_schedule,
)
from .repository import BookingRepository
from .schemas import BookingCreate, PaymentIntentCreate

logger = logging.getLogger(__name__)

SLOT_TAKEN_REASON = "Time slot accepted for another booking"
UNAPPROVED_REASON = "Companion did not approve before the meeting time"
NO_SHOW_REASON = "No verified meeting took place"


def booking_event_payload(booking: Booking) -> dict:
    return {
        "booking_id": booking.id,
        "status": booking.status,
        "client_id": booking.client_id,
        "companion_id": booking.companion_id,
        "booking_date": booking.booking_date.isoformat(),
        "start_time": booking.start_time,
        "end_time": booking.end_time,
        "cancelled_by": booking.cancelled_by,
        "cancellation_reason": booking.cancellation_reason,
    }


def other_party_id(booking: Booking, party: ActingParty) -> int:
    return booking.companion_id if party.is_client else booking.client_id


class BookingService:
    """Service layer for booking lifecycle business logic"""

    def __init__(self, db: Session, gateway=None, geocoder=None, relay=None):
        self.db = db
        self.repo = BookingRepository()
        self.gateway = gateway
        self.geocoder = geocoder
        self.relay = relay or NotificationRelay(db)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_booking(self, booking_id: int) -> Booking:
        booking = self.repo.get_booking_by_id(self.db, booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        return booking

    def get_for_party(self, booking_id: int, party: ActingParty) -> Booking:
        """Fetch a booking the acting party takes part in"""
        booking = self.get_booking(booking_id)
        if party.is_client and booking.client_id == party.id:
            return booking
        if party.is_companion and booking.companion_id == party.id:
            return booking
        raise PermissionDeniedError("You are not a party to this booking")

    def list_for_party(self, party: ActingParty, status_filter: str = "all") -> list[Booking]:
        """A party's bookings, pending first, then upcoming, then history"""
        status_filter = (status_filter or "all").lower()
        if status_filter != "all" and status_filter not in booking_status.BOOKING_STATUSES:
            raise ValidationError(f"Unknown status filter: {status_filter}")

        bookings = self.repo.get_bookings_for_party(
            self.db, party.id, party.role, None if status_filter == "all" else status_filter
        )
        return sorted(
            bookings, key=lambda b: booking_status.priority_sort_key(b.status, b.starts_at)
        )

    def get_bookable_companion(self, companion_id: int, party: ActingParty):
        if not party.is_client:
            raise PermissionDeniedError("Only clients can book a companion")
        if companion_id == party.id:
            raise ValidationError("You cannot book yourself")

        companion = self.repo.get_user(self.db, companion_id)
        if not companion or companion.role != "companion" or not companion.is_active:
            raise NotFoundError("Companion not found")
        if not companion.hourly_rate_cents:
            raise ValidationError("Companion has not set an hourly rate")
        return companion

    def ensure_companion_available(self, companion_id: int, schedule: dict, exclude_id=None):
        conflicts = self.repo.find_overlapping(
            self.db,
            companion_id,
            schedule["starts_at"],
            schedule["ends_at"],
            (booking_status.CONFIRMED,),
            exclude_id=exclude_id,
        )
        if conflicts:
            raise InvalidStateError(
                "Companion already has a confirmed booking at this time",
                extra={"conflicting_booking_id": conflicts[0].id},
            )

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def create_payment_intent(self, party: ActingParty, data: PaymentIntentCreate) -> dict:
        """Price a booking server-side and open a manual-capture payment hold"""
        companion = self.get_bookable_companion(data.companion_id, party)
        schedule = resolve_schedule(
            data.booking_date, data.start_time, data.end_time, data.timezone, now=utc_now()
        )
        amounts = quote_amounts(
            companion.hourly_rate_cents,
            schedule["duration_minutes"],
            data.extra_amount_cents,
            data.total_amount_cents,
        )

        try:
            intent = await self.gateway.create_payment_intent(
                amounts["total_amount_cents"],
                PAYMENT_CURRENCY,
                metadata={
                    "client_id": party.id,
                    "companion_id": companion.id,
                    "booking_date": schedule["booking_date"].isoformat(),
                    "start_time": schedule["start_time"],
                    "end_time": schedule["end_time"],
                },
            )
        except PaymentGatewayError as e:
            raise PaymentError(f"Could not create payment: {e}") from e

        logger.info(
            f"💳 Payment intent {intent['id']} opened by client {party.id} for companion {companion.id}"
        )
        return {
            "payment_intent_id": intent["id"],
            "client_secret": intent.get("client_secret"),
            "currency": PAYMENT_CURRENCY,
            "duration_minutes": schedule["duration_minutes"],
            **{k: v for k, v in amounts.items() if k != "platform_fee_cents"},
        }

    async def create_with_payment(self, party: ActingParty, data: BookingCreate) -> Booking:
        """Create a booking backed by an authorized (or processing) payment"""
        logger.info(f"📥 Creating booking for client {party.id} with companion {data.companion_id}")

        companion = self.get_bookable_companion(data.companion_id, party)
        schedule = resolve_schedule(
            data.booking_date, data.start_time, data.end_time, data.timezone, now=utc_now()
        )
        amounts = quote_amounts(
            companion.hourly_rate_cents,
            schedule["duration_minutes"],
            data.extra_amount_cents,
            data.total_amount_cents,
        )
        self.ensure_companion_available(companion.id, schedule)

        intent_status = await authorize_payment(
            self.db, self.gateway, data.payment_intent_id, amounts["total_amount_cents"], party.id
        )
        initial_status = (
            booking_status.PAYMENT_HELD
            if intent_status == "requires_capture"
            else booking_status.PENDING
        )

        location = await resolve_location(
            self.geocoder,
            data.meeting_location,
            data.meeting_location_lat,
            data.meeting_location_lon,
            data.meeting_location_place_id,
        )

        try:
            booking = self.repo.create_booking(
                self.db,
                client_id=party.id,
                companion_id=companion.id,
                currency=PAYMENT_CURRENCY,
                status=initial_status,
                payment_intent_id=data.payment_intent_id,
                payment_status="authorized",
                special_requests=data.special_requests,
                **schedule,
                **amounts,
                **location,
            )
        except IntegrityError as e:
            self.db.rollback()
            raise PaymentError(
                "This payment authorization is already attached to a booking"
            ) from e

        logger.info(
            f"✅ Booking {booking.id} created: status={booking.status}, total={booking.total_amount_cents}"
        )
        await self.relay.emit([booking.companion_id], "booking.created", booking_event_payload(booking))
        return booking

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def approve(
        self, booking_id: int, party: ActingParty, now: Optional[datetime] = None
    ) -> Booking:
        """Companion accepts a pending booking; overlapping pending ones are released"""
        now = now or utc_now()
        booking = self.get_for_party(booking_id, party)
        if not party.is_companion:
            raise PermissionDeniedError("Only the companion can approve a booking")
        if not booking_status.validate_status_transition(booking.status, booking_status.CONFIRMED):
            raise InvalidStateError(f"Booking cannot be approved from status '{booking.status}'")

        self.ensure_companion_available(
            booking.companion_id,
            {"starts_at": booking.starts_at, "ends_at": booking.ends_at},
            exclude_id=booking.id,
        )

        previous = booking.status
        if not self.repo.transition_status(
            self.db,
            booking.id,
            booking_status.APPROVABLE_STATUSES,
            booking_status.CONFIRMED,
            confirmed_at=now,
        ):
            raise InvalidStateError("Booking was changed by another request")
        self.db.refresh(booking)
        logger.info(f"✅ Booking {booking.id} transitioned: {previous} → confirmed")

        await self.release_overlapping(booking, now)

        await self.relay.emit(
            [booking.client_id, booking.companion_id],
            "booking.approved",
            booking_event_payload(booking),
        )
        return booking

    async def release_overlapping(self, booking: Booking, now: datetime) -> int:
        """Cancel pending bookings of the same companion that overlap a confirmed one"""
        overlapping = self.repo.find_overlapping(
            self.db,
            booking.companion_id,
            booking.starts_at,
            booking.ends_at,
            booking_status.APPROVABLE_STATUSES,
            exclude_id=booking.id,
        )
        released = 0
        for other in overlapping:
            try:
                await self.cancel_booking(
                    other, "companion", SLOT_TAKEN_REASON, now, notify=[other.client_id]
                )
                released += 1
            except InvalidStateError:
                logger.info(f"Overlapping booking {other.id} already left the pending state")
        return released

    async def cancel(
        self,
        booking_id: int,
        party: ActingParty,
        reason: Optional[str],
        now: Optional[datetime] = None,
    ) -> Booking:
        """Either party cancels a pending, held or confirmed booking"""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A cancellation reason is required")

        booking = self.get_for_party(booking_id, party)
        return await self.cancel_booking(
            booking, party.role, reason, now or utc_now(), notify=[other_party_id(booking, party)]
        )

    async def cancel_booking(
        self,
        booking: Booking,
        cancelled_by: str,
        reason: str,
        now: datetime,
        notify: Iterable[int],
    ) -> Booking:
        """
        Cancel with a conditional update so only one canceller wins, then
        release the payment hold and tell the other side. Release, relay and
        email failures are logged and leave the cancellation in place.
        """
        if not booking_status.validate_status_transition(booking.status, booking_status.CANCELLED):
            raise InvalidStateError(f"Booking cannot be cancelled from status '{booking.status}'")

        previous = booking.status
        if not self.repo.transition_status(
            self.db,
            booking.id,
            booking_status.CANCELLABLE_STATUSES,
            booking_status.CANCELLED,
            cancelled_by=cancelled_by,
            cancellation_reason=reason,
            cancelled_at=now,
        ):
            self.db.refresh(booking)
            raise InvalidStateError(f"Booking cannot be cancelled from status '{booking.status}'")
        self.db.refresh(booking)
        logger.info(
            f"✅ Booking {booking.id} transitioned: {previous} → cancelled (by {cancelled_by}: {reason})"
        )

        if booking.payment_status == "authorized":
            payment_status = await release_payment(self.gateway, booking.payment_intent_id)
            self.repo.update_fields(self.db, booking.id, payment_status=payment_status)
            self.db.refresh(booking)

        notify = list(notify)
        await self.relay.emit(notify, "booking.cancelled", booking_event_payload(booking))
        await self._send_cancellation_emails(booking, notify)
        return booking

    async def auto_complete(self, booking_id: int, now: Optional[datetime] = None) -> Booking:
        """
        Settle a confirmed booking once its end time plus the grace period has
        passed. Only a verified meeting completes and captures the hold; an
        elapsed check-in window runs the verification expiry, and a booking
        that never met is cancelled by the system with the hold released.
        Anything else is a no-op, so repeated calls are safe.
        """
        now = now or utc_now()
        booking = self.get_booking(booking_id)

        if not booking_status.is_confirmed_like(booking.status):
            return booking
        if now <= booking.ends_at + timedelta(minutes=AUTO_COMPLETE_GRACE_MINUTES):
            return booking

        if booking.meeting_started_at is None:
            return await self._settle_unmet(booking, now)

        previous = booking.status
        if not self.repo.transition_status(
            self.db,
            booking.id,
            booking_status.CONFIRMED_LIKE_STATUSES,
            booking_status.COMPLETED,
            completed_at=now,
        ):
            self.db.refresh(booking)
            return booking
        self.db.refresh(booking)
        logger.info(f"✅ Booking {booking.id} transitioned: {previous} → completed")

        if booking.payment_status in ("authorized", "capture_failed"):
            payment_status = await capture_payment(self.gateway, booking.payment_intent_id)
            self.repo.update_fields(self.db, booking.id, payment_status=payment_status)
            self.db.refresh(booking)

        await self.relay.emit(
            [booking.client_id, booking.companion_id],
            "booking.completed",
            booking_event_payload(booking),
        )
        return booking

    async def _settle_unmet(self, booking: Booking, now: datetime) -> Booking:
        # Imported here: the verification service builds on this module
        from ..verification.repository import OPEN_STATUSES
        from ..verification.service import VerificationService, is_elapsed

        verification = booking.verification
        if verification is not None and verification.status in OPEN_STATUSES:
            if not is_elapsed(verification, now):
                return booking
            verifier = VerificationService(self.db, gateway=self.gateway, relay=self.relay, bookings=self)
            await verifier.expire(booking.id, now=now)
            self.db.refresh(booking)
            return booking

        if booking.status == booking_status.PAYMENT_HELD:
            reason = UNAPPROVED_REASON
        else:
            reason = NO_SHOW_REASON
        try:
            return await self.cancel_booking(
                booking, "system", reason, now, notify=[booking.client_id, booking.companion_id]
            )
        except InvalidStateError:
            self.db.refresh(booking)
            return booking

    async def expire_unapproved(self, booking_id: int, now: Optional[datetime] = None) -> Booking:
        """Cancel a booking the companion never approved once its start time has passed"""
        now = now or utc_now()
        booking = self.get_booking(booking_id)
        if booking.status not in booking_status.APPROVABLE_STATUSES or now < booking.starts_at:
            return booking
        try:
            return await self.cancel_booking(
                booking, "system", UNAPPROVED_REASON, now, notify=[booking.client_id, booking.companion_id]
            )
        except InvalidStateError:
            self.db.refresh(booking)
            return booking

    async def _send_cancellation_emails(self, booking: Booking, user_ids: list[int]) -> None:
        for user_id in user_ids:
            user = self.repo.get_user(self.db, user_id)
            if not user or not user.email:
                continue
            try:
                await send_booking_cancelled_email(
                    to=user.email,
                    user_name=user.full_name or "there",
                    booking_date=booking.booking_date.isoformat(),
                    start_time=booking.start_time,
                    reason=booking.cancellation_reason,
                    cancelled_by=booking.cancelled_by,
                )
            except Exception as e:
                logger.warning(f"⚠️ Failed to send cancellation email for booking {booking.id}: {e}")
