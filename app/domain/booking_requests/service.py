"""Booking request service - a client asks, the companion accepts or declines"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...auth import ActingParty
from ...config import PAYMENT_CURRENCY
from ...models import Booking, BookingRequest
from ...services.notification_service import NotificationRelay
from ...shared.errors import (
    InvalidStateError,
    NotFoundError,
    PaymentError,
    PermissionDeniedError,
    ValidationError,
)
from ...shared.validators import utc_now
from ..bookings import status as booking_status
from ..bookings.checkout import (
    authorize_payment,
    platform_fee_for,
    quote_amounts,
    release_payment,
    resolve_location,
    resolve_schedule,
)
from ..bookings.service import BookingService
from .repository import BookingRequestRepository
from .schemas import BookingRequestCreate

logger = logging.getLogger(__name__)

PENDING = "pending"
ACCEPTED = "accepted"
REJECTED = "rejected"
CANCELLED = "cancelled"
EXPIRED = "expired"

REQUEST_STATUSES = (PENDING, ACCEPTED, REJECTED, CANCELLED, EXPIRED)

# Fields a materialized booking inherits from its request
INHERITED_FIELDS = (
    "client_id",
    "companion_id",
    "booking_date",
    "start_time",
    "end_time",
    "booking_timezone",
    "starts_at",
    "ends_at",
    "duration_minutes",
    "hourly_rate_cents",
    "base_amount_cents",
    "extra_amount_cents",
    "total_amount_cents",
    "currency",
    "payment_intent_id",
    "payment_status",
    "meeting_location",
    "meeting_location_lat",
    "meeting_location_lon",
    "meeting_location_place_id",
    "special_requests",
)


def request_event_payload(booking_request: BookingRequest) -> dict:
    return {
        "request_id": booking_request.id,
        "status": booking_request.status,
        "client_id": booking_request.client_id,
        "companion_id": booking_request.companion_id,
        "booking_date": booking_request.booking_date.isoformat(),
        "start_time": booking_request.start_time,
        "end_time": booking_request.end_time,
        "booking_id": booking_request.booking_id,
    }


class BookingRequestService:
    """Service layer for booking request business logic"""

    def __init__(self, db: Session, gateway=None, geocoder=None, relay=None):
        self.db = db
        self.repo = BookingRequestRepository()
        self.gateway = gateway
        self.geocoder = geocoder
        self.relay = relay or NotificationRelay(db)
        self.bookings = BookingService(db, gateway=gateway, geocoder=geocoder, relay=self.relay)

    def get_for_party(self, request_id: int, party: ActingParty) -> BookingRequest:
        booking_request = self.repo.get_by_id(self.db, request_id)
        if not booking_request:
            raise NotFoundError("Booking request not found")
        if party.is_client and booking_request.client_id == party.id:
            return booking_request
        if party.is_companion and booking_request.companion_id == party.id:
            return booking_request
        raise PermissionDeniedError("You are not a party to this booking request")

    def list_for_party(self, party: ActingParty, status_filter: str = "all") -> list[BookingRequest]:
        status_filter = (status_filter or "all").lower()
        if status_filter != "all" and status_filter not in REQUEST_STATUSES:
            raise ValidationError(f"Unknown status filter: {status_filter}")
        return self.repo.get_for_party(
            self.db, party.id, party.role, None if status_filter == "all" else status_filter
        )

    async def create(self, party: ActingParty, data: BookingRequestCreate) -> BookingRequest:
        """Store a pending request backed by a payment hold"""
        companion = self.bookings.get_bookable_companion(data.companion_id, party)
        schedule = resolve_schedule(
            data.booking_date, data.start_time, data.end_time, data.timezone, now=utc_now()
        )
        amounts = quote_amounts(
            companion.hourly_rate_cents,
            schedule["duration_minutes"],
            data.extra_amount_cents,
            data.total_amount_cents,
        )
        amounts.pop("platform_fee_cents")

        await authorize_payment(
            self.db, self.gateway, data.payment_intent_id, amounts["total_amount_cents"], party.id
        )
        location = await resolve_location(
            self.geocoder,
            data.meeting_location,
            data.meeting_location_lat,
            data.meeting_location_lon,
            data.meeting_location_place_id,
        )

        try:
            booking_request = self.repo.create(
                self.db,
                client_id=party.id,
                companion_id=companion.id,
                currency=PAYMENT_CURRENCY,
                status=PENDING,
                payment_intent_id=data.payment_intent_id,
                payment_status="authorized",
                special_requests=data.special_requests,
                **schedule,
                **amounts,
                **location,
            )
        except IntegrityError as e:
            self.db.rollback()
            raise PaymentError("This payment authorization is already attached to a request") from e

        logger.info(f"📥 Booking request {booking_request.id} created by client {party.id}")
        await self.relay.emit(
            [booking_request.companion_id], "request.created", request_event_payload(booking_request)
        )
        return booking_request

    async def accept(
        self,
        request_id: int,
        party: ActingParty,
        message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[BookingRequest, Booking]:
        """
        Companion accepts: the request becomes accepted and a confirmed
        booking is created from it in the same transaction. Pending bookings
        overlapping the new one are released.
        """
        now = now or utc_now()
        booking_request = self.get_for_party(request_id, party)
        if not party.is_companion:
            raise PermissionDeniedError("Only the companion can accept a booking request")
        if booking_request.status != PENDING:
            raise InvalidStateError(
                f"Booking request cannot be accepted from status '{booking_request.status}'"
            )
        if booking_request.starts_at <= now:
            raise InvalidStateError("Booking request start time has already passed")

        self.bookings.ensure_companion_available(
            booking_request.companion_id,
            {"starts_at": booking_request.starts_at, "ends_at": booking_request.ends_at},
        )

        if not self.repo.transition_status(
            self.db,
            booking_request.id,
            (PENDING,),
            ACCEPTED,
            commit=False,
            responded_at=now,
            companion_response=message,
        ):
            self.db.rollback()
            raise InvalidStateError("Booking request was changed by another request")

        booking_data = {field: getattr(booking_request, field) for field in INHERITED_FIELDS}
        try:
            booking = self.bookings.repo.create_booking(
                self.db,
                commit=False,
                status=booking_status.CONFIRMED,
                confirmed_at=now,
                source_request_id=booking_request.id,
                platform_fee_cents=platform_fee_for(booking_data["total_amount_cents"]),
                **booking_data,
            )
            booking_request.booking_id = booking.id
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise InvalidStateError("Booking request was already materialized") from e

        self.db.refresh(booking_request)
        self.db.refresh(booking)
        logger.info(
            f"✅ Booking request {booking_request.id} transitioned: pending → accepted (booking {booking.id})"
        )
        await self.bookings.release_overlapping(booking, now)

        await self.relay.emit(
            [booking_request.client_id], "request.accepted", request_event_payload(booking_request)
        )
        return booking_request, booking

    async def reject(
        self,
        request_id: int,
        party: ActingParty,
        message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BookingRequest:
        booking_request = self.get_for_party(request_id, party)
        if not party.is_companion:
            raise PermissionDeniedError("Only the companion can decline a booking request")
        return await self._close(
            booking_request, REJECTED, now or utc_now(), booking_request.client_id, message
        )

    async def cancel(
        self, request_id: int, party: ActingParty, now: Optional[datetime] = None
    ) -> BookingRequest:
        booking_request = self.get_for_party(request_id, party)
        if not party.is_client:
            raise PermissionDeniedError("Only the client can withdraw a booking request")
        return await self._close(
            booking_request, CANCELLED, now or utc_now(), booking_request.companion_id
        )

    async def _close(
        self,
        booking_request: BookingRequest,
        new_status: str,
        now: datetime,
        notify_user_id: int,
        message: Optional[str] = None,
    ) -> BookingRequest:
        """Move a pending request to rejected, cancelled or expired and release its hold"""
        if booking_request.status != PENDING:
            raise InvalidStateError(
                f"Booking request cannot be {new_status} from status '{booking_request.status}'"
            )
        if not self.repo.transition_status(
            self.db,
            booking_request.id,
            (PENDING,),
            new_status,
            responded_at=now,
            companion_response=message,
        ):
            raise InvalidStateError("Booking request was changed by another request")
        self.db.refresh(booking_request)
        logger.info(f"✅ Booking request {booking_request.id} transitioned: pending → {new_status}")

        payment_status = await release_payment(self.gateway, booking_request.payment_intent_id)
        self.repo.update_fields(self.db, booking_request.id, payment_status=payment_status)
        self.db.refresh(booking_request)

        await self.relay.emit(
            [notify_user_id], f"request.{new_status}", request_event_payload(booking_request)
        )
        return booking_request

    async def expire(self, request_id: int, now: Optional[datetime] = None) -> BookingRequest:
        """Close a request the companion never answered once its start time has passed"""
        now = now or utc_now()
        booking_request = self.repo.get_by_id(self.db, request_id)
        if not booking_request:
            raise NotFoundError("Booking request not found")
        if booking_request.status != PENDING or now < booking_request.starts_at:
            return booking_request
        try:
            return await self._close(booking_request, EXPIRED, now, booking_request.client_id)
        except InvalidStateError:
            self.db.refresh(booking_request)
            return booking_request
