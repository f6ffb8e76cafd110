"""
Checkout helpers shared by direct bookings and booking requests:
schedule resolution, server-side pricing, payment authorization checks
and best-effort capture/release.
"""

import logging
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ...config import MAX_BOOKING_HOURS, MIN_BOOKING_HOURS, PLATFORM_FEE_PERCENTAGE
from ...models import Booking, BookingRequest
from ...services.payment_gateway import (
    AUTHORIZED_INTENT_STATUSES,
    PROCESSING_INTENT_STATUSES,
    PaymentGatewayError,
)
from ...shared.errors import PaymentError, ValidationError
from ...shared.validators import local_to_utc, parse_hhmm, validate_coordinates, validate_timezone

logger = logging.getLogger(__name__)


def resolve_schedule(
    booking_date: date,
    start_time: str,
    end_time: str,
    timezone_name: str,
    now: Optional[datetime] = None,
) -> dict:
    """
    Validate a local schedule and derive its UTC window.

    Raises:
        ValidationError: Bad time format, unknown zone, end not after start,
            duration outside the allowed range, or a start already past
    """
    try:
        tz_name = validate_timezone(timezone_name)
        start = parse_hhmm(start_time)
        end = parse_hhmm(end_time)
    except ValueError as e:
        raise ValidationError(str(e)) from e

    if end <= start:
        raise ValidationError("End time must be after start time")

    starts_at = local_to_utc(booking_date, start, tz_name)
    ends_at = local_to_utc(booking_date, end, tz_name)
    duration_minutes = int((ends_at - starts_at).total_seconds() // 60)
    hours = duration_minutes / 60

    if hours < MIN_BOOKING_HOURS or hours > MAX_BOOKING_HOURS:
        raise ValidationError(
            f"Booking duration must be between {MIN_BOOKING_HOURS:g} and {MAX_BOOKING_HOURS:g} hours"
        )

    if now is not None and starts_at <= now:
        raise ValidationError("Booking must start in the future")

    return {
        "booking_date": booking_date,
        "start_time": start.strftime("%H:%M"),
        "end_time": end.strftime("%H:%M"),
        "booking_timezone": tz_name,
        "starts_at": starts_at,
        "ends_at": ends_at,
        "duration_minutes": duration_minutes,
    }


def platform_fee_for(total_cents: int) -> int:
    return int(
        (Decimal(total_cents) * Decimal(str(PLATFORM_FEE_PERCENTAGE))).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
    )


def quote_amounts(
    hourly_rate_cents: int,
    duration_minutes: int,
    extra_amount_cents: int = 0,
    expected_total_cents: Optional[int] = None,
) -> dict:
    """
    Price a booking: base = hourly rate x duration, total = base + extra.

    Raises:
        ValidationError: Negative extra, or a caller total that disagrees
    """
    if extra_amount_cents < 0:
        raise ValidationError("Extra amount cannot be negative")

    base = int(
        (Decimal(hourly_rate_cents) * Decimal(duration_minutes) / Decimal(60)).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
    )
    total = base + extra_amount_cents

    if expected_total_cents is not None and expected_total_cents != total:
        raise ValidationError(
            f"Total amount mismatch: expected {total} cents, got {expected_total_cents} cents",
            extra={"expected_total_cents": total},
        )

    return {
        "hourly_rate_cents": hourly_rate_cents,
        "base_amount_cents": base,
        "extra_amount_cents": extra_amount_cents,
        "total_amount_cents": total,
        "platform_fee_cents": platform_fee_for(total),
    }


def payment_intent_in_use(db: Session, intent_id: str) -> bool:
    """True when a booking or request already holds this authorization"""
    if db.query(Booking.id).filter(Booking.payment_intent_id == intent_id).first():
        return True
    return (
        db.query(BookingRequest.id).filter(BookingRequest.payment_intent_id == intent_id).first()
        is not None
    )


async def authorize_payment(
    db: Session, gateway, intent_id: str, amount_cents: int, client_id: int
) -> str:
    """
    Check a payment intent can back a new booking.

    Returns:
        The provider's intent status (requires_capture or processing)

    Raises:
        PaymentError: Missing, unknown, reused, unauthorized or mismatched intent
    """
    if not intent_id:
        raise PaymentError("A payment authorization is required")

    if payment_intent_in_use(db, intent_id):
        raise PaymentError("This payment authorization is already attached to a booking")

    try:
        intent = await gateway.retrieve_payment_intent(intent_id)
    except PaymentGatewayError as e:
        raise PaymentError(f"Could not verify payment authorization: {e}") from e

    if not intent:
        raise PaymentError("Payment authorization not found")

    status = intent.get("status")
    if status not in AUTHORIZED_INTENT_STATUSES | PROCESSING_INTENT_STATUSES:
        raise PaymentError(
            f"Payment is not authorized (status: {status})", extra={"intent_status": status}
        )

    if int(intent.get("amount") or 0) != amount_cents:
        raise PaymentError(
            "Payment amount does not match the booking total",
            extra={"expected_amount_cents": amount_cents, "intent_amount_cents": intent.get("amount")},
        )

    owner = (intent.get("metadata") or {}).get("client_id")
    if owner is not None and str(owner) != str(client_id):
        raise PaymentError("Payment authorization belongs to another client")

    return status


async def resolve_location(
    geocoder,
    address: Optional[str],
    latitude: Optional[float],
    longitude: Optional[float],
    place_id: Optional[str] = None,
) -> dict:
    """
    Meeting location fields for storage; geocodes the address when no
    coordinates were given. A failed lookup leaves the coordinates empty.
    """
    try:
        has_coordinates = validate_coordinates(latitude, longitude)
    except ValueError as e:
        raise ValidationError(str(e)) from e

    location = {
        "meeting_location": address,
        "meeting_location_lat": latitude,
        "meeting_location_lon": longitude,
        "meeting_location_place_id": place_id,
    }
    if has_coordinates or not address or geocoder is None:
        return location

    try:
        result = await geocoder.geocode(address)
    except Exception as e:
        logger.warning(f"⚠️ Geocoding failed for meeting location '{address}': {e}")
        return location

    if result:
        location["meeting_location_lat"] = result["lat"]
        location["meeting_location_lon"] = result["lon"]
        location["meeting_location_place_id"] = place_id or result.get("place_id")
        logger.info(f"📍 Geocoded meeting location '{address}' → {result['lat']}, {result['lon']}")
    return location


async def capture_payment(gateway, intent_id: str) -> str:
    """Capture held funds; returns the payment_status to record"""
    try:
        await gateway.capture_payment_intent(intent_id)
        return "captured"
    except Exception as e:
        logger.warning(f"⚠️ Payment capture failed for {intent_id}: {e}")
        return "capture_failed"


async def release_payment(gateway, intent_id: str) -> str:
    """Release a held authorization; returns the payment_status to record"""
    try:
        await gateway.release_payment_intent(intent_id)
        return "released"
    except Exception as e:
        logger.warning(f"⚠️ Payment release failed for {intent_id}: {e}")
        return "release_failed"
