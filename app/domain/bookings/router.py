"""Booking router - FastAPI endpoints for the booking lifecycle"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import ActingParty, get_acting_party
from ...database import get_db
from ...services.geocoding_service import get_geocoder
from ...services.notification_service import NotificationRelay
from ...services.payment_gateway import get_payment_gateway
from .schemas import (
    BookingCancel,
    BookingCreate,
    BookingResponse,
    PaymentIntentCreate,
    PaymentIntentResponse,
)
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def get_notification_relay(db: Session = Depends(get_db)) -> NotificationRelay:
    """Dependency injection for the notification relay"""
    return NotificationRelay(db)


def get_booking_service(
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
    geocoder=Depends(get_geocoder),
    relay=Depends(get_notification_relay),
) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, gateway=gateway, geocoder=geocoder, relay=relay)


@router.post("/payment-intent", response_model=PaymentIntentResponse)
async def create_payment_intent(
    data: PaymentIntentCreate,
    party: ActingParty = Depends(get_acting_party),
    service: BookingService = Depends(get_booking_service),
):
    """Quote a booking and open a payment hold for the total"""
    return await service.create_payment_intent(party, data)


@router.post("", response_model=BookingResponse, status_code=201)
async def create_booking(
    data: BookingCreate,
    party: ActingParty = Depends(get_acting_party),
    service: BookingService = Depends(get_booking_service),
):
    """Create a booking against an authorized payment"""
    booking = await service.create_with_payment(party, data)
    return BookingResponse.from_booking(booking)


@router.get("", response_model=list[BookingResponse])
async def list_bookings(
    status: str = Query("all"),
    party: ActingParty = Depends(get_acting_party),
    service: BookingService = Depends(get_booking_service),
):
    """Bookings of the acting party in priority order"""
    return [BookingResponse.from_booking(b) for b in service.list_for_party(party, status)]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    party: ActingParty = Depends(get_acting_party),
    service: BookingService = Depends(get_booking_service),
):
    return BookingResponse.from_booking(service.get_for_party(booking_id, party))


@router.post("/{booking_id}/approve", response_model=BookingResponse)
async def approve_booking(
    booking_id: int,
    party: ActingParty = Depends(get_acting_party),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.approve(booking_id, party)
    return BookingResponse.from_booking(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: int,
    data: BookingCancel,
    party: ActingParty = Depends(get_acting_party),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.cancel(booking_id, party, data.reason)
    return BookingResponse.from_booking(booking)


@router.post("/{booking_id}/auto-complete", response_model=BookingResponse)
async def auto_complete_booking(
    booking_id: int,
    party: ActingParty = Depends(get_acting_party),
    service: BookingService = Depends(get_booking_service),
):
    """Complete the booking if its end time plus grace has passed; otherwise unchanged"""
    service.get_for_party(booking_id, party)
    booking = await service.auto_complete(booking_id)
    return BookingResponse.from_booking(booking)
