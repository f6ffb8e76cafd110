"""Booking request router - FastAPI endpoints for booking requests"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import ActingParty, get_acting_party
from ...database import get_db
from ...services.geocoding_service import get_geocoder
from ...services.payment_gateway import get_payment_gateway
from ..bookings.router import get_notification_relay
from ..bookings.schemas import BookingResponse
from .schemas import (
    AcceptRequestResponse,
    BookingRequestCreate,
    BookingRequestRespond,
    BookingRequestResponse,
)
from .service import BookingRequestService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/booking-requests", tags=["Booking Requests"])


def get_booking_request_service(
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
    geocoder=Depends(get_geocoder),
    relay=Depends(get_notification_relay),
) -> BookingRequestService:
    """Dependency injection for BookingRequestService"""
    return BookingRequestService(db, gateway=gateway, geocoder=geocoder, relay=relay)


@router.post("", response_model=BookingRequestResponse, status_code=201)
async def create_booking_request(
    data: BookingRequestCreate,
    party: ActingParty = Depends(get_acting_party),
    service: BookingRequestService = Depends(get_booking_request_service),
):
    return await service.create(party, data)


@router.get("", response_model=list[BookingRequestResponse])
async def list_booking_requests(
    status: str = Query("all"),
    party: ActingParty = Depends(get_acting_party),
    service: BookingRequestService = Depends(get_booking_request_service),
):
    return service.list_for_party(party, status)


@router.post("/{request_id}/accept", response_model=AcceptRequestResponse)
async def accept_booking_request(
    request_id: int,
    data: BookingRequestRespond = BookingRequestRespond(),
    party: ActingParty = Depends(get_acting_party),
    service: BookingRequestService = Depends(get_booking_request_service),
):
    """Companion accepts; returns the request and the confirmed booking it became"""
    booking_request, booking = await service.accept(request_id, party, data.message)
    return AcceptRequestResponse(
        request=BookingRequestResponse.model_validate(booking_request),
        booking=BookingResponse.from_booking(booking),
    )


@router.post("/{request_id}/reject", response_model=BookingRequestResponse)
async def reject_booking_request(
    request_id: int,
    data: BookingRequestRespond = BookingRequestRespond(),
    party: ActingParty = Depends(get_acting_party),
    service: BookingRequestService = Depends(get_booking_request_service),
):
    return await service.reject(request_id, party, data.message)


@router.post("/{request_id}/cancel", response_model=BookingRequestResponse)
async def cancel_booking_request(
    request_id: int,
    party: ActingParty = Depends(get_acting_party),
    service: BookingRequestService = Depends(get_booking_request_service),
):
    return await service.cancel(request_id, party)
