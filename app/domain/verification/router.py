"""Meeting verification router - code issuance, check-in, expiry and resync"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ...auth import ActingParty, get_acting_party
from ...config import VERIFY_OTP_RATE_LIMIT, VERIFY_OTP_RATE_WINDOW_SECONDS
from ...database import get_db
from ...rate_limiter import client_ip, create_rate_limiter
from ...services.payment_gateway import get_payment_gateway
from ..bookings.router import get_notification_relay
from .schemas import (
    ExpireResponse,
    IssueCodesResponse,
    VerificationStatusResponse,
    VerifyCodeRequest,
    VerifyResponse,
)
from .service import VerificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Meeting Verification"])


def verify_rate_limit_key(request: Request) -> str:
    return f"{request.path_params.get('booking_id')}:{client_ip(request)}"


rate_limit_verify_otp = create_rate_limiter(
    limit=VERIFY_OTP_RATE_LIMIT,
    window_seconds=VERIFY_OTP_RATE_WINDOW_SECONDS,
    key_prefix="verify_otp",
    key_func=verify_rate_limit_key,
)


def get_verification_service(
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
    relay=Depends(get_notification_relay),
) -> VerificationService:
    """Dependency injection for VerificationService"""
    return VerificationService(db, gateway=gateway, relay=relay)


@router.post("/{booking_id}/issue-codes", response_model=IssueCodesResponse)
async def issue_codes(
    booking_id: int,
    party: ActingParty = Depends(get_acting_party),
    service: VerificationService = Depends(get_verification_service),
):
    """Issue meeting codes (idempotent); returns the caller's own code"""
    return await service.issue_codes(booking_id, party=party)


@router.post("/{booking_id}/verify-otp", response_model=VerifyResponse)
async def verify_otp(
    booking_id: int,
    data: VerifyCodeRequest,
    party: ActingParty = Depends(get_acting_party),
    service: VerificationService = Depends(get_verification_service),
    _: None = Depends(rate_limit_verify_otp),
):
    return await service.verify(
        booking_id,
        party,
        data.code,
        latitude=data.latitude,
        longitude=data.longitude,
        confirm_location=data.confirm_location,
    )


@router.get("/{booking_id}/verification-status", response_model=VerificationStatusResponse)
async def verification_status(
    booking_id: int,
    party: ActingParty = Depends(get_acting_party),
    service: VerificationService = Depends(get_verification_service),
):
    """Authoritative remaining time and check-in flags for rehydrating the client"""
    return service.get_status(booking_id, party)


@router.post("/{booking_id}/extend-verification", response_model=VerificationStatusResponse)
async def extend_verification(
    booking_id: int,
    party: ActingParty = Depends(get_acting_party),
    service: VerificationService = Depends(get_verification_service),
):
    return await service.extend(booking_id, party)


@router.post("/{booking_id}/expire-verification", response_model=ExpireResponse)
async def expire_verification(
    booking_id: int,
    party: ActingParty = Depends(get_acting_party),
    service: VerificationService = Depends(get_verification_service),
):
    """Run the expiry check for a booking; a no-op while the window is open"""
    service.bookings.get_for_party(booking_id, party)
    return await service.expire(booking_id)
