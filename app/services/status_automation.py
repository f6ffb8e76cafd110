"""
Automated booking transitions
Issues meeting codes shortly before a confirmed booking starts and closes
elapsed verification windows. Bookings and requests the companion never
answered expire at their start time. Finished bookings complete when the
meeting was verified and are cancelled as no-shows otherwise.
Every step calls the same service operations the API uses.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..config import AUTO_COMPLETE_GRACE_MINUTES, CODE_ISSUE_LEAD_MINUTES
from ..domain.booking_requests.repository import BookingRequestRepository
from ..domain.booking_requests.service import (
    EXPIRED as REQUEST_EXPIRED,
    PENDING as REQUEST_PENDING,
    BookingRequestService,
)
from ..domain.bookings import status as booking_status
from ..domain.bookings.repository import BookingRepository
from ..domain.bookings.service import BookingService
from ..domain.verification.repository import VerificationRepository
from ..domain.verification.service import VerificationService
from ..models import Booking, BookingVerification
from ..shared.errors import BookingError
from ..shared.validators import utc_now

logger = logging.getLogger(__name__)


async def issue_upcoming_codes(db: Session, service: VerificationService, now: datetime) -> int:
    """Issue codes for confirmed bookings starting within the lead time"""
    due = (
        db.query(Booking)
        .outerjoin(BookingVerification, BookingVerification.booking_id == Booking.id)
        .filter(
            Booking.status == booking_status.CONFIRMED,
            Booking.starts_at <= now + timedelta(minutes=CODE_ISSUE_LEAD_MINUTES),
            Booking.ends_at > now,
            BookingVerification.id.is_(None),
        )
        .all()
    )

    issued = 0
    for booking in due:
        try:
            result = await service.issue_codes(booking.id, now=now)
            if result["issued"]:
                issued += 1
        except BookingError as e:
            logger.error(f"❌ Failed to issue codes for booking {booking.id}: {e.message}")
    return issued


async def expire_elapsed_verifications(db: Session, service: VerificationService, now: datetime) -> int:
    expired = 0
    for verification in VerificationRepository.get_elapsed_open(db, now):
        try:
            result = await service.expire(verification.booking_id, now=now)
            if result["expired"]:
                expired += 1
        except BookingError as e:
            logger.error(f"❌ Failed to expire verification for booking {verification.booking_id}: {e.message}")
    return expired


async def expire_unapproved_bookings(db: Session, service: BookingService, now: datetime) -> int:
    """Cancel bookings still awaiting approval once their start time has passed"""
    expired = 0
    for booking in BookingRepository.get_started_in_statuses(
        db, booking_status.APPROVABLE_STATUSES, now
    ):
        try:
            result = await service.expire_unapproved(booking.id, now=now)
            if result.status == booking_status.CANCELLED:
                expired += 1
        except BookingError as e:
            logger.error(f"❌ Failed to expire unapproved booking {booking.id}: {e.message}")
    return expired


async def expire_stale_requests(db: Session, service: BookingRequestService, now: datetime) -> int:
    expired = 0
    for booking_request in BookingRequestRepository.get_started_in_status(
        db, REQUEST_PENDING, now
    ):
        try:
            result = await service.expire(booking_request.id, now=now)
            if result.status == REQUEST_EXPIRED:
                expired += 1
        except BookingError as e:
            logger.error(f"❌ Failed to expire booking request {booking_request.id}: {e.message}")
    return expired


async def settle_finished_bookings(db: Session, service: BookingService, now: datetime) -> tuple[int, int]:
    """Complete verified meetings and cancel no-shows; returns (completed, cancelled)"""
    cutoff = now - timedelta(minutes=AUTO_COMPLETE_GRACE_MINUTES)
    completed = cancelled = 0
    for booking in BookingRepository.get_due_for_completion(
        db, booking_status.CONFIRMED_LIKE_STATUSES, cutoff
    ):
        try:
            result = await service.auto_complete(booking.id, now=now)
            if result.status == booking_status.COMPLETED:
                completed += 1
            elif result.status == booking_status.CANCELLED:
                cancelled += 1
        except BookingError as e:
            logger.error(f"❌ Failed to auto-complete booking {booking.id}: {e.message}")
    return completed, cancelled


async def update_booking_statuses(
    db: Session, gateway=None, relay=None, now: Optional[datetime] = None
) -> dict:
    """
    Run every booking automation once

    Returns:
        dict: Summary of transitions made
    """
    now = now or utc_now()
    bookings = BookingService(db, gateway=gateway, relay=relay)
    verification = VerificationService(db, gateway=gateway, relay=bookings.relay, bookings=bookings)
    requests = BookingRequestService(db, gateway=gateway, relay=bookings.relay)

    summary = {
        "codes_issued": await issue_upcoming_codes(db, verification, now),
        "verifications_expired": await expire_elapsed_verifications(db, verification, now),
        "bookings_expired": await expire_unapproved_bookings(db, bookings, now),
        "requests_expired": await expire_stale_requests(db, requests, now),
    }
    completed, no_shows = await settle_finished_bookings(db, bookings, now)
    summary["bookings_completed"] = completed
    summary["no_shows_cancelled"] = no_shows
    summary["total_updated"] = sum(summary.values())

    if summary["total_updated"]:
        logger.info(f"📊 Booking automation summary: {summary}")
    return summary
