"""Verification repository - Database operations for meeting check-in"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import BookingVerification, VerificationAttempt

NOT_STARTED = "not_started"
AWAITING_CODES = "awaiting_codes"
ONE_PARTY_VERIFIED = "one_party_verified"
BOTH_VERIFIED = "both_verified"
EXPIRED = "expired"

OPEN_STATUSES = (AWAITING_CODES, ONE_PARTY_VERIFIED)


class VerificationRepository:
    """Repository for meeting verification database operations"""

    @staticmethod
    def get_by_booking(db: Session, booking_id: int) -> Optional[BookingVerification]:
        return (
            db.query(BookingVerification)
            .filter(BookingVerification.booking_id == booking_id)
            .first()
        )

    @staticmethod
    def create(db: Session, **data) -> BookingVerification:
        """Insert the verification row; raises IntegrityError if one already exists"""
        verification = BookingVerification(**data)
        db.add(verification)
        db.commit()
        db.refresh(verification)
        return verification

    @staticmethod
    def mark_party_verified(
        db: Session,
        verification_id: int,
        role: str,
        now: datetime,
        latitude: Optional[float],
        longitude: Optional[float],
    ) -> bool:
        """
        Set the party's verified timestamp if it is unset and the window is
        still open. A verified flag is never cleared.
        """
        verified_column = getattr(BookingVerification, f"{role}_verified_at")
        updated = (
            db.query(BookingVerification)
            .filter(
                BookingVerification.id == verification_id,
                verified_column.is_(None),
                BookingVerification.status.in_(OPEN_STATUSES),
                BookingVerification.expires_at > now,
            )
            .update(
                {
                    f"{role}_verified_at": now,
                    f"{role}_latitude": latitude,
                    f"{role}_longitude": longitude,
                    "status": ONE_PARTY_VERIFIED,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1

    @staticmethod
    def mark_both_verified(db: Session, verification_id: int, now: datetime) -> bool:
        """
        Compare-and-swap into both_verified. Exactly one caller sees True,
        whichever party verified last.
        """
        updated = (
            db.query(BookingVerification)
            .filter(
                BookingVerification.id == verification_id,
                BookingVerification.client_verified_at.isnot(None),
                BookingVerification.companion_verified_at.isnot(None),
                BookingVerification.status.in_(OPEN_STATUSES),
            )
            .update(
                {"status": BOTH_VERIFIED, "both_verified_at": now},
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1

    @staticmethod
    def mark_expired(db: Session, verification_id: int, now: datetime) -> bool:
        updated = (
            db.query(BookingVerification)
            .filter(
                BookingVerification.id == verification_id,
                BookingVerification.status.in_(OPEN_STATUSES),
                BookingVerification.expires_at <= now,
            )
            .update({"status": EXPIRED}, synchronize_session=False)
        )
        db.commit()
        return updated == 1

    @staticmethod
    def extend_window(
        db: Session, verification_id: int, new_expires_at: datetime, requested_by: int, now: datetime
    ) -> bool:
        updated = (
            db.query(BookingVerification)
            .filter(
                BookingVerification.id == verification_id,
                BookingVerification.extension_used.is_(False),
                BookingVerification.status.in_(OPEN_STATUSES),
                BookingVerification.expires_at > now,
            )
            .update(
                {
                    "expires_at": new_expires_at,
                    "extension_used": True,
                    "extension_requested_by": requested_by,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1

    @staticmethod
    def get_elapsed_open(db: Session, now: datetime) -> list[BookingVerification]:
        return (
            db.query(BookingVerification)
            .filter(
                BookingVerification.status.in_(OPEN_STATUSES),
                BookingVerification.expires_at <= now,
            )
            .all()
        )

    @staticmethod
    def log_attempt(db: Session, **data) -> VerificationAttempt:
        attempt = VerificationAttempt(**data)
        db.add(attempt)
        db.commit()
        return attempt
