"""Booking request repository - Database operations for booking requests"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...models import BookingRequest


class BookingRequestRepository:
    """Repository for booking request database operations"""

    @staticmethod
    def get_by_id(db: Session, request_id: int) -> Optional[BookingRequest]:
        return db.query(BookingRequest).filter(BookingRequest.id == request_id).first()

    @staticmethod
    def create(db: Session, **data) -> BookingRequest:
        booking_request = BookingRequest(**data)
        db.add(booking_request)
        db.commit()
        db.refresh(booking_request)
        return booking_request

    @staticmethod
    def transition_status(
        db: Session,
        request_id: int,
        from_statuses: Iterable[str],
        new_status: str,
        commit: bool = True,
        **fields,
    ) -> bool:
        updated = (
            db.query(BookingRequest)
            .filter(BookingRequest.id == request_id, BookingRequest.status.in_(list(from_statuses)))
            .update({"status": new_status, **fields}, synchronize_session=False)
        )
        if commit:
            db.commit()
        return updated == 1

    @staticmethod
    def update_fields(db: Session, request_id: int, **fields) -> None:
        db.query(BookingRequest).filter(BookingRequest.id == request_id).update(
            fields, synchronize_session=False
        )
        db.commit()

    @staticmethod
    def get_for_party(db: Session, user_id: int, role: str, status: Optional[str] = None) -> list[BookingRequest]:
        column = BookingRequest.client_id if role == "client" else BookingRequest.companion_id
        query = db.query(BookingRequest).filter(column == user_id)
        if status:
            query = query.filter(BookingRequest.status == status)
        return query.order_by(BookingRequest.created_at.desc(), BookingRequest.id.desc()).all()

    @staticmethod
    def get_started_in_status(db: Session, status: str, started_before: datetime) -> list[BookingRequest]:
        return (
            db.query(BookingRequest)
            .filter(BookingRequest.status == status, BookingRequest.starts_at <= started_before)
            .order_by(BookingRequest.starts_at.asc())
            .all()
        )
