"""Booking repository - Database operations for bookings"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...models import Booking, User


class BookingRepository:
    """Repository for booking database operations"""

    @staticmethod
    def get_user(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_booking_by_id(db: Session, booking_id: int) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def create_booking(db: Session, commit: bool = True, **booking_data) -> Booking:
        """Create a new booking"""
        booking = Booking(**booking_data)
        db.add(booking)
        if commit:
            db.commit()
            db.refresh(booking)
        else:
            db.flush()
        return booking

    @staticmethod
    def transition_status(
        db: Session,
        booking_id: int,
        from_statuses: Iterable[str],
        new_status: str,
        commit: bool = True,
        **fields,
    ) -> bool:
        """
        Move a booking to new_status only if it is still in one of from_statuses.
        Returns False when another writer got there first.
        """
        updated = (
            db.query(Booking)
            .filter(Booking.id == booking_id, Booking.status.in_(list(from_statuses)))
            .update({"status": new_status, **fields}, synchronize_session=False)
        )
        if commit:
            db.commit()
        return updated == 1

    @staticmethod
    def update_fields(db: Session, booking_id: int, **fields) -> None:
        db.query(Booking).filter(Booking.id == booking_id).update(
            fields, synchronize_session=False
        )
        db.commit()

    @staticmethod
    def mark_meeting_started(db: Session, booking_id: int, started_at: datetime) -> bool:
        updated = (
            db.query(Booking)
            .filter(Booking.id == booking_id, Booking.meeting_started_at.is_(None))
            .update({"meeting_started_at": started_at}, synchronize_session=False)
        )
        db.commit()
        return updated == 1

    @staticmethod
    def get_bookings_for_party(
        db: Session, user_id: int, role: str, status: Optional[str] = None
    ) -> list[Booking]:
        """All bookings where the user takes part in the given role"""
        column = Booking.client_id if role == "client" else Booking.companion_id
        query = db.query(Booking).filter(column == user_id)
        if status:
            query = query.filter(Booking.status == status)
        return query.all()

    @staticmethod
    def find_overlapping(
        db: Session,
        companion_id: int,
        starts_at: datetime,
        ends_at: datetime,
        statuses: Iterable[str],
        exclude_id: Optional[int] = None,
    ) -> list[Booking]:
        """Companion bookings in the given statuses whose window intersects [starts_at, ends_at)"""
        query = db.query(Booking).filter(
            Booking.companion_id == companion_id,
            Booking.status.in_(list(statuses)),
            Booking.starts_at < ends_at,
            Booking.ends_at > starts_at,
        )
        if exclude_id is not None:
            query = query.filter(Booking.id != exclude_id)
        return query.all()

    @staticmethod
    def get_started_in_statuses(
        db: Session, statuses: Iterable[str], started_before: datetime
    ) -> list[Booking]:
        return (
            db.query(Booking)
            .filter(Booking.status.in_(list(statuses)), Booking.starts_at <= started_before)
            .order_by(Booking.starts_at.asc())
            .all()
        )

    @staticmethod
    def get_due_for_completion(
        db: Session, statuses: Iterable[str], ended_before: datetime
    ) -> list[Booking]:
        return (
            db.query(Booking)
            .filter(Booking.status.in_(list(statuses)), Booking.ends_at < ended_before)
            .order_by(Booking.ends_at.asc())
            .all()
        )
