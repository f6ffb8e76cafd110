import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )
    full_name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    role = Column(String(20), nullable=False, default="client")  # client, companion
    hourly_rate_cents = Column(Integer, nullable=True)  # Companions only
    timezone = Column(String(64), nullable=False, default="UTC")  # IANA zone name
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Booking(Base):
    """A scheduled paid meeting between a client and a companion"""

    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_companion_status", "companion_id", "status"),
        Index("ix_bookings_client_status", "client_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )

    # Parties (never change after creation)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    companion_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Scheduling - local wall clock as entered, plus derived UTC instants
    booking_date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)  # HH:MM format
    end_time = Column(String(5), nullable=False)
    booking_timezone = Column(String(64), nullable=False)  # Zone of record at creation
    starts_at = Column(DateTime, nullable=False, index=True)  # UTC
    ends_at = Column(DateTime, nullable=False, index=True)  # UTC
    duration_minutes = Column(Integer, nullable=False)

    # Pricing, all in minor units; fixed once the payment is authorized
    hourly_rate_cents = Column(Integer, nullable=False)
    base_amount_cents = Column(Integer, nullable=False)
    extra_amount_cents = Column(Integer, nullable=False, default=0)
    total_amount_cents = Column(Integer, nullable=False)
    platform_fee_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(10), default="usd", nullable=False)

    # Status workflow: pending → payment_held → confirmed → completed, or → cancelled
    status = Column(String(20), default="pending", nullable=False, index=True)

    # Payment authorization
    payment_intent_id = Column(String(255), unique=True, nullable=False)
    payment_status = Column(String(20), default="authorized", nullable=False)
    # authorized, captured, capture_failed, released, release_failed

    # Meeting location
    meeting_location = Column(String(500), nullable=True)
    meeting_location_lat = Column(Float, nullable=True)
    meeting_location_lon = Column(Float, nullable=True)
    meeting_location_place_id = Column(String(255), nullable=True)
    special_requests = Column(Text, nullable=True)

    # Cancellation
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(20), nullable=True)  # client, companion, system
    cancelled_at = Column(DateTime, nullable=True)

    # Lifecycle timestamps
    confirmed_at = Column(DateTime, nullable=True)
    meeting_started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    source_request_id = Column(Integer, ForeignKey("booking_requests.id"), nullable=True)

    client = relationship("User", foreign_keys=[client_id])
    companion = relationship("User", foreign_keys=[companion_id])
    verification = relationship(
        "BookingVerification", back_populates="booking", uselist=False
    )


class BookingRequest(Base):
    """A client's request for a companion's time, awaiting the companion's answer"""

    __tablename__ = "booking_requests"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )

    client_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    companion_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    booking_date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    booking_timezone = Column(String(64), nullable=False)
    starts_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    hourly_rate_cents = Column(Integer, nullable=False)
    base_amount_cents = Column(Integer, nullable=False)
    extra_amount_cents = Column(Integer, nullable=False, default=0)
    total_amount_cents = Column(Integer, nullable=False)
    currency = Column(String(10), default="usd", nullable=False)

    payment_intent_id = Column(String(255), unique=True, nullable=False)
    payment_status = Column(String(20), default="authorized", nullable=False)

    meeting_location = Column(String(500), nullable=True)
    meeting_location_lat = Column(Float, nullable=True)
    meeting_location_lon = Column(Float, nullable=True)
    meeting_location_place_id = Column(String(255), nullable=True)
    special_requests = Column(Text, nullable=True)

    # pending → accepted | rejected | cancelled | expired
    status = Column(String(20), default="pending", nullable=False, index=True)
    companion_response = Column(Text, nullable=True)
    responded_at = Column(DateTime, nullable=True)
    booking_id = Column(Integer, nullable=True)  # Set once accepted

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class BookingVerification(Base):
    """Meeting codes and per-party check-in state for one booking"""

    __tablename__ = "booking_verifications"

    id = Column(Integer, primary_key=True, index=True)
    # One verification per booking; concurrent issuers collide here
    booking_id = Column(Integer, ForeignKey("bookings.id"), unique=True, nullable=False)

    client_code = Column(String(6), nullable=False)
    companion_code = Column(String(6), nullable=False)

    client_verified_at = Column(DateTime, nullable=True)
    companion_verified_at = Column(DateTime, nullable=True)
    client_latitude = Column(Float, nullable=True)
    client_longitude = Column(Float, nullable=True)
    companion_latitude = Column(Float, nullable=True)
    companion_longitude = Column(Float, nullable=True)

    # awaiting_codes → one_party_verified → both_verified, or → expired
    status = Column(String(20), default="awaiting_codes", nullable=False, index=True)
    issued_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    extension_used = Column(Boolean, default=False, nullable=False)
    extension_requested_by = Column(Integer, nullable=True)
    both_verified_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    booking = relationship("Booking", back_populates="verification")


class VerificationAttempt(Base):
    """Audit trail of every meeting code submission"""

    __tablename__ = "verification_attempts"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    role = Column(String(20), nullable=False)
    # verified, location_confirmed, invalid_code, location_mismatch, expired
    outcome = Column(String(30), nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    distance_meters = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Notification(Base):
    """In-app copy of every relayed booking event"""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    event = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
