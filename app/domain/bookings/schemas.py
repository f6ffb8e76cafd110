"""Booking domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import parse_hhmm, validate_timezone


class BookingSchedule(BaseModel):
    """Local wall-clock schedule plus the zone it was entered in"""

    booking_date: date
    start_time: str
    end_time: str
    timezone: str = "UTC"

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, v):
        parse_hhmm(v)
        return v.strip()

    @field_validator("timezone")
    @classmethod
    def validate_zone(cls, v):
        return validate_timezone(v)


class MeetingLocation(BaseModel):
    meeting_location: Optional[str] = Field(None, max_length=500)
    meeting_location_lat: Optional[float] = Field(None, ge=-90, le=90)
    meeting_location_lon: Optional[float] = Field(None, ge=-180, le=180)
    meeting_location_place_id: Optional[str] = None


class PaymentIntentCreate(BookingSchedule):
    """Step one of checkout: price the booking and open a payment hold"""

    companion_id: int
    extra_amount_cents: int = Field(0, ge=0)
    total_amount_cents: Optional[int] = Field(None, ge=0)


class PaymentIntentResponse(BaseModel):
    payment_intent_id: str
    client_secret: Optional[str] = None
    hourly_rate_cents: int
    base_amount_cents: int
    extra_amount_cents: int
    total_amount_cents: int
    currency: str
    duration_minutes: int


class BookingCreate(BookingSchedule, MeetingLocation):
    """Step two of checkout: create the booking against an authorized payment"""

    companion_id: int
    payment_intent_id: str = Field(..., min_length=1)
    extra_amount_cents: int = Field(0, ge=0)
    total_amount_cents: Optional[int] = Field(None, ge=0)
    special_requests: Optional[str] = Field(None, max_length=2000)


class BookingCancel(BaseModel):
    reason: str = Field(..., max_length=1000)


class BookingResponse(BaseModel):
    id: int
    public_id: str
    client_id: int
    companion_id: int
    booking_date: date
    start_time: str
    end_time: str
    booking_timezone: str
    starts_at: datetime
    ends_at: datetime
    duration_minutes: int
    hourly_rate_cents: int
    base_amount_cents: int
    extra_amount_cents: int
    total_amount_cents: int
    platform_fee_cents: int
    currency: str
    status: str
    payment_status: str
    meeting_location: Optional[str] = None
    meeting_location_lat: Optional[float] = None
    meeting_location_lon: Optional[float] = None
    special_requests: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    meeting_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    verification_status: str = "not_started"

    class Config:
        from_attributes = True

    @classmethod
    def from_booking(cls, booking) -> "BookingResponse":
        response = cls.model_validate(booking)
        if booking.verification is not None:
            response.verification_status = booking.verification.status
        return response
