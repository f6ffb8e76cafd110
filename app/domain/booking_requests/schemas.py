"""Booking request schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..bookings.schemas import BookingResponse, BookingSchedule, MeetingLocation


class BookingRequestCreate(BookingSchedule, MeetingLocation):
    companion_id: int
    payment_intent_id: str = Field(..., min_length=1)
    extra_amount_cents: int = Field(0, ge=0)
    total_amount_cents: Optional[int] = Field(None, ge=0)
    special_requests: Optional[str] = Field(None, max_length=2000)


class BookingRequestRespond(BaseModel):
    message: Optional[str] = Field(None, max_length=1000)


class BookingRequestResponse(BaseModel):
    id: int
    public_id: str
    client_id: int
    companion_id: int
    booking_date: date
    start_time: str
    end_time: str
    booking_timezone: str
    duration_minutes: int
    hourly_rate_cents: int
    base_amount_cents: int
    extra_amount_cents: int
    total_amount_cents: int
    currency: str
    payment_status: str
    meeting_location: Optional[str] = None
    special_requests: Optional[str] = None
    status: str
    companion_response: Optional[str] = None
    responded_at: Optional[datetime] = None
    booking_id: Optional[int] = None

    class Config:
        from_attributes = True


class AcceptRequestResponse(BaseModel):
    request: BookingRequestResponse
    booking: BookingResponse
