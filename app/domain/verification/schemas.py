"""Meeting verification schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import normalize_otp


class VerifyCodeRequest(BaseModel):
    code: str
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    confirm_location: bool = False

    @field_validator("code")
    @classmethod
    def validate_code(cls, v):
        if not normalize_otp(v):
            raise ValueError("Code must contain digits")
        return v


class IssueCodesResponse(BaseModel):
    booking_id: int
    status: str
    issued: bool
    code: Optional[str] = None
    expires_at: datetime
    seconds_remaining: int


class VerifyResponse(BaseModel):
    """Either a check-in result or a location mismatch awaiting confirmation"""

    booking_id: int
    status: str
    verified: bool
    both_verified: bool = False
    already_verified: bool = False
    seconds_remaining: int = 0
    distance_meters: Optional[float] = None
    distance_formatted: Optional[str] = None
    threshold_meters: Optional[float] = None
    requires_confirmation: bool = False
    message: str


class VerificationStatusResponse(BaseModel):
    booking_id: int
    booking_status: str
    status: str
    codes_issued: bool
    code: Optional[str] = None
    user_verified: bool = False
    other_party_verified: bool = False
    both_verified: bool = False
    extension_used: bool = False
    can_extend: bool = False
    expires_at: Optional[datetime] = None
    seconds_remaining: int = 0


class ExpireResponse(BaseModel):
    booking_id: int
    expired: bool
    status: str
    booking_status: str
    seconds_remaining: int = 0
