"""Booking domain errors - each carries a stable kind and the HTTP status it maps to"""

from typing import Optional


class BookingError(Exception):
    """Base class for every failure a booking operation reports to its caller"""

    kind = "booking_error"
    status_code = 400

    def __init__(self, message: str, extra: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_dict(self) -> dict:
        return {"detail": self.message, "kind": self.kind, **self.extra}


class ValidationError(BookingError):
    kind = "validation_error"
    status_code = 400


class PaymentError(BookingError):
    kind = "payment_error"
    status_code = 402


class InvalidStateError(BookingError):
    kind = "invalid_state"
    status_code = 409


class InvalidCodeError(BookingError):
    kind = "invalid_code"
    status_code = 400


class ExpiredError(BookingError):
    kind = "verification_expired"
    status_code = 410


class NotFoundError(BookingError):
    kind = "not_found"
    status_code = 404


class PermissionDeniedError(BookingError):
    kind = "permission_denied"
    status_code = 403
