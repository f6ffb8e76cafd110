"""Bookings domain - Booking lifecycle: checkout, approval, cancellation, completion"""

from .router import router

__all__ = ["router"]
