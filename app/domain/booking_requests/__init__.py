"""Booking requests domain - Client requests that a companion accepts or declines"""

from .router import router

__all__ = ["router"]
