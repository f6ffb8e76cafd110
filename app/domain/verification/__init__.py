"""Meeting verification domain - Two-party code check-in for confirmed bookings"""

from .router import router

__all__ = ["router"]
