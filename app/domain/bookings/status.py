"""Booking status vocabulary, allowed transitions and list ordering"""

from datetime import datetime

PENDING = "pending"
PAYMENT_HELD = "payment_held"
CONFIRMED = "confirmed"
COMPLETED = "completed"
CANCELLED = "cancelled"

BOOKING_STATUSES = (PENDING, PAYMENT_HELD, CONFIRMED, COMPLETED, CANCELLED)

CONFIRMED_LIKE_STATUSES = (CONFIRMED, PAYMENT_HELD)
APPROVABLE_STATUSES = (PENDING, PAYMENT_HELD)
CANCELLABLE_STATUSES = (PENDING, PAYMENT_HELD, CONFIRMED)
TERMINAL_STATUSES = (COMPLETED, CANCELLED)

VALID_TRANSITIONS = {
    PENDING: [CONFIRMED, CANCELLED],
    PAYMENT_HELD: [CONFIRMED, CANCELLED, COMPLETED],
    CONFIRMED: [CANCELLED, COMPLETED],
    COMPLETED: [],
    CANCELLED: [],
}

# List ordering: pending first, then upcoming, then history
STATUS_PRIORITY = {
    PENDING: 0,
    PAYMENT_HELD: 1,
    CONFIRMED: 1,
    COMPLETED: 2,
    CANCELLED: 3,
}


def is_confirmed_like(status: str) -> bool:
    """Confirmed and payment_held behave the same for completion and check-in"""
    return status in CONFIRMED_LIKE_STATUSES


def validate_status_transition(current_status: str, new_status: str) -> bool:
    """
    Validate if a status transition is allowed

    Args:
        current_status: Current booking status
        new_status: Desired new status

    Returns:
        bool: True if transition is valid
    """
    return new_status in VALID_TRANSITIONS.get(current_status, [])


def priority_sort_key(status: str, starts_at: datetime) -> tuple:
    """
    Sort key for a party's booking list.

    Groups by STATUS_PRIORITY; within non-terminal groups the soonest booking
    comes first, within terminal groups the most recent one does.
    """
    priority = STATUS_PRIORITY.get(status, len(STATUS_PRIORITY))
    timestamp = starts_at.timestamp() if starts_at else 0
    if status in TERMINAL_STATUSES:
        timestamp = -timestamp
    return (priority, timestamp)
