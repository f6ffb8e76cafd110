"""
Notification Relay
Fans booking events out to both parties: an in-app notification row plus a
realtime message on the party's Redis channel. Fire-and-forget: a failed
delivery is logged and never undoes the state change that caused it.
"""

import json
import logging
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.orm import Session

from ..models import Notification
from ..rate_limiter import get_redis_client

logger = logging.getLogger(__name__)

EVENT_TITLES = {
    "booking.created": "New booking",
    "booking.approved": "Booking confirmed",
    "booking.cancelled": "Booking cancelled",
    "booking.completed": "Booking completed",
    "request.created": "New booking request",
    "request.accepted": "Booking request accepted",
    "request.rejected": "Booking request declined",
    "request.cancelled": "Booking request withdrawn",
    "request.expired": "Booking request expired",
    "meeting.verified": "Meeting verified",
    "verification.extended": "Verification window extended",
    "verification.expired": "Verification expired",
}


def user_channel(user_id: int) -> str:
    """Redis pub/sub channel carrying one party's realtime events"""
    return f"user:{user_id}"


def redis_publish(channel: str, message: str) -> None:
    client = get_redis_client()
    if client is None:
        logger.debug(f"Redis not configured - skipping realtime publish to {channel}")
        return
    client.publish(channel, message)


class NotificationRelay:
    def __init__(self, db: Session, publish: Optional[Callable[[str, str], Any]] = None):
        self.db = db
        self.publish = publish or redis_publish

    async def emit(
        self,
        user_ids: Iterable[int],
        event: str,
        payload: dict,
        message: Optional[str] = None,
    ) -> dict:
        """
        Deliver one event to each recipient.

        Returns:
            Dict with delivered recipient ids and per-recipient errors
        """
        result = {"event": event, "delivered": [], "errors": {}}
        title = EVENT_TITLES.get(event, event)

        for user_id in dict.fromkeys(user_ids):
            try:
                self.db.add(
                    Notification(
                        user_id=user_id,
                        event=event,
                        title=title,
                        message=message,
                        payload=payload,
                    )
                )
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                result["errors"][user_id] = str(e)
                logger.warning(f"⚠️ Failed to store {event} notification for user {user_id}: {e}")
                continue

            try:
                self.publish(
                    user_channel(user_id),
                    json.dumps({"event": event, "data": payload}, default=str),
                )
                result["delivered"].append(user_id)
                logger.info(f"📣 Relayed {event} to user {user_id}")
            except Exception as e:
                result["errors"][user_id] = str(e)
                logger.warning(f"⚠️ Failed to relay {event} to user {user_id}: {e}")

        return result
