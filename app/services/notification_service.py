# app/services/notification_service.py

from typing import Callable, List

from app.core.logger import logger
from app.utils.date_utils import utcnow


class NotificationService:
    """
    Fire-and-forget user notifications. A failed write is logged and never
    propagates into the booking transition that triggered it.
    """

    def __init__(self, db):
        if db is None:
            raise ValueError("Database connection is required")
        self.db = db

    def notify(self, user_id, title: str, message: str) -> bool:
        if not user_id:
            return False
        try:
            self.db.notifications.insert_one({
                "user_id": str(user_id),
                "title": title,
                "message": message,
                "read": False,
                "created_at": utcnow(),
            })
            return True
        except Exception as e:
            logger.error(f"Failed to notify user {user_id} ({title}): {str(e)}")
            return False


class BookingEventBroadcaster:
    """In-process fan-out of booking events to real-time relays"""

    def __init__(self):
        self._listeners: List[Callable[[str, dict], None]] = []

    def subscribe(self, listener: Callable[[str, dict], None]):
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[str, dict], None]):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, event: str, payload: dict):
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception as e:
                logger.error(f"Booking event listener failed on {event}: {str(e)}")


booking_events = BookingEventBroadcaster()
