"""
Notification bridge

Fans appointment lifecycle events (booked, rescheduled, cancelled) out to
downstream listeners: a Redis pub/sub channel for the realtime layer and any
in-process subscribers. Publishing is fire-and-forget; a failed delivery is
logged and never reaches the booking flow.
"""

import json
import logging
from datetime import datetime
from typing import Callable, Optional

from ..config import NOTIFICATION_CHANNEL, NOTIFICATIONS_ENABLED

logger = logging.getLogger(__name__)

Subscriber = Callable[[dict], None]


class NotificationBridge:
    def __init__(
        self,
        channel: str = NOTIFICATION_CHANNEL,
        enabled: bool = NOTIFICATIONS_ENABLED,
        redis_factory: Optional[Callable] = None,
    ):
        self.channel = channel
        self.enabled = enabled
        self._redis_factory = redis_factory
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register an in-process listener; returns an unsubscribe function"""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event_type: str, appointment, **data) -> dict:
        """Build and deliver one lifecycle event"""
        event = {
            "type": event_type,
            "appointmentId": appointment.id,
            "patientId": appointment.patient_id,
            "providerId": appointment.provider_id,
            "sessionId": appointment.session_id,
            "appointmentDate": appointment.appointment_date.isoformat(),
            "tokenNumber": appointment.token_number,
            "status": appointment.status,
            "occurredAt": datetime.utcnow().isoformat(),
        }
        event.update(data)

        if not self.enabled:
            return event

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"❌ Notification subscriber failed for {event_type}: {e}")

        self._publish_redis(event)
        return event

    def _publish_redis(self, event: dict) -> None:
        if self._redis_factory is None:
            return
        try:
            client = self._redis_factory()
            if client is None:
                return
            client.publish(self.channel, json.dumps(event))
            logger.debug(f"📣 Published {event['type']} for appointment {event['appointmentId']}")
        except Exception as e:
            # Don't raise - the event bus is not part of booking correctness
            logger.warning(f"⚠️ Failed to publish {event['type']} to {self.channel}: {e}")


def _default_redis_factory():
    from ..cache import cache

    # Shares the cache's connection and its reconnect backoff
    return cache._get_client()


# Singleton instance
notification_bridge = NotificationBridge(redis_factory=_default_redis_factory)


def get_notification_bridge() -> NotificationBridge:
    """Dependency injection for the notification bridge"""
    return notification_bridge
