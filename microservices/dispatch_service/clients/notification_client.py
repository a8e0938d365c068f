"""
Notification Client for Dispatch Service

Requests push notifications by publishing notification.push.requested on the
event bus; delivery is the notification service's job.
"""

import logging
from typing import Optional

from core.nats_client import Event, EventType, ServiceSource
from ..events.models import NotificationRequestedEvent
from ..protocols import EventBusProtocol

logger = logging.getLogger(__name__)


class NotificationClient:
    """Best-effort push notifier; never raises"""

    def __init__(self, event_bus: Optional[EventBusProtocol] = None, channel: str = "push"):
        self.event_bus = event_bus
        self.channel = channel

    async def notify(self, recipient_id: str, message: str) -> bool:
        """
        Request a push notification

        Args:
            recipient_id: User or courier ID
            message: Text shown to the recipient

        Returns:
            True if the request was published
        """
        if not self.event_bus:
            logger.warning(f"Event bus not available, dropping notification for {recipient_id}")
            return False

        try:
            payload = NotificationRequestedEvent(
                recipient_id=recipient_id, message=message, channel=self.channel
            )
            event = Event(
                event_type=EventType.NOTIFICATION_REQUESTED,
                source=ServiceSource.DISPATCH_SERVICE,
                data=payload.model_dump(mode='json'),
                subject=recipient_id,
            )
            await self.event_bus.publish_event(event)
            logger.debug(f"Notification requested for {recipient_id}")
            return True

        except Exception as e:
            logger.error(f"Failed to request notification for {recipient_id}: {e}")
            return False
