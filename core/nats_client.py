"""
NATS JetStream Client for Python Microservices

Event-driven communication for the dispatch service: domain events
(order lifecycle, courier liveness, optimizer health) and notification
requests consumed by the notification service.
"""

import json
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import nats
from nats.js.errors import BadRequestError
from tenacity import retry, stop_after_attempt, wait_exponential

from core.config import InfraConfig

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Event types published on the bus"""

    # Order Events
    ORDER_CREATED = "dispatch.order.created"
    ORDER_STATUS_CHANGED = "dispatch.order.status_changed"
    ORDER_ASSIGNED = "dispatch.order.assigned"
    ORDER_CANCELED = "dispatch.order.canceled"

    # Courier Events
    COURIER_DISCONNECTED = "dispatch.courier.disconnected"
    COURIER_REMINDED = "dispatch.courier.reminded"

    # Dispatch Loop Events
    OPTIMIZER_UNAVAILABLE = "dispatch.optimizer.unavailable"

    # Notification Events
    NOTIFICATION_REQUESTED = "notification.push.requested"


class ServiceSource(Enum):
    """Services that publish events"""
    DISPATCH_SERVICE = "dispatch_service"
    NOTIFICATION_SERVICE = "notification_service"


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: EventType,
        source: ServiceSource,
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value
        self.source = source.value
        self.data = data
        self.subject = subject
        self.timestamp = datetime.utcnow().isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }


class NATSEventBus:
    """
    NATS JetStream event bus.

    Streams are created per subject prefix ("dispatch.>" -> dispatch-stream).
    """

    def __init__(self, service_name: str, config: Optional[InfraConfig] = None):
        """
        Initialize NATS Event Bus.

        Args:
            service_name: Name of the service (used as the connection name)
            config: Optional InfraConfig for the NATS endpoint
        """
        config = config or InfraConfig.from_env()
        self.service_name = service_name
        self.servers = config.nats_servers

        self._nc: Optional[nats.NATS] = None
        self._js = None
        self._streams: set = set()
        self._is_connected = False

        logger.info(f"NATS EventBus initialized: {self.servers}")

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=8), reraise=True)
    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(servers=self.servers, name=self.service_name)
            self._js = self._nc.jetstream()
            self._is_connected = True
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def publish_event(self, event: Event) -> bool:
        """
        Publish an event to NATS JetStream.

        The event type is the subject; the stream is derived from its prefix.
        """
        if not self._is_connected or not self._js:
            logger.error("Not connected to NATS")
            return False

        try:
            subject = event.type
            data = json.dumps(event.to_dict()).encode()

            stream_name = self._get_stream_name_for_event(event.type)
            await self._ensure_stream(stream_name, event.type.split('.')[0])

            ack = await self._js.publish(subject, data)
            logger.info(f"Published event {event.type} [{event.id}] to stream {ack.stream}, seq={ack.seq}")
            return True

        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    def _get_stream_name_for_event(self, event_type: str) -> str:
        """dispatch.order.created -> dispatch-stream"""
        prefix = event_type.split('.')[0]
        return f"{prefix}-stream"

    async def _ensure_stream(self, name: str, prefix: str) -> None:
        if name in self._streams:
            return
        try:
            await self._js.add_stream(name=name, subjects=[f"{prefix}.>"], max_msgs=100000)
        except BadRequestError as e:
            # Stream already exists with a different config
            logger.debug(f"Stream creation note: {e}")
        self._streams.add(name)

    async def close(self):
        """Close NATS connection"""
        if self._nc:
            try:
                await self._nc.drain()
            except Exception as e:
                logger.error(f"Error draining NATS connection: {e}")
            self._nc = None
            self._js = None

        self._is_connected = False
        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._is_connected


# Singleton instance
_event_bus: Optional[NATSEventBus] = None


async def get_event_bus(
    service_name: str,
    config: Optional[InfraConfig] = None,
) -> NATSEventBus:
    """
    Get or create event bus instance.

    Args:
        service_name: Name of the service using the event bus
        config: Optional InfraConfig instance

    Returns:
        NATSEventBus instance
    """
    global _event_bus

    if _event_bus is None:
        _event_bus = NATSEventBus(service_name=service_name, config=config)
        await _event_bus.connect()

    return _event_bus
