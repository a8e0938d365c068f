"""
Dispatch Service Event Publishers

Functions to publish events from dispatch service
"""

import logging
from typing import Optional

from core.nats_client import Event, EventType, ServiceSource
from ..models import Order
from .models import (
    OrderCreatedEvent,
    OrderStatusChangedEvent,
    OrderAssignedEvent,
    OrderCanceledEvent,
    CourierDisconnectedEvent,
    CourierRemindedEvent,
    OptimizerUnavailableEvent,
)

logger = logging.getLogger(__name__)


async def _publish(event_bus, event_type: EventType, payload) -> bool:
    if not event_bus:
        logger.warning(f"Event bus not available, skipping {event_type.value} event")
        return False

    try:
        event = Event(
            event_type=event_type,
            source=ServiceSource.DISPATCH_SERVICE,
            data=payload.model_dump(mode='json')
        )
        await event_bus.publish_event(event)
        logger.info(f"Published {event_type.value} event")
        return True

    except Exception as e:
        logger.error(f"Failed to publish {event_type.value} event: {e}")
        return False


async def publish_order_created(event_bus, order: Order) -> bool:
    """Publish dispatch.order.created event"""
    return await _publish(
        event_bus,
        EventType.ORDER_CREATED,
        OrderCreatedEvent(
            order_id=order.id,
            user_id=order.user_id,
            zone_id=order.zone_id,
            gas_type=order.gas_type,
            gallons=order.gallons,
            total_price=order.total_price,
            target_time_start=order.target_time_start,
            target_time_end=order.target_time_end,
        ),
    )


async def publish_order_status_changed(
    event_bus,
    order: Order,
    old_status: str,
    changed_at: int,
    actor_id: Optional[str] = None,
) -> bool:
    """Publish dispatch.order.status_changed event"""
    return await _publish(
        event_bus,
        EventType.ORDER_STATUS_CHANGED,
        OrderStatusChangedEvent(
            order_id=order.id,
            user_id=order.user_id,
            old_status=old_status,
            new_status=order.status.value,
            courier_id=order.courier_id,
            actor_id=actor_id,
            changed_at=changed_at,
        ),
    )


async def publish_order_assigned(
    event_bus,
    order_id: str,
    courier_id: str,
    assigned_at: int,
    assigned_by: Optional[str] = None,
) -> bool:
    """Publish dispatch.order.assigned event"""
    return await _publish(
        event_bus,
        EventType.ORDER_ASSIGNED,
        OrderAssignedEvent(
            order_id=order_id,
            courier_id=courier_id,
            assigned_at=assigned_at,
            assigned_by=assigned_by,
        ),
    )


async def publish_order_canceled(
    event_bus,
    order: Order,
    previous_status: str,
    canceled_by: Optional[str] = None,
) -> bool:
    """Publish dispatch.order.canceled event"""
    return await _publish(
        event_bus,
        EventType.ORDER_CANCELED,
        OrderCanceledEvent(
            order_id=order.id,
            user_id=order.user_id,
            courier_id=order.courier_id,
            canceled_by=canceled_by,
            previous_status=previous_status,
            referral_gallons_returned=order.referral_gallons_used,
            coupon_code=order.coupon_code or None,
        ),
    )


async def publish_courier_disconnected(event_bus, courier_id: str, last_ping: Optional[int]) -> bool:
    """Publish dispatch.courier.disconnected event"""
    return await _publish(
        event_bus,
        EventType.COURIER_DISCONNECTED,
        CourierDisconnectedEvent(courier_id=courier_id, last_ping=last_ping),
    )


async def publish_courier_reminded(event_bus, courier_id: str, order_id: str, elapsed_seconds: int) -> bool:
    """Publish dispatch.courier.reminded event"""
    return await _publish(
        event_bus,
        EventType.COURIER_REMINDED,
        CourierRemindedEvent(courier_id=courier_id, order_id=order_id, elapsed_seconds=elapsed_seconds),
    )


async def publish_optimizer_unavailable(event_bus, consecutive_failures: int, last_error: str = "") -> bool:
    """Publish dispatch.optimizer.unavailable event (operator alert)"""
    return await _publish(
        event_bus,
        EventType.OPTIMIZER_UNAVAILABLE,
        OptimizerUnavailableEvent(consecutive_failures=consecutive_failures, last_error=last_error),
    )
