"""
Dispatch Service Events Module

Exports all event-related functionality for dispatch service
"""

from .models import (
    OrderCreatedEvent,
    OrderStatusChangedEvent,
    OrderAssignedEvent,
    OrderCanceledEvent,
    CourierDisconnectedEvent,
    CourierRemindedEvent,
    OptimizerUnavailableEvent,
    NotificationRequestedEvent,
)

from .publishers import (
    publish_order_created,
    publish_order_status_changed,
    publish_order_assigned,
    publish_order_canceled,
    publish_courier_disconnected,
    publish_courier_reminded,
    publish_optimizer_unavailable,
)

__all__ = [
    # Event Models
    "OrderCreatedEvent",
    "OrderStatusChangedEvent",
    "OrderAssignedEvent",
    "OrderCanceledEvent",
    "CourierDisconnectedEvent",
    "CourierRemindedEvent",
    "OptimizerUnavailableEvent",
    "NotificationRequestedEvent",
    # Publishers
    "publish_order_created",
    "publish_order_status_changed",
    "publish_order_assigned",
    "publish_order_canceled",
    "publish_courier_disconnected",
    "publish_courier_reminded",
    "publish_optimizer_unavailable",
]
