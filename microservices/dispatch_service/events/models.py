"""
Dispatch Service Event Models

Pydantic models for events published by dispatch service
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class OrderCreatedEvent(BaseModel):
    """Event published when an order is admitted"""
    order_id: str
    user_id: str
    zone_id: Optional[int] = None
    gas_type: str
    gallons: float
    total_price: int
    target_time_start: int
    target_time_end: int
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class OrderStatusChangedEvent(BaseModel):
    """Event published after every committed status transition"""
    order_id: str
    user_id: str
    old_status: str
    new_status: str
    courier_id: Optional[str] = None
    actor_id: Optional[str] = None
    changed_at: int
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class OrderAssignedEvent(BaseModel):
    """Event published when an order is paired with a courier"""
    order_id: str
    courier_id: str
    assigned_by: Optional[str] = None
    assigned_at: int
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class OrderCanceledEvent(BaseModel):
    """Event published when an order is cancelled"""
    order_id: str
    user_id: str
    courier_id: Optional[str] = None
    canceled_by: Optional[str] = None
    previous_status: str
    referral_gallons_returned: float = 0.0
    coupon_code: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class CourierDisconnectedEvent(BaseModel):
    """Event published when a courier's heartbeat goes stale"""
    courier_id: str
    last_ping: Optional[int] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class CourierRemindedEvent(BaseModel):
    """Event published when a courier is reminded to accept an order"""
    courier_id: str
    order_id: str
    elapsed_seconds: int
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class OptimizerUnavailableEvent(BaseModel):
    """Event published when the optimizer keeps failing"""
    consecutive_failures: int
    last_error: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class NotificationRequestedEvent(BaseModel):
    """Push notification request consumed by the notification service"""
    recipient_id: str
    message: str
    channel: str = "push"
    timestamp: datetime = Field(default_factory=datetime.utcnow)
