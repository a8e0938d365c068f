"""
Dispatch Service Data Models

Pydantic models for orders, couriers, zones and the dispatch control loop.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Tuple
from datetime import datetime
from enum import Enum
import time


class OrderStatus(str, Enum):
    """Order status enumeration

    unassigned - not assigned to any courier yet
    assigned   - assigned to a courier, waiting for the courier to accept
    accepted   - courier accepted this order as their current task (can be forced)
    enroute    - courier has begun the task
    servicing  - vehicle is being serviced by the courier
    complete   - order has been fulfilled
    cancelled  - order has been cancelled (by customer or staff)
    """
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    ENROUTE = "enroute"
    SERVICING = "servicing"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


# A courier is busy while holding any order in one of these
BUSY_STATUSES = (
    OrderStatus.ASSIGNED,
    OrderStatus.ACCEPTED,
    OrderStatus.ENROUTE,
    OrderStatus.SERVICING,
)

# Unassigned or in process
OPEN_STATUSES = (OrderStatus.UNASSIGNED,) + BUSY_STATUSES

# Chronologically before servicing; these still hold a delivery slot
PRE_SERVICING_STATUSES = (
    OrderStatus.UNASSIGNED,
    OrderStatus.ASSIGNED,
    OrderStatus.ACCEPTED,
    OrderStatus.ENROUTE,
)

TERMINAL_STATUSES = (OrderStatus.COMPLETE, OrderStatus.CANCELLED)


def unix_now() -> int:
    return int(time.time())


# Core Domain Models

class EventLogEntry(BaseModel):
    """One status transition in an order's event log"""
    model_config = ConfigDict(frozen=True)

    status: OrderStatus
    timestamp: int


class Order(BaseModel):
    """Core order model"""
    id: str
    user_id: str
    status: OrderStatus
    event_log: List[EventLogEntry] = Field(default_factory=list)
    timestamp_created: int
    target_time_start: int
    target_time_end: int
    courier_id: Optional[str] = None
    zone_id: Optional[int] = None

    # Location
    address_street: str = ""
    address_zip: str
    lat: float = 0.0
    lng: float = 0.0

    # Zone-derived pricing (cents)
    gas_type: str
    gallons: float
    gas_price: int
    service_fee: int
    total_price: int

    vehicle_id: Optional[str] = None
    license_plate: str = ""
    special_instructions: str = ""
    coupon_code: str = ""
    referral_gallons_used: float = 0.0
    subscription_id: int = 0
    tire_pressure_check: bool = False

    number_rating: Optional[int] = None
    text_rating: Optional[str] = None

    @property
    def window_seconds(self) -> int:
        return self.target_time_end - self.target_time_start

    @property
    def time_limit_minutes(self) -> int:
        return self.window_seconds // 60

    @property
    def status_times(self) -> Dict[str, int]:
        """Latest timestamp per status, e.g. {"unassigned": 1700000000, ...}"""
        return {entry.status.value: entry.timestamp for entry in self.event_log}

    def event_time(self, status: OrderStatus) -> Optional[int]:
        return self.status_times.get(status.value)


class Courier(BaseModel):
    """Courier record; connected and busy are derived by the dispatch loop"""
    id: str
    active: bool = True
    on_duty: bool = False
    connected: bool = False
    busy: bool = False
    last_ping: Optional[int] = None
    lat: float = 0.0
    lng: float = 0.0
    zones: List[int] = Field(default_factory=list)
    gallons_87: float = 0.0
    gallons_91: float = 0.0


class Zone(BaseModel):
    """Service area with its own hours, pricing and one-hour capacity policy"""
    id: int
    name: str = ""
    active: bool = True
    zip_codes: List[str] = Field(default_factory=list)
    open_minute: int = 0
    close_minute: int = 1440
    holiday_start: Optional[int] = None
    holiday_end: Optional[int] = None
    holiday_message: str = "Sorry, we're closed for the holiday."
    gas_prices: Dict[str, int] = Field(default_factory=dict)
    delivery_fees: Dict[int, int] = Field(default_factory=dict)
    time_choices: List[int] = Field(default_factory=lambda: [60, 180])
    one_hour_constraining_zone_id: Optional[int] = None
    closed_message: str = ""

    def in_holiday(self, unix_time: int) -> bool:
        if self.holiday_start is None or self.holiday_end is None:
            return False
        return self.holiday_start < unix_time < self.holiday_end


class User(BaseModel):
    """The slice of a user account the dispatch core reads"""
    id: str
    is_staff: bool = False
    referral_gallons: float = 0.0
    subscription_id: int = 0
    subscription_period_start_time: Optional[int] = None
    subscription_expiration_time: Optional[int] = None


class Subscription(BaseModel):
    """Subscription tier with free-delivery allowances and discounts per duration"""
    id: int
    name: str = ""
    num_free_one_hour: int = 0
    num_free_three_hour: int = 0
    num_free_five_hour: int = 0
    discount_one_hour: int = 0
    discount_three_hour: int = 0
    discount_five_hour: int = 0

    def allowance(self, time_limit: int) -> Tuple[int, int]:
        """(free deliveries per period, discount in cents) for a duration"""
        return {
            60: (self.num_free_one_hour, self.discount_one_hour),
            180: (self.num_free_three_hour, self.discount_three_hour),
            300: (self.num_free_five_hour, self.discount_five_hour),
        }.get(time_limit, (0, 0))


class Coupon(BaseModel):
    """Promotional code; value is a negative amount in cents"""
    code: str
    value: int = 0
    expiration_time: Optional[int] = None
    used_by: List[str] = Field(default_factory=list)


# Request Models

class Position(BaseModel):
    lat: float
    lng: float


class Inventory(BaseModel):
    """Remaining fuel on the courier's vehicle, by octane"""
    gallons_87: float = 0.0
    gallons_91: float = 0.0


class OrderRequest(BaseModel):
    """Create order request as submitted by the customer app"""
    address_street: str = ""
    address_zip: str = Field(..., min_length=5, description="Delivery ZIP code")
    lat: float = 0.0
    lng: float = 0.0
    gas_type: str = Field(..., description="Octane, e.g. '87' or '91'")
    gallons: float = Field(..., gt=0)
    time: int = Field(..., description="Delivery window in minutes (60, 180, 300)")
    total_price: int = Field(..., ge=0, description="Client-computed price in cents")
    vehicle_id: Optional[str] = None
    license_plate: str = ""
    special_instructions: str = ""
    coupon_code: str = ""
    tire_pressure_check: bool = False

    @field_validator('coupon_code')
    @classmethod
    def normalize_coupon(cls, v):
        return v.strip().upper() if v else ""

    @field_validator('address_zip')
    @classmethod
    def five_digit_zip(cls, v):
        return v.strip()[:5]


# Response Models

class OrderResult(BaseModel):
    """Operation result returned to the API layer"""
    success: bool
    order: Optional[Order] = None
    reason: Optional[str] = None
    message: str = ""


class HeartbeatResult(BaseModel):
    on_duty: bool = False
    success: bool = True
    reason: Optional[str] = None
    message: str = ""


class DeliveryTimeOption(BaseModel):
    minutes: int
    service_fee: int
    text: str
    order: int


class AvailabilityOption(BaseModel):
    octane: str
    price_per_gallon: int
    gallon_choices: List[float]
    times: List[DeliveryTimeOption] = Field(default_factory=list)


class AvailabilityResponse(BaseModel):
    success: bool = True
    availabilities: List[AvailabilityOption] = Field(default_factory=list)
    unavailable_reason: str = ""
    referral_gallons: float = 0.0


# Dispatch Loop Models

class OrderSnapshot(BaseModel):
    """Order fields that affect assignment eligibility"""
    model_config = ConfigDict(frozen=True)

    id: str
    status: OrderStatus
    courier_id: Optional[str] = None


class CourierSnapshot(BaseModel):
    """Courier fields that affect assignment eligibility (no position/heartbeat)"""
    model_config = ConfigDict(frozen=True)

    id: str
    active: bool
    on_duty: bool
    connected: bool
    busy: bool
    zones: Tuple[int, ...] = ()


class StateSnapshot(BaseModel):
    """Reduced projection of (orders, couriers) used for change detection"""
    model_config = ConfigDict(frozen=True)

    orders: Tuple[OrderSnapshot, ...] = ()
    couriers: Tuple[CourierSnapshot, ...] = ()

    @classmethod
    def build(cls, orders: List[Order], couriers: List[Courier]) -> "StateSnapshot":
        return cls(
            orders=tuple(
                OrderSnapshot(id=o.id, status=o.status, courier_id=o.courier_id)
                for o in sorted(orders, key=lambda o: o.id)
            ),
            couriers=tuple(
                CourierSnapshot(
                    id=c.id,
                    active=c.active,
                    on_duty=c.on_duty,
                    connected=c.connected,
                    busy=c.busy,
                    zones=tuple(sorted(c.zones)),
                )
                for c in sorted(couriers, key=lambda c: c.id)
            ),
        )


class AssignmentSuggestion(BaseModel):
    """One optimizer-ranked candidate pairing for this tick"""
    order_id: str
    courier_id: str
    rank: int
    is_new: bool


class TickReport(BaseModel):
    """What one reconciliation tick did"""
    started_at: int
    expired_couriers: List[str] = Field(default_factory=list)
    reminded_couriers: List[str] = Field(default_factory=list)
    state_changed: bool = False
    assignments: List[Tuple[str, str]] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class DispatchServiceStatus(BaseModel):
    """Dispatch service status response"""
    service: str = "dispatch_service"
    status: str = "operational"
    version: str = "1.0.0"
    loop_running: bool = False
    ticks_run: int = 0
    ticks_skipped: int = 0
    last_tick_at: Optional[int] = None
    consecutive_optimizer_failures: int = 0
    timestamp: Optional[datetime] = None
