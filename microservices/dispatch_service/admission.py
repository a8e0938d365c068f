"""
Admission Control

Validates a proposed order before it exists, in this order:
price check, operating hours, one-hour slot capacity. Accepted orders are
written together with the referral-gallon debit and coupon use.
"""

import logging
import math
import uuid
from typing import Callable, List, Optional

from core.background_tasks import BackgroundTasks
from core.config import DispatchConfig
from .dispatch_repository import DispatchRepository
from .zone_directory import ZoneDirectory
from .models import (
    AvailabilityOption,
    AvailabilityResponse,
    DeliveryTimeOption,
    EventLogEntry,
    Order,
    OrderRequest,
    OrderStatus,
    User,
    Zone,
    unix_now,
)
from .protocols import (
    CapacityExceededError,
    EventBusProtocol,
    NotFoundError,
    PriceMismatchError,
    ServiceClosedError,
)
from .events.publishers import publish_order_created

logger = logging.getLogger(__name__)

ONE_HOUR_SECONDS = 3600

PRICE_CHANGED_MESSAGE = (
    "Sorry, the price changed while you were creating your order. "
    "Please press the back button to go back to the map and start over."
)
OUT_OF_AREA_MESSAGE = "Sorry, we are unable to deliver gas to your location. We are rapidly expanding our service area and hope to offer service to your location very soon."
NO_CAPACITY_MESSAGE = "Sorry, that delivery time is not available right now. Please choose a longer delivery window."

# Subscription tiers allowed past the slot-capacity check
STANDARD_SUBSCRIPTION = 1
PREMIUM_SUBSCRIPTION = 2
UNLIMITED_SUBSCRIPTION = 3


def calculate_total(
    gas_price: int,
    gallons: float,
    referral_gallons: float,
    delivery_fee: int,
    tire_pressure_price: int = 0,
    coupon_value: int = 0,
) -> int:
    """Total in cents; referral gallons are free and the result is never negative"""
    paid_gallons = gallons - min(gallons, referral_gallons)
    total = gas_price * paid_gallons + delivery_fee + tire_pressure_price + coupon_value
    return max(0, int(math.ceil(total)))


def bypasses_capacity(subscription_id: int, time_limit: int) -> bool:
    if subscription_id == UNLIMITED_SUBSCRIPTION:
        return True
    if subscription_id == PREMIUM_SUBSCRIPTION:
        return time_limit in (60, 180)
    if subscription_id == STANDARD_SUBSCRIPTION:
        return time_limit == 180
    return False


def delivery_time_text(minutes: int, fee: int) -> str:
    hours = minutes // 60
    unit = "hour" if hours == 1 else "hours"
    price = "free" if fee == 0 else f"${fee / 100:.2f}"
    return f"within {hours} {unit} ({price})"


def new_order_id() -> str:
    return f"order_{uuid.uuid4().hex[:12]}"


class AdmissionControl:
    """Gatekeeper for order creation"""

    def __init__(
        self,
        repository: DispatchRepository,
        zones: ZoneDirectory,
        config: Optional[DispatchConfig] = None,
        event_bus: Optional[EventBusProtocol] = None,
        tasks: Optional[BackgroundTasks] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.repository = repository
        self.zones = zones
        self.config = config or DispatchConfig()
        self.event_bus = event_bus
        self.tasks = tasks or BackgroundTasks("admission")
        self.clock = clock or unix_now

    # ====================
    # Creation
    # ====================

    async def admit(self, user_id: str, request: OrderRequest) -> Order:
        """
        Validate and persist a new order.

        Raises:
            NotFoundError: unknown user
            ServiceClosedError: no active zone, outside hours or holiday
            PriceMismatchError: submitted total differs from the current price
            CapacityExceededError: one-hour slots are full or duration not offered
        """
        now = self.clock()
        user = await self.repository.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")

        zone = self.zones.get_active_zone_by_zip(request.address_zip)
        if zone is None:
            raise ServiceClosedError(OUT_OF_AREA_MESSAGE)

        subscription_id = self.active_subscription_id(user, now)
        gas_price, service_fee, total = await self.quote(user, zone, request, subscription_id, now)
        if total != request.total_price:
            logger.info(
                f"Price mismatch for user {user_id}: submitted {request.total_price}, current {total}"
            )
            raise PriceMismatchError(PRICE_CHANGED_MESSAGE)

        bypass = bypasses_capacity(subscription_id, request.time)
        self.check_hours(zone, now, bypass)

        coupon_applies = await self._coupon_value(request.coupon_code, user_id, now) != 0

        order = Order(
            id=new_order_id(),
            user_id=user_id,
            status=OrderStatus.UNASSIGNED,
            event_log=[EventLogEntry(status=OrderStatus.UNASSIGNED, timestamp=now)],
            timestamp_created=now,
            target_time_start=now,
            target_time_end=now + 60 * request.time,
            zone_id=zone.id,
            address_street=request.address_street,
            address_zip=request.address_zip,
            lat=request.lat,
            lng=request.lng,
            gas_type=request.gas_type,
            gallons=request.gallons,
            gas_price=gas_price,
            service_fee=service_fee,
            total_price=total,
            vehicle_id=request.vehicle_id,
            license_plate=request.license_plate,
            special_instructions=request.special_instructions,
            coupon_code=request.coupon_code if coupon_applies else "",
            referral_gallons_used=min(request.gallons, user.referral_gallons),
            subscription_id=subscription_id,
            tire_pressure_check=request.tire_pressure_check,
        )

        async with self.repository.transaction() as repo:
            await self.check_capacity(repo, zone, request.time, bypass)
            await repo.insert_order(order)
            if order.referral_gallons_used:
                await repo.update_user(
                    user_id, {"referral_gallons": user.referral_gallons - order.referral_gallons_used}
                )
            if order.coupon_code:
                coupon = await repo.get_coupon(order.coupon_code)
                if coupon is not None:
                    await repo.update_coupon_used_by(coupon.code, coupon.used_by + [user_id])

        logger.info(f"Order {order.id} admitted in zone {zone.id} for user {user_id}")
        self.tasks.spawn(publish_order_created(self.event_bus, order), f"order-created-{order.id}")
        return order

    # ====================
    # Pricing
    # ====================

    async def quote(
        self,
        user: User,
        zone: Zone,
        request: OrderRequest,
        subscription_id: int,
        now: int,
    ):
        """(gas_price, service_fee, total) in cents at the current zone prices"""
        gas_price = zone.gas_prices.get(request.gas_type)
        if gas_price is None:
            raise PriceMismatchError(f"Octane {request.gas_type} is not sold in this area")

        service_fee = await self.delivery_fee(user, zone, request.time, subscription_id, now)
        tire_price = self.config.tire_pressure_check_price if request.tire_pressure_check else 0
        coupon_value = await self._coupon_value(request.coupon_code, user.id, now)

        total = calculate_total(
            gas_price,
            request.gallons,
            user.referral_gallons,
            service_fee,
            tire_price,
            coupon_value,
        )
        return gas_price, service_fee, total

    async def delivery_fee(
        self,
        user: User,
        zone: Zone,
        time_limit: int,
        subscription_id: int,
        now: int,
    ) -> int:
        fee = self.zones.delivery_fee(zone, time_limit)
        if fee is None:
            raise CapacityExceededError(NO_CAPACITY_MESSAGE)

        if not subscription_id:
            return fee
        subscription = await self.repository.get_subscription(subscription_id)
        if subscription is None:
            return fee

        num_free, discount = subscription.allowance(time_limit)
        used = await self._subscription_uses(user, time_limit)
        if num_free - used > 0:
            return 0
        return max(0, fee + discount)

    def active_subscription_id(self, user: User, now: int) -> int:
        if not user.subscription_id:
            return 0
        if user.subscription_expiration_time is not None and user.subscription_expiration_time <= now:
            return 0
        return user.subscription_id

    async def _subscription_uses(self, user: User, time_limit: int) -> int:
        """Non-cancelled orders of this duration placed on the subscription this period"""
        period_start = user.subscription_period_start_time or 0
        orders = await self.repository.get_user_orders(user.id)
        return sum(
            1
            for o in orders
            if o.subscription_id == user.subscription_id
            and o.status != OrderStatus.CANCELLED
            and o.target_time_start >= period_start
            and o.time_limit_minutes == time_limit
        )

    async def _coupon_value(self, code: str, user_id: str, now: int) -> int:
        """Coupon discount (negative cents), or 0 when unknown, expired or already used"""
        if not code:
            return 0
        coupon = await self.repository.get_coupon(code)
        if coupon is None:
            return 0
        if coupon.expiration_time is not None and coupon.expiration_time <= now:
            return 0
        if user_id in coupon.used_by:
            return 0
        return coupon.value

    # ====================
    # Hours and capacity
    # ====================

    def check_hours(self, zone: Zone, start_time: int, bypass: bool = False) -> None:
        if zone.in_holiday(start_time):
            raise ServiceClosedError(zone.holiday_message)
        if not bypass and not self.zones.within_hours(zone, start_time):
            raise ServiceClosedError(zone.closed_message or self.zones.hours_text(zone))

    async def check_capacity(
        self,
        repo: DispatchRepository,
        zone: Zone,
        time_limit: int,
        bypass: bool = False,
    ) -> None:
        """
        Raise CapacityExceededError when the one-hour slots are taken.

        ``repo`` is the open admission transaction. The constraining zone row
        is locked before counting, so concurrent admissions into that zone are
        counted one after another.
        """
        if bypass or time_limit >= 180:
            return
        if time_limit not in zone.time_choices:
            raise CapacityExceededError(NO_CAPACITY_MESSAGE)
        if zone.one_hour_constraining_zone_id is None:
            return

        await repo.lock_zone(zone.one_hour_constraining_zone_id)

        constraining = self.zones.get_zone(zone.one_hour_constraining_zone_id)
        active = await self.count_active_one_hour_orders(
            repo, zone.one_hour_constraining_zone_id, constraining
        )
        available = await self.count_available_couriers(repo, zone.one_hour_constraining_zone_id)
        if active >= available:
            logger.info(
                f"One-hour capacity reached in zone {zone.one_hour_constraining_zone_id}: "
                f"{active} orders, {available} couriers"
            )
            raise CapacityExceededError(NO_CAPACITY_MESSAGE)

    async def count_active_one_hour_orders(
        self,
        repo: DispatchRepository,
        zone_id: int,
        zone: Optional[Zone] = None,
    ) -> int:
        zips = set(zone.zip_codes) if zone else set()
        orders = await repo.get_pre_servicing_orders()
        return sum(
            1
            for o in orders
            if (o.zone_id == zone_id or o.address_zip in zips)
            and o.window_seconds == ONE_HOUR_SECONDS
        )

    async def count_available_couriers(self, repo: DispatchRepository, zone_id: int) -> int:
        couriers = await repo.get_on_duty_couriers()
        return sum(1 for c in couriers if c.active and c.connected and zone_id in c.zones)

    # ====================
    # Availability
    # ====================

    async def availability(
        self,
        zip_code: str,
        user_id: Optional[str] = None,
        now: Optional[int] = None,
    ) -> AvailabilityResponse:
        """Per-octane prices and the delivery windows orderable at ``now``"""
        now = self.clock() if now is None else now
        user = await self.repository.get_user(user_id) if user_id else None
        referral_gallons = user.referral_gallons if user else 0.0

        zone = self.zones.get_active_zone_by_zip(zip_code)
        if zone is None:
            return AvailabilityResponse(
                availabilities=[
                    AvailabilityOption(octane=octane, price_per_gallon=0, gallon_choices=self.config.gallon_choices)
                    for octane in self.config.octanes
                ],
                unavailable_reason=OUT_OF_AREA_MESSAGE,
                referral_gallons=referral_gallons,
            )

        times = self._delivery_times(zone) if self.zones.is_open(zone, now) else []
        reason = zone.holiday_message if zone.in_holiday(now) else (
            zone.closed_message or self.zones.hours_text(zone)
        )
        return AvailabilityResponse(
            availabilities=[
                AvailabilityOption(
                    octane=octane,
                    price_per_gallon=zone.gas_prices.get(octane, 0),
                    gallon_choices=self.config.gallon_choices,
                    times=times,
                )
                for octane in self.config.octanes
            ],
            unavailable_reason=reason,
            referral_gallons=referral_gallons,
        )

    def _delivery_times(self, zone: Zone) -> List[DeliveryTimeOption]:
        offered = sorted((m for m in zone.time_choices if m in zone.delivery_fees), reverse=True)
        return [
            DeliveryTimeOption(
                minutes=minutes,
                service_fee=zone.delivery_fees[minutes],
                text=delivery_time_text(minutes, zone.delivery_fees[minutes]),
                order=index,
            )
            for index, minutes in enumerate(offered)
        ]
