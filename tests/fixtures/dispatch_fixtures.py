"""
Dispatch Service Fixtures

Row factories for the in-memory store, request builders and a settable clock.
All times are unix seconds; zones are evaluated in UTC.
"""
import json
import uuid
from typing import Any, Dict, List, Optional

from microservices.dispatch_service.dispatch_repository import parse_event_log, parse_zones
from microservices.dispatch_service.models import Courier, Order, OrderRequest, OrderStatus

# 2024-06-04 00:00:00 UTC
MIDNIGHT = 1717459200
TEN_AM = MIDNIGHT + 10 * 3600
SIX_AM = MIDNIGHT + 6 * 3600

ZONE_ID = 1
ZIP_CODE = "90210"
GAS_87 = 300
GAS_91 = 320
FEE_ONE_HOUR = 599
FEE_THREE_HOUR = 399
FEE_FIVE_HOUR = 299

LIFECYCLE = [
    OrderStatus.UNASSIGNED,
    OrderStatus.ASSIGNED,
    OrderStatus.ACCEPTED,
    OrderStatus.ENROUTE,
    OrderStatus.SERVICING,
    OrderStatus.COMPLETE,
]


class FakeClock:
    """Callable clock returning a settable unix time"""

    def __init__(self, now: int = TEN_AM):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


def make_courier_id() -> str:
    return f"cour_test_{uuid.uuid4().hex[:8]}"


def make_zone_row(
    zone_id: int = ZONE_ID,
    zip_codes: Optional[List[str]] = None,
    open_minute: int = 8 * 60,
    close_minute: int = 20 * 60,
    time_choices: Optional[List[int]] = None,
    one_hour_constraining_zone_id: Optional[int] = ZONE_ID,
    holiday_start: Optional[int] = None,
    holiday_end: Optional[int] = None,
    active: bool = True,
) -> Dict[str, Any]:
    return {
        "id": zone_id,
        "name": f"Zone {zone_id}",
        "active": active,
        "zip_codes": json.dumps(zip_codes or [ZIP_CODE]),
        "open_minute": open_minute,
        "close_minute": close_minute,
        "holiday_start": holiday_start,
        "holiday_end": holiday_end,
        "holiday_message": "Sorry, we're closed for the holiday.",
        "gas_prices": json.dumps({"87": GAS_87, "91": GAS_91}),
        "delivery_fees": json.dumps({"60": FEE_ONE_HOUR, "180": FEE_THREE_HOUR, "300": FEE_FIVE_HOUR}),
        "time_choices": json.dumps(time_choices or [60, 180, 300]),
        "one_hour_constraining_zone_id": one_hour_constraining_zone_id,
        "closed_message": "",
    }


def make_courier_row(
    courier_id: Optional[str] = None,
    zones: str = str(ZONE_ID),
    on_duty: bool = True,
    connected: bool = True,
    busy: bool = False,
    active: bool = True,
    last_ping: Optional[int] = TEN_AM,
) -> Dict[str, Any]:
    return {
        "id": courier_id or make_courier_id(),
        "active": active,
        "on_duty": on_duty,
        "connected": connected,
        "busy": busy,
        "last_ping": last_ping,
        "lat": 34.07,
        "lng": -118.40,
        "zones": zones,
        "gallons_87": 40.0,
        "gallons_91": 20.0,
    }


def make_user_row(
    user_id: str,
    is_staff: bool = False,
    referral_gallons: float = 0.0,
    subscription_id: int = 0,
    subscription_period_start_time: Optional[int] = None,
    subscription_expiration_time: Optional[int] = None,
) -> Dict[str, Any]:
    return {
        "id": user_id,
        "is_staff": is_staff,
        "referral_gallons": referral_gallons,
        "subscription_id": subscription_id,
        "subscription_period_start_time": subscription_period_start_time,
        "subscription_expiration_time": subscription_expiration_time,
    }


def make_subscription_row(
    subscription_id: int,
    num_free_one_hour: int = 0,
    num_free_three_hour: int = 0,
    discount_one_hour: int = 0,
    discount_three_hour: int = 0,
) -> Dict[str, Any]:
    return {
        "id": subscription_id,
        "name": f"Plan {subscription_id}",
        "num_free_one_hour": num_free_one_hour,
        "num_free_three_hour": num_free_three_hour,
        "num_free_five_hour": 0,
        "discount_one_hour": discount_one_hour,
        "discount_three_hour": discount_three_hour,
        "discount_five_hour": 0,
    }


def make_coupon_row(code: str, value: int = -500, expiration_time: Optional[int] = None, used_by: str = "") -> Dict[str, Any]:
    return {"code": code, "value": value, "expiration_time": expiration_time, "used_by": used_by}


def make_order_row(
    order_id: Optional[str] = None,
    user_id: str = "usr_customer",
    status: OrderStatus = OrderStatus.UNASSIGNED,
    courier_id: Optional[str] = None,
    start: int = TEN_AM,
    minutes: int = 180,
    zone_id: int = ZONE_ID,
    referral_gallons_used: float = 0.0,
    coupon_code: str = "",
) -> Dict[str, Any]:
    """Order row whose event log walks the lifecycle up to ``status``"""
    if status == OrderStatus.CANCELLED:
        path = [OrderStatus.UNASSIGNED, OrderStatus.CANCELLED]
    else:
        path = LIFECYCLE[: LIFECYCLE.index(status) + 1]
    return {
        "id": order_id or f"order_{uuid.uuid4().hex[:12]}",
        "user_id": user_id,
        "status": status.value,
        "event_log": "".join(f"{s.value} {start}|" for s in path),
        "timestamp_created": start,
        "target_time_start": start,
        "target_time_end": start + minutes * 60,
        "courier_id": courier_id,
        "zone_id": zone_id,
        "address_street": "1 Main St",
        "address_zip": ZIP_CODE,
        "lat": 34.08,
        "lng": -118.41,
        "gas_type": "87",
        "gallons": 10.0,
        "gas_price": GAS_87,
        "service_fee": FEE_THREE_HOUR,
        "total_price": GAS_87 * 10 + FEE_THREE_HOUR,
        "vehicle_id": "veh_1",
        "license_plate": "7ABC123",
        "special_instructions": "",
        "coupon_code": coupon_code,
        "referral_gallons_used": referral_gallons_used,
        "subscription_id": 0,
        "tire_pressure_check": False,
        "number_rating": None,
        "text_rating": None,
    }


def make_order_request(
    gallons: float = 10.0,
    time: int = 180,
    gas_type: str = "87",
    total_price: Optional[int] = None,
    coupon_code: str = "",
    tire_pressure_check: bool = False,
    address_zip: str = ZIP_CODE,
) -> OrderRequest:
    """Request priced at the fixture zone's list prices unless total_price is given"""
    if total_price is None:
        fee = {60: FEE_ONE_HOUR, 180: FEE_THREE_HOUR, 300: FEE_FIVE_HOUR}[time]
        price = GAS_87 if gas_type == "87" else GAS_91
        total_price = int(price * gallons) + fee
    return OrderRequest(
        address_street="1 Main St",
        address_zip=address_zip,
        lat=34.08,
        lng=-118.41,
        gas_type=gas_type,
        gallons=gallons,
        time=time,
        total_price=total_price,
        vehicle_id="veh_1",
        license_plate="7ABC123",
        coupon_code=coupon_code,
        tire_pressure_check=tire_pressure_check,
    )


def make_order(order_id: Optional[str] = None, **kwargs) -> Order:
    """Order model built from make_order_row()"""
    row = make_order_row(order_id, **kwargs)
    row["event_log"] = parse_event_log(row["event_log"])
    return Order(**row)


def make_courier(courier_id: Optional[str] = None, **kwargs) -> Courier:
    """Courier model built from make_courier_row()"""
    row = make_courier_row(courier_id, **kwargs)
    row["zones"] = parse_zones(row["zones"])
    return Courier(**row)
