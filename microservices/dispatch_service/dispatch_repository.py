"""
Dispatch Repository - Data access layer for the dispatch service

Typed persistence boundary over the CRUD store. This is the only place that
knows the row layout: the event log text form ("status ts|status ts|") and
the courier zone list ("1,2,3") are parsed and formatted here.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from .models import (
    Coupon,
    Courier,
    EventLogEntry,
    Order,
    OrderStatus,
    OPEN_STATUSES,
    BUSY_STATUSES,
    PRE_SERVICING_STATUSES,
    Subscription,
    User,
    Zone,
)
from .protocols import DispatchStoreProtocol

logger = logging.getLogger(__name__)


ORDERS_TABLE = "orders"
COURIERS_TABLE = "couriers"
ZONES_TABLE = "zones"
USERS_TABLE = "users"
SUBSCRIPTIONS_TABLE = "subscriptions"
COUPONS_TABLE = "coupons"
STATE_LOG_TABLE = "state_log"


# ====================
# Row codecs
# ====================

def format_event_log(entries: Iterable[EventLogEntry]) -> str:
    """[EventLogEntry(unassigned, 100)] -> 'unassigned 100|'"""
    return "".join(f"{e.status.value} {e.timestamp}|" for e in entries)


def parse_event_log(text: Optional[str]) -> List[EventLogEntry]:
    """'unassigned 100|assigned 160|' -> [EventLogEntry, EventLogEntry]"""
    entries = []
    for chunk in (text or "").split("|"):
        chunk = chunk.strip()
        if not chunk:
            continue
        status, _, ts = chunk.partition(" ")
        entries.append(EventLogEntry(status=OrderStatus(status), timestamp=int(ts)))
    return entries


def format_zones(zones: Iterable[int]) -> str:
    return ",".join(str(z) for z in zones)


def parse_zones(text: Optional[str]) -> List[int]:
    return [int(z) for z in (text or "").split(",") if z.strip()]


def _json_field(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def _statuses(statuses: Iterable[OrderStatus]) -> List[str]:
    return [s.value for s in statuses]


class DispatchRepository:
    """
    Dispatch repository over a DispatchStoreProtocol.

    ``transaction()`` yields a second repository bound to the open
    transaction, so the same typed methods work inside and outside it.
    """

    def __init__(self, store: DispatchStoreProtocol):
        self.store = store

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["DispatchRepository"]:
        async with self.store.transaction() as tx:
            yield DispatchRepository(tx)

    # ====================
    # Orders
    # ====================

    async def get_order(self, order_id: str) -> Optional[Order]:
        rows = await self.store.select(ORDERS_TABLE, predicate={"id": order_id})
        return self._row_to_order(rows[0]) if rows else None

    async def get_orders_by_status(
        self,
        statuses: Iterable[OrderStatus],
        order: str = "target_time_start, id",
    ) -> List[Order]:
        rows = await self.store.select(
            ORDERS_TABLE, predicate={"status": _statuses(statuses)}, order=order
        )
        return [self._row_to_order(r) for r in rows]

    async def get_current_orders(self) -> List[Order]:
        """Orders that are unassigned or in process"""
        return await self.get_orders_by_status(OPEN_STATUSES)

    async def get_pre_servicing_orders(self, zone_id: Optional[int] = None) -> List[Order]:
        predicate: Dict[str, Any] = {"status": _statuses(PRE_SERVICING_STATUSES)}
        if zone_id is not None:
            predicate["zone_id"] = zone_id
        rows = await self.store.select(ORDERS_TABLE, predicate=predicate)
        return [self._row_to_order(r) for r in rows]

    async def get_courier_orders(
        self,
        courier_id: str,
        statuses: Optional[Iterable[OrderStatus]] = None,
    ) -> List[Order]:
        predicate: Dict[str, Any] = {"courier_id": courier_id}
        if statuses is not None:
            predicate["status"] = _statuses(statuses)
        rows = await self.store.select(
            ORDERS_TABLE, predicate=predicate, order="target_time_start DESC"
        )
        return [self._row_to_order(r) for r in rows]

    async def get_user_orders(self, user_id: str) -> List[Order]:
        rows = await self.store.select(
            ORDERS_TABLE, predicate={"user_id": user_id}, order="target_time_start DESC"
        )
        return [self._row_to_order(r) for r in rows]

    async def insert_order(self, order: Order) -> None:
        await self.store.insert(ORDERS_TABLE, self._order_to_row(order))
        logger.info(f"Order inserted: {order.id} ({order.status.value})")

    async def update_order_status(
        self,
        order_id: str,
        expected: OrderStatus,
        new_status: OrderStatus,
        event_log: List[EventLogEntry],
        changes: Optional[Dict[str, Any]] = None,
        expected_courier_id: Any = ...,
    ) -> bool:
        """
        Conditional status write keyed on the expected current status.

        Returns False when no row matched (the order moved on concurrently).
        Pass ``expected_courier_id=None`` to also require an unassigned courier.
        """
        record = {"status": new_status.value, "event_log": format_event_log(event_log)}
        record.update(changes or {})
        predicate: Dict[str, Any] = {"id": order_id, "status": expected.value}
        if expected_courier_id is not ...:
            predicate["courier_id"] = expected_courier_id
        count = await self.store.update(ORDERS_TABLE, record, predicate)
        return count > 0

    async def update_order(self, order_id: str, changes: Dict[str, Any]) -> bool:
        count = await self.store.update(ORDERS_TABLE, changes, {"id": order_id})
        return count > 0

    # ====================
    # Couriers
    # ====================

    async def get_courier(self, courier_id: str) -> Optional[Courier]:
        rows = await self.store.select(COURIERS_TABLE, predicate={"id": courier_id})
        return self._row_to_courier(rows[0]) if rows else None

    async def get_on_duty_couriers(self) -> List[Courier]:
        rows = await self.store.select(
            COURIERS_TABLE, predicate={"active": True, "on_duty": True}, order="id"
        )
        return [self._row_to_courier(r) for r in rows]

    async def get_connected_couriers(self) -> List[Courier]:
        rows = await self.store.select(
            COURIERS_TABLE, predicate={"connected": True}, order="id"
        )
        return [self._row_to_courier(r) for r in rows]

    async def update_courier(
        self,
        courier_id: str,
        changes: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Update a courier; ``expected`` adds conditions to the WHERE clause"""
        if "zones" in changes and not isinstance(changes["zones"], str):
            changes = dict(changes, zones=format_zones(changes["zones"]))
        predicate = {"id": courier_id}
        predicate.update(expected or {})
        count = await self.store.update(COURIERS_TABLE, changes, predicate)
        return count > 0

    async def lock_courier(self, courier_id: str) -> bool:
        """Take the courier row lock for the rest of the transaction"""
        count = await self.store.update(COURIERS_TABLE, {"id": courier_id}, {"id": courier_id})
        return count > 0

    async def courier_has_open_orders(self, courier_id: str) -> bool:
        rows = await self.store.select(
            ORDERS_TABLE,
            columns=["id"],
            predicate={"courier_id": courier_id, "status": _statuses(BUSY_STATUSES)},
        )
        return len(rows) > 0

    # ====================
    # Zones
    # ====================

    async def get_zones(self) -> List[Zone]:
        rows = await self.store.select(ZONES_TABLE, order="id")
        return [self._row_to_zone(r) for r in rows]

    async def lock_zone(self, zone_id: int) -> bool:
        """Take the zone row lock for the rest of the transaction"""
        count = await self.store.update(ZONES_TABLE, {"id": zone_id}, {"id": zone_id})
        return count > 0

    # ====================
    # Users, subscriptions and coupons
    # ====================

    async def get_user(self, user_id: str) -> Optional[User]:
        rows = await self.store.select(USERS_TABLE, predicate={"id": user_id})
        if not rows:
            return None
        row = rows[0]
        return User(
            id=row["id"],
            is_staff=bool(row.get("is_staff")),
            referral_gallons=float(row.get("referral_gallons") or 0),
            subscription_id=int(row.get("subscription_id") or 0),
            subscription_period_start_time=row.get("subscription_period_start_time"),
            subscription_expiration_time=row.get("subscription_expiration_time"),
        )

    async def update_user(self, user_id: str, changes: Dict[str, Any]) -> bool:
        count = await self.store.update(USERS_TABLE, changes, {"id": user_id})
        return count > 0

    async def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        rows = await self.store.select(SUBSCRIPTIONS_TABLE, predicate={"id": subscription_id})
        return Subscription(**rows[0]) if rows else None

    async def get_coupon(self, code: str) -> Optional[Coupon]:
        rows = await self.store.select(COUPONS_TABLE, predicate={"code": code})
        if not rows:
            return None
        row = rows[0]
        return Coupon(
            code=row["code"],
            value=int(row.get("value") or 0),
            expiration_time=row.get("expiration_time"),
            used_by=[u for u in (row.get("used_by") or "").split(",") if u],
        )

    async def update_coupon_used_by(self, code: str, used_by: List[str]) -> bool:
        count = await self.store.update(
            COUPONS_TABLE, {"used_by": ",".join(used_by)}, {"code": code}
        )
        return count > 0

    # ====================
    # Audit
    # ====================

    async def append_state_log(self, data: Dict[str, Any], timestamp: int) -> None:
        await self.store.insert(
            STATE_LOG_TABLE, {"data": json.dumps(data), "timestamp_created": timestamp}
        )

    # ====================
    # Row mapping
    # ====================

    def _row_to_order(self, row: Dict[str, Any]) -> Order:
        """Convert a store row to the Order model"""
        return Order(
            id=row["id"],
            user_id=row["user_id"],
            status=OrderStatus(row["status"]),
            event_log=parse_event_log(row.get("event_log")),
            timestamp_created=int(row.get("timestamp_created") or row["target_time_start"]),
            target_time_start=int(row["target_time_start"]),
            target_time_end=int(row["target_time_end"]),
            courier_id=row.get("courier_id") or None,
            zone_id=row.get("zone_id"),
            address_street=row.get("address_street") or "",
            address_zip=row.get("address_zip") or "",
            lat=float(row.get("lat") or 0),
            lng=float(row.get("lng") or 0),
            gas_type=row.get("gas_type") or "87",
            gallons=float(row.get("gallons") or 0),
            gas_price=int(row.get("gas_price") or 0),
            service_fee=int(row.get("service_fee") or 0),
            total_price=int(row.get("total_price") or 0),
            vehicle_id=row.get("vehicle_id"),
            license_plate=row.get("license_plate") or "",
            special_instructions=row.get("special_instructions") or "",
            coupon_code=row.get("coupon_code") or "",
            referral_gallons_used=float(row.get("referral_gallons_used") or 0),
            subscription_id=int(row.get("subscription_id") or 0),
            tire_pressure_check=bool(row.get("tire_pressure_check")),
            number_rating=row.get("number_rating"),
            text_rating=row.get("text_rating"),
        )

    def _order_to_row(self, order: Order) -> Dict[str, Any]:
        row = order.model_dump(exclude={"event_log"})
        row["status"] = order.status.value
        row["event_log"] = format_event_log(order.event_log)
        return row

    def _row_to_courier(self, row: Dict[str, Any]) -> Courier:
        return Courier(
            id=row["id"],
            active=bool(row.get("active", True)),
            on_duty=bool(row.get("on_duty")),
            connected=bool(row.get("connected")),
            busy=bool(row.get("busy")),
            last_ping=row.get("last_ping"),
            lat=float(row.get("lat") or 0),
            lng=float(row.get("lng") or 0),
            zones=parse_zones(row.get("zones")),
            gallons_87=float(row.get("gallons_87") or 0),
            gallons_91=float(row.get("gallons_91") or 0),
        )

    def _row_to_zone(self, row: Dict[str, Any]) -> Zone:
        fees = _json_field(row.get("delivery_fees"), {})
        return Zone(
            id=int(row["id"]),
            name=row.get("name") or "",
            active=bool(row.get("active", True)),
            zip_codes=_json_field(row.get("zip_codes"), []),
            open_minute=int(row.get("open_minute") or 0),
            close_minute=int(row["close_minute"]) if row.get("close_minute") is not None else 1440,
            holiday_start=row.get("holiday_start"),
            holiday_end=row.get("holiday_end"),
            holiday_message=row.get("holiday_message") or "Sorry, we're closed for the holiday.",
            gas_prices=_json_field(row.get("gas_prices"), {}),
            delivery_fees={int(k): int(v) for k, v in fees.items()},
            time_choices=_json_field(row.get("time_choices"), [60, 180]),
            one_hour_constraining_zone_id=row.get("one_hour_constraining_zone_id"),
            closed_message=row.get("closed_message") or "",
        )
