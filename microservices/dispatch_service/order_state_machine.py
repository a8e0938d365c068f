"""
Order State Machine

Authoritative order lifecycle:

    unassigned -> assigned -> accepted -> enroute -> servicing -> complete

    any status before complete -> cancelled

Every transition is one store transaction: a conditional status write keyed
on the expected current status plus its courier/promotion side effects.
Events and push notifications go out after commit as background tasks.
"""

import logging
from typing import Callable, Dict, NamedTuple, Optional

from core.background_tasks import BackgroundTasks
from .dispatch_repository import DispatchRepository
from .models import (
    Courier,
    EventLogEntry,
    Order,
    OrderStatus,
    PRE_SERVICING_STATUSES,
    TERMINAL_STATUSES,
    unix_now,
)
from .protocols import (
    AlreadyTerminalError,
    InvalidStatusError,
    NotFoundError,
    NotifierProtocol,
    EventBusProtocol,
    OutOfSyncError,
    PermissionDeniedError,
)
from .events.publishers import (
    publish_order_assigned,
    publish_order_canceled,
    publish_order_status_changed,
)

logger = logging.getLogger(__name__)


NEXT_STATUS: Dict[OrderStatus, OrderStatus] = {
    OrderStatus.UNASSIGNED: OrderStatus.ASSIGNED,
    OrderStatus.ASSIGNED: OrderStatus.ACCEPTED,
    OrderStatus.ACCEPTED: OrderStatus.ENROUTE,
    OrderStatus.ENROUTE: OrderStatus.SERVICING,
    OrderStatus.SERVICING: OrderStatus.COMPLETE,
}

# Staff may cancel from any of these
CANCELLABLE_STATUSES = tuple(NEXT_STATUS.keys())

# The ordering customer may only cancel before servicing starts
CUSTOMER_CANCELLABLE_STATUSES = PRE_SERVICING_STATUSES

NOT_FOUND_MESSAGE = "An order with that ID could not be found."
OUT_OF_SYNC_MESSAGE = "Your app seems to be out of sync. Try closing the app completely and restarting it."
TOO_LATE_TO_CANCEL_MESSAGE = "Sorry, it is too late for this order to be cancelled."

COURIER_ASSIGNED_TEXT = "You have been assigned a new order."
ORDER_CANCELLED_TEXT = "The current order has been cancelled."

# Pushed to the customer when their order enters these statuses
CUSTOMER_PUSH_TEXTS = {
    OrderStatus.ENROUTE: "A courier is enroute to your location. Please ensure that your fueling door is open.",
    OrderStatus.SERVICING: "We are currently servicing your vehicle.",
    OrderStatus.COMPLETE: "Your delivery has been completed. Thank you!",
}


class Actor(NamedTuple):
    """Who is asking: a user account, possibly staff, possibly a courier"""
    id: str
    is_staff: bool = False
    courier: Optional[Courier] = None


def check_transition(current: OrderStatus, requested: OrderStatus) -> None:
    """Raise unless ``requested`` is the single legal next status"""
    if current == OrderStatus.CANCELLED:
        raise AlreadyTerminalError()
    if requested == OrderStatus.CANCELLED:
        if current not in CANCELLABLE_STATUSES:
            raise OutOfSyncError(OUT_OF_SYNC_MESSAGE)
        return
    if NEXT_STATUS.get(current) != requested:
        raise OutOfSyncError(OUT_OF_SYNC_MESSAGE)


async def recompute_courier_busy(repo: DispatchRepository, courier_id: str) -> bool:
    """Set busy from the courier's open orders; returns the new value"""
    # Courier row lock serializes busy recomputation across its orders
    await repo.lock_courier(courier_id)
    busy = await repo.courier_has_open_orders(courier_id)
    await repo.update_courier(courier_id, {"busy": busy})
    return busy


class OrderStateMachine:
    """Transition legality, permissions and transactional side effects"""

    def __init__(
        self,
        repository: DispatchRepository,
        event_bus: Optional[EventBusProtocol] = None,
        notifier: Optional[NotifierProtocol] = None,
        tasks: Optional[BackgroundTasks] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.repository = repository
        self.event_bus = event_bus
        self.notifier = notifier
        self.tasks = tasks or BackgroundTasks("order_state_machine")
        self.clock = clock or unix_now

    # ====================
    # Transitions
    # ====================

    async def request_transition(
        self,
        order_id: str,
        requested_status: OrderStatus,
        actor_id: str,
        courier_id: Optional[str] = None,
    ) -> Order:
        """
        Move an order to ``requested_status`` on behalf of ``actor_id``.

        ``courier_id`` names the courier when staff move an order to assigned.

        Raises:
            NotFoundError, AlreadyTerminalError, OutOfSyncError, PermissionDeniedError,
            InvalidStatusError
        """
        try:
            requested = OrderStatus(requested_status)
        except ValueError:
            raise InvalidStatusError()

        async with self.repository.transaction() as repo:
            order = await repo.get_order(order_id)
            if order is None:
                raise NotFoundError(NOT_FOUND_MESSAGE)

            check_transition(order.status, requested)
            actor = await self._resolve_actor(repo, actor_id)
            assignee = await self._authorize(repo, order, requested, actor, courier_id)

            now = self.clock()
            updated = await self._apply(repo, order, requested, now, assignee)

        logger.info(
            f"Order {order_id}: {order.status.value} -> {requested.value} by {actor_id}"
        )
        self._after_commit(order, updated, now, actor_id)
        return updated

    async def assign(
        self,
        order_id: str,
        courier_id: str,
        no_reassign: bool = True,
        actor_id: Optional[str] = None,
    ) -> Order:
        """
        Pair an unassigned order with a courier.

        Records both the assigned and accepted events with one timestamp, so
        the order lands in accepted. With ``no_reassign`` the write also
        requires that no courier is set, and a lost race is OutOfSync.
        """
        async with self.repository.transaction() as repo:
            order = await repo.get_order(order_id)
            if order is None:
                raise NotFoundError(NOT_FOUND_MESSAGE)
            if order.status == OrderStatus.CANCELLED:
                raise AlreadyTerminalError()
            if order.status != OrderStatus.UNASSIGNED:
                raise OutOfSyncError(f"Order {order_id} is already {order.status.value}")

            courier = await repo.get_courier(courier_id)
            if courier is None:
                raise NotFoundError(f"Courier {courier_id} not found")

            now = self.clock()
            event_log = order.event_log + [
                EventLogEntry(status=OrderStatus.ASSIGNED, timestamp=now),
                EventLogEntry(status=OrderStatus.ACCEPTED, timestamp=now),
            ]
            guard = {"expected_courier_id": None} if no_reassign else {}
            written = await repo.update_order_status(
                order_id,
                OrderStatus.UNASSIGNED,
                OrderStatus.ACCEPTED,
                event_log,
                changes={"courier_id": courier_id},
                **guard,
            )
            if not written:
                raise OutOfSyncError(f"Order {order_id} was claimed concurrently")

            await repo.update_courier(courier_id, {"busy": True})

        updated = order.model_copy(
            update={"status": OrderStatus.ACCEPTED, "event_log": event_log, "courier_id": courier_id}
        )
        logger.info(f"Order {order_id} assigned to courier {courier_id}")

        self._spawn(
            publish_order_status_changed(self.event_bus, updated, order.status.value, now, actor_id),
            f"status-changed-{order_id}",
        )
        self._spawn(
            publish_order_assigned(self.event_bus, order_id, courier_id, now, actor_id),
            f"assigned-{order_id}",
        )
        self._push(courier_id, COURIER_ASSIGNED_TEXT)
        return updated

    # ====================
    # Internals
    # ====================

    async def _resolve_actor(self, repo: DispatchRepository, actor_id: str) -> Actor:
        user = await repo.get_user(actor_id)
        courier = await repo.get_courier(actor_id)
        return Actor(id=actor_id, is_staff=bool(user and user.is_staff), courier=courier)

    async def _authorize(
        self,
        repo: DispatchRepository,
        order: Order,
        requested: OrderStatus,
        actor: Actor,
        courier_id: Optional[str],
    ) -> Optional[str]:
        """Raise PermissionDeniedError; returns the courier to record on assigned"""
        if requested == OrderStatus.ASSIGNED:
            if actor.is_staff and courier_id:
                if await repo.get_courier(courier_id) is None:
                    raise NotFoundError(f"Courier {courier_id} not found")
                return courier_id
            courier = actor.courier
            if courier and courier.active and courier.on_duty and courier_id in (None, actor.id):
                return actor.id
            raise PermissionDeniedError()

        if requested == OrderStatus.CANCELLED:
            if actor.is_staff:
                return None
            if actor.id == order.user_id:
                if order.status not in CUSTOMER_CANCELLABLE_STATUSES:
                    raise PermissionDeniedError(TOO_LATE_TO_CANCEL_MESSAGE)
                return None
            raise PermissionDeniedError()

        if actor.is_staff or (order.courier_id and actor.id == order.courier_id):
            return None
        raise PermissionDeniedError()

    async def _apply(
        self,
        repo: DispatchRepository,
        order: Order,
        requested: OrderStatus,
        now: int,
        assignee: Optional[str],
    ) -> Order:
        event_log = order.event_log + [EventLogEntry(status=requested, timestamp=now)]
        changes = {"courier_id": assignee} if assignee else {}

        written = await repo.update_order_status(
            order.id, order.status, requested, event_log, changes=changes
        )
        if not written:
            raise OutOfSyncError(OUT_OF_SYNC_MESSAGE)

        courier_id = assignee or order.courier_id
        if courier_id:
            if requested in (OrderStatus.ASSIGNED, OrderStatus.ACCEPTED):
                await repo.update_courier(courier_id, {"busy": True})
            elif requested in TERMINAL_STATUSES:
                await recompute_courier_busy(repo, courier_id)

        update = {"status": requested, "event_log": event_log, "courier_id": courier_id}
        if requested == OrderStatus.CANCELLED:
            update.update(await self._release_promotions(repo, order))
        return order.model_copy(update=update)

    async def _release_promotions(self, repo: DispatchRepository, order: Order) -> Dict:
        """Return referral gallons and free the coupon code for this user"""
        released = {}
        if order.referral_gallons_used:
            user = await repo.get_user(order.user_id)
            if user:
                await repo.update_user(
                    order.user_id,
                    {"referral_gallons": user.referral_gallons + order.referral_gallons_used},
                )
            released["referral_gallons_used"] = 0.0

        if order.coupon_code:
            coupon = await repo.get_coupon(order.coupon_code)
            if coupon and order.user_id in coupon.used_by:
                await repo.update_coupon_used_by(
                    coupon.code, [u for u in coupon.used_by if u != order.user_id]
                )
            released["coupon_code"] = ""

        if released:
            await repo.update_order(order.id, released)
        return released

    def _after_commit(self, before: Order, after: Order, now: int, actor_id: str) -> None:
        self._spawn(
            publish_order_status_changed(self.event_bus, after, before.status.value, now, actor_id),
            f"status-changed-{after.id}",
        )

        if after.status == OrderStatus.ASSIGNED:
            self._spawn(
                publish_order_assigned(self.event_bus, after.id, after.courier_id, now, actor_id),
                f"assigned-{after.id}",
            )
            self._push(after.courier_id, COURIER_ASSIGNED_TEXT)
        elif after.status == OrderStatus.CANCELLED:
            self._spawn(
                publish_order_canceled(self.event_bus, before, before.status.value, actor_id),
                f"canceled-{after.id}",
            )
            if after.courier_id:
                self._push(after.courier_id, ORDER_CANCELLED_TEXT)
        elif after.status in CUSTOMER_PUSH_TEXTS:
            self._push(after.user_id, CUSTOMER_PUSH_TEXTS[after.status])

    def _push(self, recipient_id: Optional[str], message: str) -> None:
        if self.notifier and recipient_id:
            self._spawn(self.notifier.notify(recipient_id, message), f"push-{recipient_id}")

    def _spawn(self, coro, label: str) -> None:
        self.tasks.spawn(coro, label)
