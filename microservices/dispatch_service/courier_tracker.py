"""
Courier Liveness Tracker

connected is set true only by the heartbeat and false only by staleness
expiry; busy follows the courier's open-order set.
"""

import logging
from typing import Callable, List, Optional

from core.background_tasks import BackgroundTasks
from .dispatch_repository import DispatchRepository
from .models import Courier, HeartbeatResult, Inventory, Position, unix_now
from .order_state_machine import recompute_courier_busy
from .protocols import EventBusProtocol, NotFoundError, NotifierProtocol
from .events.publishers import publish_courier_disconnected

logger = logging.getLogger(__name__)

DISCONNECTED_TEXT = "You have just disconnected from the Courier App."


class CourierTracker:
    """Heartbeats in, staleness expiry out"""

    def __init__(
        self,
        repository: DispatchRepository,
        stale_seconds: int = 90,
        event_bus: Optional[EventBusProtocol] = None,
        notifier: Optional[NotifierProtocol] = None,
        tasks: Optional[BackgroundTasks] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.repository = repository
        self.stale_seconds = stale_seconds
        self.event_bus = event_bus
        self.notifier = notifier
        self.tasks = tasks or BackgroundTasks("courier_tracker")
        self.clock = clock or unix_now

    async def heartbeat(
        self,
        courier_id: str,
        position: Position,
        inventory: Inventory,
        on_duty: Optional[bool] = None,
    ) -> HeartbeatResult:
        """Record position/inventory, mark connected, optionally toggle on-duty"""
        changes = {
            "lat": position.lat,
            "lng": position.lng,
            "gallons_87": inventory.gallons_87,
            "gallons_91": inventory.gallons_91,
            "connected": True,
            "last_ping": self.clock(),
        }
        if on_duty is not None:
            changes["on_duty"] = on_duty

        if not await self.repository.update_courier(courier_id, changes):
            raise NotFoundError(f"Courier {courier_id} not found")

        courier = await self.repository.get_courier(courier_id)
        return HeartbeatResult(on_duty=bool(courier and courier.on_duty))

    async def expire_stale(self) -> List[Courier]:
        """
        Disconnect couriers whose last heartbeat is too old.

        Returns only couriers this call moved from connected to disconnected;
        each of them is notified in the background.
        """
        cutoff = self.clock() - self.stale_seconds
        expired = []
        for courier in await self.repository.get_connected_couriers():
            if courier.last_ping is not None and courier.last_ping >= cutoff:
                continue
            # Conditional on the stale ping: a concurrent expiry or a fresh heartbeat matches nothing
            if await self.repository.update_courier(
                courier.id,
                {"connected": False},
                expected={"connected": True, "last_ping": courier.last_ping},
            ):
                expired.append(courier)

        for courier in expired:
            logger.info(f"Courier {courier.id} disconnected (last ping {courier.last_ping})")
            if self.notifier:
                self.tasks.spawn(
                    self.notifier.notify(courier.id, DISCONNECTED_TEXT), f"disconnected-{courier.id}"
                )
            self.tasks.spawn(
                publish_courier_disconnected(self.event_bus, courier.id, courier.last_ping),
                f"courier-disconnected-{courier.id}",
            )
        return expired

    async def refresh_busy(self, courier_id: str) -> bool:
        async with self.repository.transaction() as repo:
            return await recompute_courier_busy(repo, courier_id)
