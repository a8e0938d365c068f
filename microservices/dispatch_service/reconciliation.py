"""
Dispatch Reconciliation Loop

Fixed-interval control loop. Each tick, in order:

1. expire stale couriers
2. remind couriers who have not accepted an assigned order
3. snapshot (orders, couriers) and compare to the previous tick
4. run the assignment pass only when the snapshot changed

Each step is isolated: a failure is logged and the remaining steps still
run. Ticks never overlap; one that comes due while another runs is skipped.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from core.background_tasks import BackgroundTasks
from core.config import DispatchConfig
from .assignment import AssignmentSelector
from .courier_tracker import CourierTracker
from .dispatch_repository import DispatchRepository
from .models import (
    Courier,
    DispatchServiceStatus,
    Order,
    OrderStatus,
    StateSnapshot,
    TickReport,
    unix_now,
)
from .protocols import EventBusProtocol, NotifierProtocol, OptimizerUnavailableError
from .events.publishers import publish_courier_reminded, publish_optimizer_unavailable

logger = logging.getLogger(__name__)

REMINDER_TEXT = "Reminder: you have a new order waiting. Please accept it in the Courier App."


def is_tardy(assigned_at: int, now: int, reminder_seconds: int, interval_seconds: int) -> bool:
    """True during the single tick-sized window after the reminder time"""
    elapsed = now - assigned_at
    return reminder_seconds <= elapsed <= reminder_seconds + interval_seconds - 1


def state_log_record(orders: List[Order], couriers: List[Courier]) -> Dict:
    return {
        "orders": [
            {"id": o.id, "status": o.status.value, "courier_id": o.courier_id}
            for o in orders
        ],
        "couriers": [
            {
                "id": c.id,
                "active": c.active,
                "on_duty": c.on_duty,
                "connected": c.connected,
                "busy": c.busy,
                "zones": c.zones,
                "gallons_87": c.gallons_87,
                "gallons_91": c.gallons_91,
                "lat": c.lat,
                "lng": c.lng,
                "last_ping": c.last_ping,
            }
            for c in couriers
        ],
    }


class DispatchReconciler:
    """
    Owns the loop task, the tick lock and the previous snapshot.

    The previous snapshot starts as None, so the first tick always runs the
    assignment pass.
    """

    def __init__(
        self,
        repository: DispatchRepository,
        tracker: CourierTracker,
        selector: AssignmentSelector,
        config: Optional[DispatchConfig] = None,
        event_bus: Optional[EventBusProtocol] = None,
        notifier: Optional[NotifierProtocol] = None,
        tasks: Optional[BackgroundTasks] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.repository = repository
        self.tracker = tracker
        self.selector = selector
        self.config = config or DispatchConfig()
        self.event_bus = event_bus
        self.notifier = notifier
        self.tasks = tasks or BackgroundTasks("reconciler")
        self.clock = clock or unix_now

        self._lock = asyncio.Lock()
        self._previous: Optional[StateSnapshot] = None
        self._loop_task: Optional[asyncio.Task] = None

        self.ticks_run = 0
        self.ticks_skipped = 0
        self.assignment_passes = 0
        self.last_tick_at: Optional[int] = None
        self.consecutive_optimizer_failures = 0

    @property
    def previous_snapshot(self) -> Optional[StateSnapshot]:
        return self._previous

    # ====================
    # Loop lifecycle
    # ====================

    def start(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._loop(), name="dispatch-reconciler")
        logger.info(f"Dispatch loop started (every {self.config.process_interval_seconds}s)")

    async def stop(self) -> None:
        if self._loop_task is None:
            return
        self._loop_task.cancel()
        try:
            await self._loop_task
        except asyncio.CancelledError:
            pass
        self._loop_task = None
        logger.info("Dispatch loop stopped")

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def _loop(self) -> None:
        while True:
            self.tasks.spawn(self.tick(), "dispatch-tick")
            await asyncio.sleep(self.config.process_interval_seconds)

    # ====================
    # Tick
    # ====================

    async def tick(self) -> Optional[TickReport]:
        """Run one tick, or return None when a tick is already in progress"""
        if self._lock.locked():
            self.ticks_skipped += 1
            logger.warning("Dispatch tick still running, skipping this one")
            return None

        async with self._lock:
            return await self._run_tick()

    async def _run_tick(self) -> TickReport:
        now = self.clock()
        report = TickReport(started_at=now)

        try:
            expired = await self.tracker.expire_stale()
            report.expired_couriers = [c.id for c in expired]
        except Exception as e:
            logger.error(f"Courier expiry failed: {e}")
            report.errors.append(f"expire_stale: {e}")

        try:
            report.reminded_couriers = await self.remind_couriers(now)
        except Exception as e:
            logger.error(f"Courier reminders failed: {e}")
            report.errors.append(f"remind_couriers: {e}")

        try:
            orders = await self.repository.get_current_orders()
            couriers = await self.repository.get_on_duty_couriers()
        except Exception as e:
            logger.error(f"Could not load dispatch state: {e}")
            report.errors.append(f"load_state: {e}")
        else:
            snapshot = StateSnapshot.build(orders, couriers)
            report.state_changed = snapshot != self._previous
            completed = True
            if report.state_changed:
                completed = await self._assignment_pass(orders, couriers, report)
            # A failed pass keeps no baseline so the next tick retries it
            self._previous = snapshot if completed else None

            self.tasks.spawn(
                self.repository.append_state_log(state_log_record(orders, couriers), now),
                "dispatch-state-log",
            )

        self.ticks_run += 1
        self.last_tick_at = now
        return report

    async def _assignment_pass(self, orders: List[Order], couriers: List[Courier], report: TickReport) -> bool:
        self.assignment_passes += 1
        try:
            report.assignments = await self.selector.run(orders, couriers)
            self.consecutive_optimizer_failures = 0
            return True
        except OptimizerUnavailableError as e:
            self.consecutive_optimizer_failures += 1
            logger.error(
                f"Optimizer unavailable ({self.consecutive_optimizer_failures} in a row): {e.message}"
            )
            report.errors.append(f"optimizer: {e.message}")
            if self.consecutive_optimizer_failures == self.config.optimizer_alert_threshold:
                self.tasks.spawn(
                    publish_optimizer_unavailable(
                        self.event_bus, self.consecutive_optimizer_failures, e.message
                    ),
                    "optimizer-unavailable",
                )
            return False
        except Exception as e:
            logger.error(f"Assignment pass failed: {e}")
            report.errors.append(f"assignment: {e}")
            return False

    async def remind_couriers(self, now: int) -> List[str]:
        """Notify couriers whose assigned order is waiting past the reminder time"""
        reminded = []
        for order in await self.repository.get_orders_by_status([OrderStatus.ASSIGNED]):
            assigned_at = order.event_time(OrderStatus.ASSIGNED)
            if assigned_at is None or not order.courier_id:
                continue
            if not is_tardy(
                assigned_at,
                now,
                self.config.courier_reminder_seconds,
                self.config.process_interval_seconds,
            ):
                continue

            reminded.append(order.courier_id)
            if self.notifier:
                self.tasks.spawn(
                    self.notifier.notify(order.courier_id, REMINDER_TEXT),
                    f"reminder-{order.id}",
                )
            self.tasks.spawn(
                publish_courier_reminded(self.event_bus, order.courier_id, order.id, now - assigned_at),
                f"courier-reminded-{order.id}",
            )
        return reminded

    # ====================
    # Status
    # ====================

    def status(self) -> DispatchServiceStatus:
        return DispatchServiceStatus(
            loop_running=self.running,
            ticks_run=self.ticks_run,
            ticks_skipped=self.ticks_skipped,
            last_tick_at=self.last_tick_at,
            consecutive_optimizer_failures=self.consecutive_optimizer_failures,
            timestamp=datetime.utcnow(),
        )
