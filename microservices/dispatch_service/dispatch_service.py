"""
Dispatch Service Business Logic

Operation boundary for order admission, lifecycle transitions, courier
heartbeats and the reconciliation loop. Domain errors raised by the
components are turned into result models here.
"""

from typing import Awaitable, Callable, Dict, List, Optional
import logging

from core.background_tasks import BackgroundTasks
from core.config import DispatchConfig
from .admission import AdmissionControl
from .assignment import AssignmentSelector
from .courier_tracker import CourierTracker
from .dispatch_repository import DispatchRepository
from .order_state_machine import OrderStateMachine, NOT_FOUND_MESSAGE
from .reconciliation import DispatchReconciler
from .zone_directory import ZoneDirectory
from .models import (
    AvailabilityResponse,
    DispatchServiceStatus,
    HeartbeatResult,
    Inventory,
    Order,
    OrderRequest,
    OrderResult,
    OrderStatus,
    Position,
    TickReport,
    Zone,
    unix_now,
)
from .protocols import (
    DispatchServiceError,
    DispatchStoreProtocol,
    EventBusProtocol,
    NotFoundError,
    NotifierProtocol,
    OptimizerProtocol,
    OutOfSyncError,
    PermissionDeniedError,
)

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "INTERNAL_ERROR"
INVALID_RATING = "INVALID_RATING"


class DispatchService:
    """
    Dispatch business logic service

    Wires the repository, zone directory, state machine, admission control,
    courier tracker, assignment selector and reconciliation loop around one
    store, optimizer, notifier and event bus.
    """

    def __init__(
        self,
        store: DispatchStoreProtocol,
        optimizer: OptimizerProtocol,
        notifier: Optional[NotifierProtocol] = None,
        event_bus: Optional[EventBusProtocol] = None,
        config: Optional[DispatchConfig] = None,
        zones: Optional[List[Zone]] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize Dispatch Service

        Args:
            store: Relational store (select/insert/update/transaction)
            optimizer: Ranks order/courier pairings
            notifier: Push notification transport (optional)
            event_bus: NATS event bus instance (optional)
            config: Dispatch settings
            zones: Preloaded zones; otherwise loaded by ``initialize()``
            clock: Returns unix seconds; injectable for tests
        """
        self.config = config or DispatchConfig()
        self.clock = clock or unix_now
        self.event_bus = event_bus
        self.notifier = notifier
        self.tasks = BackgroundTasks("dispatch_service")

        self.repository = DispatchRepository(store)
        self.zones = ZoneDirectory(zones or [], tz=self.config.service_timezone)
        self.state_machine = OrderStateMachine(
            self.repository, event_bus=event_bus, notifier=notifier, tasks=self.tasks, clock=self.clock
        )
        self.admission = AdmissionControl(
            self.repository, self.zones, config=self.config, event_bus=event_bus, tasks=self.tasks, clock=self.clock
        )
        self.tracker = CourierTracker(
            self.repository,
            stale_seconds=self.config.courier_stale_seconds,
            event_bus=event_bus,
            notifier=notifier,
            tasks=self.tasks,
            clock=self.clock,
        )
        self.selector = AssignmentSelector(optimizer, self.state_machine)
        self.reconciler = DispatchReconciler(
            self.repository,
            self.tracker,
            self.selector,
            config=self.config,
            event_bus=event_bus,
            notifier=notifier,
            tasks=self.tasks,
            clock=self.clock,
        )

        logger.info("DispatchService initialized")

    async def initialize(self) -> None:
        """Load zones from the store"""
        await self.zones.refresh(self.repository)

    # Order Lifecycle Operations

    async def create_order(self, user_id: str, order_request: OrderRequest) -> OrderResult:
        """
        Admit a new order

        Returns:
            OrderResult with the unassigned order, or the rejection reason
        """
        return await self._run("create_order", self.admission.admit(user_id, order_request))

    async def transition_order(
        self,
        order_id: str,
        actor_id: str,
        requested_status: OrderStatus,
        courier_id: Optional[str] = None,
    ) -> OrderResult:
        """Move an order to its next status on behalf of actor_id"""
        return await self._run(
            "transition_order",
            self.state_machine.request_transition(order_id, requested_status, actor_id, courier_id),
        )

    async def cancel_order(self, order_id: str, actor_id: str) -> OrderResult:
        return await self._run(
            "cancel_order",
            self.state_machine.request_transition(order_id, OrderStatus.CANCELLED, actor_id),
        )

    async def assign_order(self, order_id: str, courier_id: str, actor_id: str) -> OrderResult:
        """Staff-forced assignment through the guarded assignment transition"""

        async def forced() -> Order:
            user = await self.repository.get_user(actor_id)
            if not (user and user.is_staff):
                raise PermissionDeniedError()
            return await self.state_machine.assign(
                order_id, courier_id, no_reassign=False, actor_id=actor_id
            )

        return await self._run("assign_order", forced())

    async def rate_order(
        self,
        order_id: str,
        actor_id: str,
        number_rating: int,
        text_rating: str = "",
    ) -> OrderResult:
        """The ordering customer rates a completed order (1-5)"""
        if not 1 <= number_rating <= 5:
            return OrderResult(success=False, reason=INVALID_RATING, message="Rating must be between 1 and 5.")

        async def rate() -> Order:
            order = await self._require_order(order_id)
            if order.user_id != actor_id:
                raise PermissionDeniedError()
            if order.status != OrderStatus.COMPLETE:
                raise OutOfSyncError("Only completed orders can be rated.")
            await self.repository.update_order(
                order_id, {"number_rating": number_rating, "text_rating": text_rating}
            )
            return order.model_copy(update={"number_rating": number_rating, "text_rating": text_rating})

        return await self._run("rate_order", rate())

    # Courier Operations

    async def courier_heartbeat(
        self,
        courier_id: str,
        position: Position,
        inventory: Inventory,
        on_duty: Optional[bool] = None,
    ) -> HeartbeatResult:
        try:
            return await self.tracker.heartbeat(courier_id, position, inventory, on_duty)
        except DispatchServiceError as e:
            logger.warning(f"Heartbeat rejected for {courier_id}: {e.message}")
            return HeartbeatResult(success=False, reason=e.error_code, message=e.message)
        except Exception as e:
            logger.error(f"Heartbeat failed for {courier_id}: {e}")
            return HeartbeatResult(success=False, reason=INTERNAL_ERROR, message=str(e))

    # Queries

    async def get_order(self, order_id: str) -> Optional[Order]:
        return await self.repository.get_order(order_id)

    async def get_courier_orders(self, courier_id: str) -> List[Order]:
        return await self.repository.get_courier_orders(courier_id)

    async def get_user_orders(self, user_id: str) -> List[Order]:
        return await self.repository.get_user_orders(user_id)

    async def availability(
        self,
        zip_code: str,
        user_id: Optional[str] = None,
        now: Optional[int] = None,
    ) -> AvailabilityResponse:
        try:
            return await self.admission.availability(zip_code, user_id, now)
        except Exception as e:
            logger.error(f"Availability check failed for {zip_code}: {e}")
            return AvailabilityResponse(success=False, unavailable_reason=str(e))

    def get_gas_prices(self, zip_code: str) -> Dict[str, int]:
        """Gas prices for a zip, falling back to the default zip outside the service area"""
        prices = self.zones.gas_prices(zip_code)
        if not prices:
            prices = self.zones.gas_prices(self.config.default_zip_code)
        return prices

    # Reconciliation Loop

    async def tick(self) -> Optional[TickReport]:
        return await self.reconciler.tick()

    def start(self) -> None:
        self.reconciler.start()

    async def stop(self) -> None:
        await self.reconciler.stop()

    def status(self) -> DispatchServiceStatus:
        return self.reconciler.status()

    # Internals

    async def _require_order(self, order_id: str) -> Order:
        order = await self.repository.get_order(order_id)
        if order is None:
            raise NotFoundError(NOT_FOUND_MESSAGE)
        return order

    async def _run(self, operation: str, call: Awaitable[Order]) -> OrderResult:
        try:
            order = await call
            return OrderResult(success=True, order=order)
        except DispatchServiceError as e:
            logger.info(f"{operation} rejected: {e.error_code} {e.message}")
            return OrderResult(success=False, reason=e.error_code, message=e.message)
        except Exception as e:
            logger.error(f"{operation} failed: {e}")
            return OrderResult(success=False, reason=INTERNAL_ERROR, message=str(e))
