"""
Dispatch Service component fixtures

A DispatchService wired to the in-memory store, mock optimizer, mock
notifier and mock event bus, with one zone (zip 90210, open 08:00-20:00 UTC)
and a settable clock starting at 10:00.
"""
import pytest
import pytest_asyncio

from core.config import DispatchConfig
from microservices.dispatch_service.dispatch_service import DispatchService
from tests.component.mocks import MockDispatchStore, MockEventBus
from tests.fixtures.dispatch_fixtures import FakeClock, make_user_row, make_zone_row

from .mocks import MockNotifier, MockOptimizer

CUSTOMER_ID = "usr_customer"
STAFF_ID = "usr_staff"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dispatch_config() -> DispatchConfig:
    return DispatchConfig(
        process_interval_seconds=10,
        courier_stale_seconds=90,
        courier_reminder_seconds=300,
        optimizer_alert_threshold=2,
        service_timezone="UTC",
        tire_pressure_check_price=700,
    )


@pytest.fixture
def store() -> MockDispatchStore:
    store = MockDispatchStore()
    store.seed("zones", make_zone_row())
    store.seed("users", make_user_row(CUSTOMER_ID), make_user_row(STAFF_ID, is_staff=True))
    return store


@pytest.fixture
def event_bus() -> MockEventBus:
    return MockEventBus()


@pytest.fixture
def optimizer() -> MockOptimizer:
    return MockOptimizer()


@pytest.fixture
def notifier() -> MockNotifier:
    return MockNotifier()


@pytest_asyncio.fixture
async def service(store, optimizer, notifier, event_bus, dispatch_config, clock) -> DispatchService:
    service = DispatchService(
        store=store,
        optimizer=optimizer,
        notifier=notifier,
        event_bus=event_bus,
        config=dispatch_config,
        clock=clock,
    )
    await service.initialize()
    yield service
    await service.stop()
    await service.tasks.drain()
