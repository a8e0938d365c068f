"""
Reconciliation Loop Component Tests

Tick ordering, change detection, assignment selection, optimizer failure
handling, courier reminders and tick overlap.
"""
import asyncio
import json

import pytest

from microservices.dispatch_service.protocols import OptimizerUnavailableError
from microservices.dispatch_service.models import Inventory, OrderStatus, Position
from microservices.dispatch_service.reconciliation import REMINDER_TEXT
from tests.fixtures.dispatch_fixtures import TEN_AM, make_courier_row, make_order_row

pytestmark = [pytest.mark.component, pytest.mark.asyncio]


# =============================================================================
# Change detection
# =============================================================================

class TestChangeDetection:
    """The optimizer is called only when the reduced state changes"""

    async def test_first_tick_always_runs_assignment(self, service, optimizer):
        report = await service.tick()

        assert report.state_changed is True
        assert optimizer.call_count == 1

    async def test_identical_state_skips_optimizer(self, service, store, optimizer):
        store.seed("couriers", make_courier_row("cour_1"))
        store.seed("orders", make_order_row("order_a"))

        await service.tick()
        report = await service.tick()

        assert report.state_changed is False
        assert optimizer.call_count == 1

    async def test_position_only_changes_do_not_trigger(self, service, store, optimizer, clock):
        store.seed("couriers", make_courier_row("cour_1"))
        store.seed("orders", make_order_row("order_a"))
        await service.tick()

        clock.advance(10)
        await service.courier_heartbeat(
            "cour_1", Position(lat=34.2, lng=-118.2), Inventory(gallons_87=12.0, gallons_91=3.0)
        )
        report = await service.tick()

        assert report.state_changed is False
        assert optimizer.call_count == 1

    async def test_new_order_triggers_optimizer(self, service, store, optimizer):
        store.seed("couriers", make_courier_row("cour_1"))
        await service.tick()

        store.seed("orders", make_order_row("order_a"))
        report = await service.tick()

        assert report.state_changed is True
        assert optimizer.call_count == 2

    async def test_courier_going_off_duty_triggers_optimizer(self, service, store, optimizer):
        store.seed("couriers", make_courier_row("cour_1"), make_courier_row("cour_2"))
        await service.tick()

        store.row("couriers", id="cour_2")["on_duty"] = False
        await service.tick()

        assert optimizer.call_count == 2


# =============================================================================
# Assignment pass
# =============================================================================

class TestAssignmentPass:
    """Suggestions become guarded assignments"""

    async def test_top_suggestion_is_applied(self, service, store, optimizer, notifier):
        store.seed("couriers", make_courier_row("cour_1"))
        store.seed("orders", make_order_row("order_a"))
        optimizer.suggest_pair("order_a", "cour_1")

        report = await service.tick()
        await service.tasks.drain()

        assert report.assignments == [("order_a", "cour_1")]
        row = store.row("orders", id="order_a")
        assert row["status"] == "accepted"
        assert row["courier_id"] == "cour_1"
        assert store.row("couriers", id="cour_1")["busy"] is True
        assert len(notifier.messages_for("cour_1")) == 1

    async def test_one_courier_gets_one_order_earliest_start_wins(self, service, store, optimizer):
        store.seed("couriers", make_courier_row("cour_1"))
        store.seed(
            "orders",
            make_order_row("order_a", start=TEN_AM),
            make_order_row("order_b", start=TEN_AM - 600),
        )
        optimizer.suggest_pair("order_a", "cour_1")
        optimizer.suggest_pair("order_b", "cour_1")

        report = await service.tick()

        assert report.assignments == [("order_b", "cour_1")]
        assert store.row("orders", id="order_a")["status"] == "unassigned"
        assert store.row("orders", id="order_a")["courier_id"] is None

    async def test_lower_ranked_and_existing_suggestions_ignored(self, service, store, optimizer):
        store.seed("couriers", make_courier_row("cour_1"), make_courier_row("cour_2"))
        store.seed("orders", make_order_row("order_a"))
        optimizer.suggest_pair("order_a", "cour_1", rank=2)
        optimizer.suggest_pair("order_a", "cour_2", is_new=False)

        report = await service.tick()

        assert report.assignments == []
        assert store.row("orders", id="order_a")["status"] == "unassigned"

    async def test_order_claimed_meanwhile_is_skipped(self, service, store, optimizer):
        store.seed("couriers", make_courier_row("cour_1"), make_courier_row("cour_2"))
        store.seed("orders", make_order_row("order_a"))
        optimizer.suggest_pair("order_a", "cour_2")

        def claim_first(orders, couriers):
            row = store.row("orders", id="order_a")
            row["status"] = "accepted"
            row["courier_id"] = "cour_1"
            return {"order_a": optimizer._suggestions["order_a"]}

        optimizer._responder = claim_first
        report = await service.tick()

        assert report.assignments == []
        assert store.row("orders", id="order_a")["courier_id"] == "cour_1"

    async def test_reassignment_happens_on_later_tick(self, service, store, optimizer):
        store.seed("couriers", make_courier_row("cour_1"))
        store.seed("orders", make_order_row("order_a"))
        await service.tick()
        assert store.row("orders", id="order_a")["status"] == "unassigned"

        optimizer.assign_unassigned_to("cour_1")
        store.seed("orders", make_order_row("order_b"))
        report = await service.tick()

        assert report.assignments == [("order_a", "cour_1")]


# =============================================================================
# Optimizer failures
# =============================================================================

class TestOptimizerFailure:
    """A failed pass assigns nothing, is retried, and raises one alert"""

    async def test_failed_pass_is_retried_next_tick(self, service, store, optimizer):
        store.seed("couriers", make_courier_row("cour_1"))
        store.seed("orders", make_order_row("order_a"))
        optimizer.set_error(RuntimeError("connection refused"))

        report = await service.tick()

        assert any(e.startswith("optimizer:") for e in report.errors)
        assert report.assignments == []
        assert service.reconciler.previous_snapshot is None

        optimizer.clear_error()
        optimizer.suggest_pair("order_a", "cour_1")
        report = await service.tick()

        assert optimizer.call_count == 2
        assert report.assignments == [("order_a", "cour_1")]
        assert service.reconciler.consecutive_optimizer_failures == 0

    async def test_alert_published_once_at_threshold(self, service, store, optimizer, event_bus):
        store.seed("orders", make_order_row("order_a"))
        optimizer.set_error(OptimizerUnavailableError("optimizer returned 503"))

        await service.tick()
        await service.tasks.drain()
        event_bus.assert_no_events_published("dispatch.optimizer.unavailable")

        await service.tick()
        await service.tick()
        await service.tasks.drain()

        alerts = event_bus.get_published("dispatch.optimizer.unavailable")
        assert len(alerts) == 1
        assert alerts[0]["data"]["consecutive_failures"] == 2
        assert service.status().consecutive_optimizer_failures == 3

    async def test_step_failure_does_not_stop_the_tick(self, service, store, optimizer, monkeypatch):
        store.seed("couriers", make_courier_row("cour_1"))
        store.seed("orders", make_order_row("order_a"))
        optimizer.suggest_pair("order_a", "cour_1")

        async def broken():
            raise RuntimeError("expiry query failed")

        monkeypatch.setattr(service.tracker, "expire_stale", broken)
        report = await service.tick()

        assert any(e.startswith("expire_stale:") for e in report.errors)
        assert report.assignments == [("order_a", "cour_1")]


# =============================================================================
# Expiry and reminders within a tick
# =============================================================================

class TestTickHousekeeping:
    """Stale couriers and reminders"""

    async def test_tick_expires_stale_couriers(self, service, store, clock):
        store.seed("couriers", make_courier_row("cour_1", last_ping=TEN_AM - 200))

        report = await service.tick()

        assert report.expired_couriers == ["cour_1"]
        assert store.row("couriers", id="cour_1")["connected"] is False

    @pytest.mark.parametrize(
        "elapsed, reminded",
        [(299, False), (300, True), (309, True), (310, False)],
    )
    async def test_reminder_window(self, service, store, clock, notifier, elapsed, reminded):
        store.seed("couriers", make_courier_row("cour_1", busy=True, connected=False))
        store.seed("orders", make_order_row("order_a", status=OrderStatus.ASSIGNED, courier_id="cour_1"))
        clock.now = TEN_AM + elapsed

        report = await service.tick()
        await service.tasks.drain()

        assert (report.reminded_couriers == ["cour_1"]) is reminded
        assert (REMINDER_TEXT in notifier.messages_for("cour_1")) is reminded

    async def test_reminder_event_published(self, service, store, clock, event_bus):
        store.seed("orders", make_order_row("order_a", status=OrderStatus.ASSIGNED, courier_id="cour_1"))
        clock.now = TEN_AM + 305

        await service.reconciler.remind_couriers(clock.now)
        await service.tasks.drain()

        event_bus.assert_event_published(
            "dispatch.courier.reminded", {"courier_id": "cour_1", "order_id": "order_a", "elapsed_seconds": 305}
        )


# =============================================================================
# Overlap, state log and status
# =============================================================================

class TestLoopControl:
    """Non-overlapping ticks, state log and loop status"""

    async def test_overlapping_tick_is_skipped(self, service, store, optimizer):
        store.seed("orders", make_order_row("order_a"))
        optimizer.gate = asyncio.Event()

        first = asyncio.create_task(service.tick())
        while optimizer.call_count == 0:
            await asyncio.sleep(0)

        second = await service.tick()
        optimizer.gate.set()
        report = await first

        assert second is None
        assert report is not None
        assert service.status().ticks_skipped == 1
        assert service.status().ticks_run == 1

    async def test_state_log_written_each_tick(self, service, store):
        store.seed("couriers", make_courier_row("cour_1"))
        store.seed("orders", make_order_row("order_a"))

        await service.tick()
        await service.tick()
        await service.tasks.drain()

        logs = store.rows("state_log")
        assert len(logs) == 2
        assert logs[0]["timestamp_created"] == TEN_AM
        data = json.loads(logs[0]["data"])
        assert data["orders"] == [{"id": "order_a", "status": "unassigned", "courier_id": None}]
        assert data["couriers"][0]["id"] == "cour_1"

    async def test_status_reports_tick_counters(self, service):
        await service.tick()

        status = service.status()

        assert status.ticks_run == 1
        assert status.last_tick_at == TEN_AM
        assert status.loop_running is False

    async def test_start_and_stop_loop(self, service, optimizer):
        service.start()
        await asyncio.sleep(0)
        assert service.status().loop_running is True

        await service.stop()
        await service.tasks.drain()

        assert service.status().loop_running is False
        assert service.status().ticks_run >= 1
