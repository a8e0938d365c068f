"""
Unit Tests for Store Row Codecs

Event log text ("status ts|status ts|") and courier zone lists ("1,2,3").
"""
import pytest

from microservices.dispatch_service.dispatch_repository import (
    format_event_log,
    format_zones,
    parse_event_log,
    parse_zones,
)
from microservices.dispatch_service.models import EventLogEntry, OrderStatus
from tests.fixtures.dispatch_fixtures import TEN_AM, make_order

pytestmark = pytest.mark.unit


class TestEventLog:

    def test_parse_in_order(self):
        entries = parse_event_log("unassigned 100|assigned 160|accepted 160|")

        assert [e.status for e in entries] == [
            OrderStatus.UNASSIGNED,
            OrderStatus.ASSIGNED,
            OrderStatus.ACCEPTED,
        ]
        assert [e.timestamp for e in entries] == [100, 160, 160]

    def test_format_appends_trailing_separator(self):
        text = format_event_log([
            EventLogEntry(status=OrderStatus.UNASSIGNED, timestamp=100),
            EventLogEntry(status=OrderStatus.CANCELLED, timestamp=250),
        ])

        assert text == "unassigned 100|cancelled 250|"

    @pytest.mark.parametrize("text", [None, "", "|", " | "])
    def test_empty_log(self, text):
        assert parse_event_log(text) == []

    def test_unknown_status_rejected(self):
        with pytest.raises(ValueError):
            parse_event_log("teleported 100|")

    def test_status_times_keep_latest_timestamp(self):
        order = make_order(status=OrderStatus.ACCEPTED, start=TEN_AM)

        assert order.status_times == {"unassigned": TEN_AM, "assigned": TEN_AM, "accepted": TEN_AM}
        assert order.event_time(OrderStatus.ENROUTE) is None


class TestZones:

    def test_parse(self):
        assert parse_zones("1,2,13") == [1, 2, 13]

    @pytest.mark.parametrize("text", [None, "", ",", " "])
    def test_parse_empty(self, text):
        assert parse_zones(text) == []

    def test_format(self):
        assert format_zones([3, 1]) == "3,1"
