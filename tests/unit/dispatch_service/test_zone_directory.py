"""
Unit Tests for Zone Lookup and Service Hours
"""
import pytest

from microservices.dispatch_service.models import Zone
from microservices.dispatch_service.zone_directory import (
    ZoneDirectory,
    minute_of_day,
    minute_of_day_to_hmma,
)
from tests.fixtures.dispatch_fixtures import MIDNIGHT, SIX_AM, TEN_AM

pytestmark = pytest.mark.unit


def zone(**kwargs):
    values = dict(
        id=1,
        zip_codes=["90210", "90211"],
        open_minute=480,
        close_minute=1200,
        gas_prices={"87": 300, "91": 320},
        delivery_fees={60: 599, 180: 399},
    )
    values.update(kwargs)
    return Zone(**values)


class TestMinuteOfDay:

    def test_utc(self):
        assert minute_of_day(TEN_AM + 90, "UTC") == 601

    def test_service_timezone(self):
        # 10:00 UTC on 2024-06-04 is 03:00 PDT
        assert minute_of_day(TEN_AM, "America/Los_Angeles") == 180

    def test_midnight(self):
        assert minute_of_day(MIDNIGHT, "UTC") == 0

    @pytest.mark.parametrize(
        "minute, text",
        [(0, "12:00 AM"), (480, "8:00 AM"), (510, "8:30 AM"), (720, "12:00 PM"), (1200, "8:00 PM"), (1439, "11:59 PM")],
    )
    def test_hmma(self, minute, text):
        assert minute_of_day_to_hmma(minute) == text


class TestZoneDirectory:

    def test_lookup_by_zip_uses_first_five_digits(self):
        directory = ZoneDirectory([zone()], tz="UTC")

        assert directory.get_zone_by_zip("90210-1234").id == 1
        assert directory.get_zone_by_zip("10001") is None

    def test_inactive_zone_is_not_active(self):
        directory = ZoneDirectory([zone(active=False)], tz="UTC")

        assert directory.get_zone_by_zip("90210") is not None
        assert directory.get_active_zone_by_zip("90210") is None

    def test_gas_prices(self):
        directory = ZoneDirectory([zone()], tz="UTC")

        assert directory.gas_prices("90211") == {"87": 300, "91": 320}
        assert directory.gas_prices("10001") == {}

    def test_delivery_fee_missing_for_unpriced_duration(self):
        directory = ZoneDirectory([zone()], tz="UTC")

        assert directory.delivery_fee(directory.get_zone(1), 180) == 399
        assert directory.delivery_fee(directory.get_zone(1), 300) is None

    def test_hours_are_inclusive(self):
        directory = ZoneDirectory(tz="UTC")
        z = zone()

        assert directory.within_hours(z, MIDNIGHT + 480 * 60) is True
        assert directory.within_hours(z, MIDNIGHT + 1200 * 60) is True
        assert directory.within_hours(z, MIDNIGHT + 1201 * 60) is False
        assert directory.within_hours(z, SIX_AM) is False

    def test_holiday_closes_zone(self):
        directory = ZoneDirectory(tz="UTC")
        z = zone(holiday_start=TEN_AM - 60, holiday_end=TEN_AM + 60)

        assert z.in_holiday(TEN_AM) is True
        assert directory.is_open(z, TEN_AM) is False
        assert directory.is_open(zone(), TEN_AM) is True

    def test_hours_text(self):
        directory = ZoneDirectory(tz="UTC")

        assert directory.hours_text(zone()) == (
            "Sorry, the service hours for this ZIP code are 8:00 AM to 8:00 PM every day."
        )

    def test_reload_replaces_index(self):
        directory = ZoneDirectory([zone()], tz="UTC")
        directory.load([zone(id=2, zip_codes=["10001"])])

        assert directory.get_zone(1) is None
        assert directory.get_zone_by_zip("10001").id == 2
