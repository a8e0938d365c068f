"""
Zone Directory

Read-only lookup of zip code -> Zone: service hours, fuel prices, delivery
fees per duration and the one-hour constraining zone.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from .models import Zone

logger = logging.getLogger(__name__)


def minute_of_day(unix_time: int, tz: str) -> int:
    """Minutes since local midnight in the service timezone"""
    local = datetime.fromtimestamp(unix_time, tz=timezone.utc).astimezone(ZoneInfo(tz))
    return local.hour * 60 + local.minute


def minute_of_day_to_hmma(minute: int) -> str:
    """510 -> '8:30 AM'"""
    hours, minutes = divmod(minute % 1440, 60)
    suffix = "AM" if hours < 12 else "PM"
    return f"{(hours % 12) or 12}:{minutes:02d} {suffix}"


class ZoneDirectory:
    """In-memory index of zones by id and by zip code"""

    def __init__(self, zones: Iterable[Zone] = (), tz: str = "America/Los_Angeles"):
        self.tz = tz
        self._by_id: Dict[int, Zone] = {}
        self._by_zip: Dict[str, Zone] = {}
        self.load(zones)

    def load(self, zones: Iterable[Zone]) -> None:
        """Replace the index; a zip listed by several zones resolves to the last one"""
        by_id: Dict[int, Zone] = {}
        by_zip: Dict[str, Zone] = {}
        for zone in zones:
            by_id[zone.id] = zone
            for zip_code in zone.zip_codes:
                by_zip[zip_code[:5]] = zone
        self._by_id = by_id
        self._by_zip = by_zip
        logger.info(f"Zone directory loaded: {len(by_id)} zones, {len(by_zip)} zip codes")

    async def refresh(self, repository) -> None:
        self.load(await repository.get_zones())

    @property
    def zones(self) -> List[Zone]:
        return list(self._by_id.values())

    def get_zone(self, zone_id: Optional[int]) -> Optional[Zone]:
        if zone_id is None:
            return None
        return self._by_id.get(zone_id)

    def get_zone_by_zip(self, zip_code: str) -> Optional[Zone]:
        return self._by_zip.get((zip_code or "").strip()[:5])

    def get_active_zone_by_zip(self, zip_code: str) -> Optional[Zone]:
        zone = self.get_zone_by_zip(zip_code)
        return zone if zone and zone.active else None

    def gas_prices(self, zip_code: str) -> Dict[str, int]:
        zone = self.get_zone_by_zip(zip_code)
        return dict(zone.gas_prices) if zone else {}

    def delivery_fee(self, zone: Zone, time_limit: int) -> Optional[int]:
        return zone.delivery_fees.get(time_limit)

    def within_hours(self, zone: Zone, unix_time: int) -> bool:
        """Inside the zone's open/close bracket (inclusive)"""
        minute = minute_of_day(unix_time, self.tz)
        return zone.open_minute <= minute <= zone.close_minute

    def is_open(self, zone: Zone, unix_time: int) -> bool:
        return zone.active and not zone.in_holiday(unix_time) and self.within_hours(zone, unix_time)

    def hours_text(self, zone: Zone) -> str:
        return (
            f"Sorry, the service hours for this ZIP code are "
            f"{minute_of_day_to_hmma(zone.open_minute)} to "
            f"{minute_of_day_to_hmma(zone.close_minute)} every day."
        )
