"""
Optimizer Service Client for Dispatch Service

HTTP client for the external optimizer that ranks order/courier pairings
"""

import httpx
import logging
from typing import Any, Dict, List, Optional

from core.service_client_base import BaseServiceClient
from ..models import AssignmentSuggestion, Courier, Order
from ..protocols import OptimizerUnavailableError

logger = logging.getLogger(__name__)


def order_payload(order: Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "status": order.status.value,
        "courier_id": order.courier_id,
        "zone": order.zone_id,
        "status_times": order.status_times,
        "lat": order.lat,
        "lng": order.lng,
        "gas_type": order.gas_type,
        "gallons": order.gallons,
        "target_time_start": order.target_time_start,
        "target_time_end": order.target_time_end,
    }


def courier_payload(courier: Courier) -> Dict[str, Any]:
    return {
        "id": courier.id,
        "lat": courier.lat,
        "lng": courier.lng,
        "zones": courier.zones,
        "connected": courier.connected,
        "busy": courier.busy,
        "last_ping": courier.last_ping,
        "gallons": {"87": courier.gallons_87, "91": courier.gallons_91},
    }


def parse_suggestions(body: Dict[str, Any]) -> Dict[str, List[AssignmentSuggestion]]:
    """
    Normalize the optimizer response.

    Accepts ``{order_id: [{courier_id, rank, is_new}, ...]}`` and the older
    single-object form ``{order_id: {courier_id, courier_pos, new_assignment}}``.
    """
    suggestions: Dict[str, List[AssignmentSuggestion]] = {}
    for order_id, value in (body or {}).items():
        items = value if isinstance(value, list) else [value]
        parsed = []
        for item in items:
            if not item or not item.get("courier_id"):
                continue
            parsed.append(
                AssignmentSuggestion(
                    order_id=order_id,
                    courier_id=str(item["courier_id"]),
                    rank=int(item.get("rank", item.get("courier_pos", 0)) or 0),
                    is_new=bool(item.get("is_new", item.get("new_assignment", False))),
                )
            )
        suggestions[order_id] = parsed
    return suggestions


class OptimizerClient(BaseServiceClient):
    """Client for the optimizer service"""

    service_name = "optimizer_service"
    default_port = 8270

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url=base_url, timeout=timeout, transport=transport)

    async def suggest(
        self,
        orders: List[Order],
        couriers: List[Courier],
    ) -> Dict[str, List[AssignmentSuggestion]]:
        """
        Ask the optimizer for ranked pairings

        Raises:
            OptimizerUnavailableError: transport error, non-2xx or bad body
        """
        payload = {
            "orders": {o.id: order_payload(o) for o in orders},
            "couriers": {c.id: courier_payload(c) for c in couriers},
        }
        try:
            response = await self.post("/api/v1/suggest", json=payload)
            response.raise_for_status()
            return parse_suggestions(response.json())

        except httpx.HTTPStatusError as e:
            logger.error(f"Optimizer returned {e.response.status_code}")
            raise OptimizerUnavailableError(f"Optimizer returned {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error calling optimizer: {e}")
            raise OptimizerUnavailableError(f"Optimizer call failed: {e}") from e
