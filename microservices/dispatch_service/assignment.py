"""
Assignment Selector

Turns optimizer suggestions into at most one new assignment per order and
per courier, applied through the state machine's guarded assign.
"""

import logging
from typing import Dict, List, Tuple

from .models import AssignmentSuggestion, Courier, Order
from .order_state_machine import OrderStateMachine
from .protocols import (
    AlreadyTerminalError,
    NotFoundError,
    OptimizerProtocol,
    OptimizerUnavailableError,
    OutOfSyncError,
)

logger = logging.getLogger(__name__)


def select_assignments(
    orders: List[Order],
    suggestions: Dict[str, List[AssignmentSuggestion]],
) -> List[Tuple[str, str]]:
    """
    Pick (order_id, courier_id) pairs from one round of suggestions.

    Only new, top-ranked suggestions count. Orders are visited by earliest
    window start then id, and each takes the lowest courier id not already
    taken this round.
    """
    taken = set()
    pairs = []
    for order in sorted(orders, key=lambda o: (o.target_time_start, o.id)):
        candidates = sorted(
            (s for s in suggestions.get(order.id, []) if s.is_new and s.rank == 1),
            key=lambda s: s.courier_id,
        )
        for suggestion in candidates:
            if suggestion.courier_id not in taken:
                taken.add(suggestion.courier_id)
                pairs.append((order.id, suggestion.courier_id))
                break
    return pairs


class AssignmentSelector:
    """Optimizer round-trip plus application of the selected pairs"""

    def __init__(self, optimizer: OptimizerProtocol, state_machine: OrderStateMachine):
        self.optimizer = optimizer
        self.state_machine = state_machine

    async def suggest(self, orders: List[Order], couriers: List[Courier]) -> Dict[str, List[AssignmentSuggestion]]:
        try:
            return await self.optimizer.suggest(orders, couriers)
        except OptimizerUnavailableError:
            raise
        except Exception as e:
            raise OptimizerUnavailableError(f"Optimizer call failed: {e}") from e

    async def run(self, orders: List[Order], couriers: List[Courier]) -> List[Tuple[str, str]]:
        """
        One assignment pass.

        Raises:
            OptimizerUnavailableError: nothing is applied this round
        """
        suggestions = await self.suggest(orders, couriers)
        applied = []
        for order_id, courier_id in select_assignments(orders, suggestions):
            try:
                await self.state_machine.assign(order_id, courier_id, no_reassign=True)
                applied.append((order_id, courier_id))
            except (OutOfSyncError, NotFoundError, AlreadyTerminalError) as e:
                logger.info(f"Skipped assignment {order_id} -> {courier_id}: {e.message}")
        return applied
