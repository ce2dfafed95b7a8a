from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from fillrecon.config import PartialPolicy
from fillrecon.events import OrderFillEvent


class PartialFillAggregator:
    """Holds partially-filled orders until their terminal fill arrives.

    ``per_order`` keeps one pending partial per order id. ``single_slot`` keeps
    at most one partial in flight: a partial for another order replaces it,
    and a terminal fill for another order flushes it.
    """

    def __init__(self, policy: PartialPolicy = "per_order") -> None:
        self.policy = policy
        self._log = logging.getLogger("partials")
        self._pending: Dict[str, OrderFillEvent] = {}

    def on_partial(self, event: OrderFillEvent) -> Optional[OrderFillEvent]:
        """Store ``event`` as the pending partial for its order; return a partial dropped to make room."""
        dropped: Optional[OrderFillEvent] = None
        if self.policy == "single_slot":
            for order_id in list(self._pending):
                if order_id != event.order_id:
                    dropped = self._pending.pop(order_id)
                    self._log.warning(
                        "partial_dropped",
                        extra={"order_id": order_id, "replaced_by": event.order_id, "symbol": dropped.symbol},
                    )
        # Re-insert so pending() stays in arrival order of the latest update
        self._pending.pop(event.order_id, None)
        self._pending[event.order_id] = event
        return dropped

    def on_filled(self, event: OrderFillEvent) -> Tuple[Optional[OrderFillEvent], List[OrderFillEvent]]:
        """Resolve pending partials for a terminal fill.

        Returns the partial merged into ``event`` (same order id, display only)
        and the partials of other orders that must be flushed before ``event``.
        """
        merged = self._pending.pop(event.order_id, None)
        flushed: List[OrderFillEvent] = []
        if self.policy == "single_slot" and self._pending:
            flushed = list(self._pending.values())
            self._pending.clear()
            self._log.info(
                "partials_flushed",
                extra={"order_ids": [p.order_id for p in flushed], "terminal_order_id": event.order_id},
            )
        return merged, flushed

    def has_pending(self, order_id: str) -> bool:
        return order_id in self._pending

    def pending(self) -> List[OrderFillEvent]:
        return list(self._pending.values())

    def discard(self) -> int:
        count = len(self._pending)
        self._pending.clear()
        return count
