from __future__ import annotations

from typing import Optional

from fillrecon.events import OrderFillEvent, PositionSnapshot
from fillrecon.models import CLOSING, OPENING, Classification


def classify(event: OrderFillEvent, position: Optional[PositionSnapshot], epsilon: float = 1e-8) -> Classification:
    """Decide whether a filled order opens or closes a position.

    Exchange-supplied signals (reduce-only flag, realized PnL) take priority
    over the position-side comparison, which can be stale when the position
    stream lags the order stream. Without any signal the fill is opening.
    """
    if event.reduce_only:
        return CLOSING
    if abs(event.closed_pnl) > epsilon:
        return CLOSING
    if position is not None and position.signed_size != 0:
        if position.is_long and event.side == "Sell":
            return CLOSING
        if position.is_short and event.side == "Buy":
            return CLOSING
        return OPENING
    return OPENING
