from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

Side = Literal["Buy", "Sell", ""]

STATUS_NEW = "New"
STATUS_PARTIALLY_FILLED = "PartiallyFilled"
STATUS_FILLED = "Filled"


@dataclass(frozen=True)
class OrderFillEvent:
    order_id: str
    symbol: str
    side: Side
    status: str
    qty: float = 0.0
    cum_exec_qty: float = 0.0
    cum_exec_value: float = 0.0
    avg_price: float = 0.0
    price: float = 0.0
    cum_exec_fee: float = 0.0
    closed_pnl: float = 0.0
    reduce_only: bool = False
    created_time: int = 0
    updated_time: int = 0

    @property
    def exec_qty(self) -> float:
        """Executed quantity, falling back to the ordered quantity."""
        return self.cum_exec_qty if self.cum_exec_qty > 0 else max(self.qty, 0.0)

    @property
    def exec_value(self) -> float:
        """Executed notional, derived from the fill price when the venue omits it."""
        if self.cum_exec_value != 0:
            return self.cum_exec_value
        return self.exec_qty * (self.avg_price or self.price)


@dataclass(frozen=True)
class PositionSnapshot:
    symbol: str
    side: Side
    size: float = 0.0
    avg_price: float = 0.0
    mark_price: float = 0.0
    unrealised_pnl: float = 0.0

    @property
    def signed_size(self) -> float:
        # Venues report either an unsigned size with a side or a signed size
        if self.size < 0:
            return self.size
        return -self.size if self.side == "Sell" else self.size

    @property
    def is_long(self) -> bool:
        return self.signed_size > 0

    @property
    def is_short(self) -> bool:
        return self.signed_size < 0


@dataclass(frozen=True)
class Unrecognized:
    reason: str
    payload: Any = None
