from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Literal, Optional, Tuple

from fillrecon.events import OrderFillEvent, PositionSnapshot

Classification = Literal["Opening", "Closing"]

OPENING: Classification = "Opening"
CLOSING: Classification = "Closing"


@dataclass(frozen=True)
class GroupFill:
    event: OrderFillEvent
    classification: Classification
    # Intermediate partial kept for display only; its quantity is already in event
    merged_partial: Optional[OrderFillEvent] = None


@dataclass(frozen=True)
class CompletedTrade:
    symbol: str
    time: int
    entry_price: float
    exit_price: float
    realized_pnl: float
    fees: float
    side: str = ""
    qty: float = 0.0
    opened_time: int = 0
    opening_order_ids: Tuple[str, ...] = ()
    closing_order_ids: Tuple[str, ...] = ()

    @property
    def net_pnl(self) -> float:
        return self.realized_pnl - self.fees


@dataclass(frozen=True)
class Metrics:
    total_trades: int = 0
    win_count: int = 0
    loss_count: int = 0
    total_pnl: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    win_rate: float = 0.0
    loss_rate: float = 0.0
    gross_win: float = 0.0
    gross_loss: float = 0.0
    total_fees: float = 0.0


@dataclass(frozen=True)
class ReconciledSnapshot:
    """Read-only view of engine state handed to the presentation layer."""

    positions: Tuple[PositionSnapshot, ...]
    opening_fills: Tuple[GroupFill, ...]
    closing_fills: Tuple[GroupFill, ...]
    pending_partials: Tuple[OrderFillEvent, ...]
    completed_trades: Tuple[CompletedTrade, ...]
    metrics: Metrics
    events_processed: int = 0
    last_update: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_update"] = self.last_update.isoformat() if self.last_update else None
        return data
