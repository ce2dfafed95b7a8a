from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from fillrecon.config import GroupScope
from fillrecon.events import OrderFillEvent
from fillrecon.ledger import TradeLedger
from fillrecon.models import CLOSING, Classification, CompletedTrade, GroupFill


@dataclass
class MatchGroup:
    key: str
    opening_fills: List[GroupFill] = field(default_factory=list)
    closing_fills: List[GroupFill] = field(default_factory=list)
    opening_qty: float = 0.0
    closing_qty: float = 0.0

    def add(self, fill: GroupFill) -> None:
        if fill.classification == CLOSING:
            self.closing_fills.append(fill)
            self.closing_qty += fill.event.exec_qty
        else:
            self.opening_fills.append(fill)
            self.opening_qty += fill.event.exec_qty

    def is_balanced(self, epsilon: float) -> bool:
        # Empty or zero-quantity groups never balance
        if self.opening_qty <= 0 or self.closing_qty <= 0:
            return False
        return abs(self.opening_qty - self.closing_qty) < epsilon

    def reset(self) -> None:
        self.opening_fills = []
        self.closing_fills = []
        self.opening_qty = 0.0
        self.closing_qty = 0.0


def weighted_price(fills: Iterable[GroupFill]) -> float:
    """Quantity-weighted average execution price, 0 when nothing executed."""
    total_qty = 0.0
    total_value = 0.0
    for f in fills:
        total_qty += f.event.exec_qty
        total_value += f.event.exec_value
    return total_value / total_qty if total_qty > 0 else 0.0


class GroupMatcher:
    """Accumulate classified fills and finalize a trade once opening and closing quantities match."""

    def __init__(
        self,
        ledger: TradeLedger,
        *,
        epsilon: float = 1e-8,
        group_scope: GroupScope = "symbol",
        logger: Optional[logging.Logger] = None,
        on_trade_closed: Optional[Callable[[CompletedTrade], None]] = None,
    ) -> None:
        self.ledger = ledger
        self.epsilon = float(epsilon)
        self.group_scope = group_scope
        self._log = logger or logging.getLogger("groups")
        self._on_trade_closed = on_trade_closed
        self._groups: Dict[str, MatchGroup] = {}

    def _key(self, symbol: str) -> str:
        return symbol if self.group_scope == "symbol" else ""

    def absorb(
        self,
        event: OrderFillEvent,
        classification: Classification,
        merged_partial: Optional[OrderFillEvent] = None,
    ) -> Optional[CompletedTrade]:
        key = self._key(event.symbol)
        group = self._groups.get(key)
        if group is None:
            group = self._groups[key] = MatchGroup(key=key)

        group.add(GroupFill(event=event, classification=classification, merged_partial=merged_partial))
        self._log.debug(
            "fill_absorbed",
            extra={
                "order_id": event.order_id,
                "symbol": event.symbol,
                "classification": classification,
                "exec_qty": event.exec_qty,
                "opening_qty": group.opening_qty,
                "closing_qty": group.closing_qty,
            },
        )

        if not group.is_balanced(self.epsilon):
            return None
        trade = self._finalize(group, event)
        del self._groups[key]
        return trade

    def _finalize(self, group: MatchGroup, balancing: OrderFillEvent) -> CompletedTrade:
        first_open = group.opening_fills[0].event
        fills = group.opening_fills + group.closing_fills
        trade = CompletedTrade(
            symbol=first_open.symbol,
            # Venue update time of the balancing fill, its creation time when absent
            time=balancing.updated_time or balancing.created_time,
            entry_price=weighted_price(group.opening_fills),
            exit_price=weighted_price(group.closing_fills),
            realized_pnl=sum(f.event.closed_pnl for f in group.closing_fills),
            fees=sum(f.event.cum_exec_fee for f in fills),
            side=first_open.side,
            qty=group.opening_qty,
            opened_time=first_open.created_time,
            opening_order_ids=tuple(f.event.order_id for f in group.opening_fills),
            closing_order_ids=tuple(f.event.order_id for f in group.closing_fills),
        )
        group.reset()
        self.ledger.append(trade)
        self._log.info(
            "trade_closed",
            extra={
                "symbol": trade.symbol,
                "side": trade.side,
                "qty": trade.qty,
                "entry_price": trade.entry_price,
                "exit_price": trade.exit_price,
                "realized_pnl": trade.realized_pnl,
            },
        )
        if self._on_trade_closed:
            self._on_trade_closed(trade)
        return trade

    def group(self, symbol: str) -> Optional[MatchGroup]:
        return self._groups.get(self._key(symbol))

    def in_flight(self) -> Tuple[List[GroupFill], List[GroupFill]]:
        opening: List[GroupFill] = []
        closing: List[GroupFill] = []
        for key in sorted(self._groups):
            opening.extend(self._groups[key].opening_fills)
            closing.extend(self._groups[key].closing_fills)
        return opening, closing

    def discard(self) -> int:
        count = sum(len(g.opening_fills) + len(g.closing_fills) for g in self._groups.values())
        self._groups.clear()
        return count
