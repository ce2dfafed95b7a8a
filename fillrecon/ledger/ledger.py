from __future__ import annotations

import logging
from typing import Iterator, List, Tuple

from fillrecon.models import CompletedTrade


class TradeLedger:
    """Append-only record of completed trades, most recent last.

    Trades are frozen and the ledger offers no way to remove or replace one.
    """

    def __init__(self) -> None:
        self._log = logging.getLogger("ledger")
        self._trades: List[CompletedTrade] = []

    def append(self, trade: CompletedTrade) -> None:
        self._trades.append(trade)
        self._log.info(
            "trade_recorded",
            extra={
                "symbol": trade.symbol,
                "entry_price": trade.entry_price,
                "exit_price": trade.exit_price,
                "realized_pnl": trade.realized_pnl,
                "fees": trade.fees,
                "ledger_size": len(self._trades),
            },
        )

    def trades(self) -> Tuple[CompletedTrade, ...]:
        return tuple(self._trades)

    def __len__(self) -> int:
        return len(self._trades)

    def __iter__(self) -> Iterator[CompletedTrade]:
        return iter(tuple(self._trades))
