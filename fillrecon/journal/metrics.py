from __future__ import annotations

import logging
from typing import Optional

from fillrecon.models import CompletedTrade, Metrics


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


class MetricsAccumulator:
    """Running performance metrics, updated one completed trade at a time.

    Winning and losing PnL are summed separately so ``avg_win`` and
    ``avg_loss`` never mix signs with the overall total.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._log = logger or logging.getLogger("metrics")
        self._metrics = Metrics()

    def record(self, trade: CompletedTrade) -> Metrics:
        prev = self._metrics
        pnl = float(trade.realized_pnl)

        total_trades = prev.total_trades + 1
        win_count = prev.win_count + (1 if pnl > 0 else 0)
        loss_count = prev.loss_count + (1 if pnl < 0 else 0)
        gross_win = prev.gross_win + (pnl if pnl > 0 else 0.0)
        gross_loss = prev.gross_loss + (pnl if pnl < 0 else 0.0)

        self._metrics = Metrics(
            total_trades=total_trades,
            win_count=win_count,
            loss_count=loss_count,
            total_pnl=prev.total_pnl + pnl,
            avg_win=_ratio(gross_win, win_count),
            avg_loss=_ratio(abs(gross_loss), loss_count),
            win_rate=_ratio(win_count, total_trades) * 100,
            loss_rate=_ratio(loss_count, total_trades) * 100,
            gross_win=gross_win,
            gross_loss=gross_loss,
            total_fees=prev.total_fees + float(trade.fees),
        )
        self._log.info(
            "metrics_updated",
            extra={
                "total_trades": total_trades,
                "total_pnl": self._metrics.total_pnl,
                "win_rate": self._metrics.win_rate,
            },
        )
        return self._metrics

    def current(self) -> Metrics:
        return self._metrics
