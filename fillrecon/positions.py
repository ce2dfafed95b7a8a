from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fillrecon.events import PositionSnapshot


class PositionTracker:
    """Best-effort cache of the latest position per symbol.

    Only used as a fallback signal when classifying fills. The position stream
    can lag the order stream, so nothing here is authoritative.
    """

    def __init__(self) -> None:
        self._log = logging.getLogger("positions")
        self._positions: Dict[str, PositionSnapshot] = {}

    def update(self, snapshot: PositionSnapshot) -> None:
        if snapshot.signed_size == 0:
            removed = self._positions.pop(snapshot.symbol, None)
            if removed is not None:
                self._log.info("position_closed", extra={"symbol": snapshot.symbol})
            return
        self._positions[snapshot.symbol] = snapshot
        self._log.debug(
            "position_updated",
            extra={"symbol": snapshot.symbol, "side": snapshot.side, "size": snapshot.signed_size},
        )

    def lookup(self, symbol: str) -> Optional[PositionSnapshot]:
        return self._positions.get(symbol)

    def positions(self) -> List[PositionSnapshot]:
        return [self._positions[s] for s in sorted(self._positions)]

    def clear(self) -> None:
        self._positions.clear()
