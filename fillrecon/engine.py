from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

from fillrecon.bus import EventBus
from fillrecon.config import EngineConfig
from fillrecon.events import (
    STATUS_FILLED,
    STATUS_PARTIALLY_FILLED,
    OrderFillEvent,
    PositionSnapshot,
    Unrecognized,
)
from fillrecon.journal import MetricsAccumulator
from fillrecon.ledger import TradeLedger
from fillrecon.matching import GroupMatcher, PartialFillAggregator, classify
from fillrecon.models import Classification, CompletedTrade, Metrics, ReconciledSnapshot
from fillrecon.normalize import NormalizedEvent, normalize_event, normalize_message
from fillrecon.positions import PositionTracker


@dataclass(frozen=True)
class EngineEffects:
    event: Optional[NormalizedEvent]
    classification: Optional[Classification] = None
    completed_trades: Tuple[CompletedTrade, ...] = ()
    metrics: Optional[Metrics] = None
    skipped: Optional[str] = None


class ReconciliationEngine:
    """Reconcile a live stream of order updates into completed trades and metrics.

    Not thread-safe: every event is processed to completion before the next
    one is admitted. Producers on other threads go through ``EventQueue``.
    """

    def __init__(self, cfg: Optional[EngineConfig] = None, bus: Optional[EventBus] = None) -> None:
        self.cfg = cfg or EngineConfig()
        self.bus = bus
        self._log = logging.getLogger("engine")
        self._init_state()

    def _init_state(self) -> None:
        self.positions = PositionTracker()
        self.partials = PartialFillAggregator(self.cfg.partial_policy)
        self.ledger = TradeLedger()
        self.matcher = GroupMatcher(
            self.ledger,
            epsilon=self.cfg.epsilon,
            group_scope=self.cfg.group_scope,
            logger=logging.getLogger("groups"),
        )
        self.metrics = MetricsAccumulator(logger=logging.getLogger("metrics"))
        self._terminal_ids: Set[str] = set()
        self._terminal_order: Deque[str] = deque()
        self._flushed: Dict[str, OrderFillEvent] = {}
        self._events_processed = 0
        self._last_update: Optional[datetime] = None

    def absorb(self, payload: Any, topic: Optional[str] = None) -> EngineEffects:
        """Process one decoded payload and push the resulting snapshot to the bus."""
        try:
            event = normalize_event(payload, topic)
        except Exception:
            self._log.exception("normalize_failed")
            event = Unrecognized(reason="normalize_failed", payload=payload)
        return self._absorb_event(event)

    def absorb_message(self, message: Any) -> List[EngineEffects]:
        """Process a transport message, which may wrap several events."""
        try:
            events = normalize_message(message)
        except Exception:
            self._log.exception("normalize_failed")
            events = [Unrecognized(reason="normalize_failed", payload=message)]
        return [self._absorb_event(event) for event in events]

    def _absorb_event(self, event: NormalizedEvent) -> EngineEffects:
        try:
            effects = self._process(event)
        except Exception:
            self._log.exception("event_processing_failed", extra={"event_type": type(event).__name__})
            effects = EngineEffects(event=event, skipped="internal_error")
        self._events_processed += 1
        self._last_update = datetime.now(timezone.utc)
        self._publish(effects)
        return effects

    def _process(self, event: NormalizedEvent) -> EngineEffects:
        if isinstance(event, Unrecognized):
            self._log.warning("event_unrecognized", extra={"reason": event.reason})
            return EngineEffects(event=event, skipped="unrecognized")
        if isinstance(event, PositionSnapshot):
            self.positions.update(event)
            return EngineEffects(event=event)
        if event.status == STATUS_PARTIALLY_FILLED:
            return self._on_partial(event)
        if event.status == STATUS_FILLED:
            return self._on_filled(event)
        self._log.debug("status_ignored", extra={"order_id": event.order_id, "status": event.status})
        return EngineEffects(event=event, skipped="status_ignored")

    def _on_partial(self, event: OrderFillEvent) -> EngineEffects:
        if self._already_terminal(event.order_id):
            self._log.warning("late_partial_fill", extra={"order_id": event.order_id, "symbol": event.symbol})
            return EngineEffects(event=event, skipped="late_partial")
        self.partials.on_partial(event)
        return EngineEffects(event=event)

    def _on_filled(self, event: OrderFillEvent) -> EngineEffects:
        if self._already_terminal(event.order_id):
            self._log.warning("duplicate_terminal_fill", extra={"order_id": event.order_id, "symbol": event.symbol})
            return EngineEffects(event=event, skipped="duplicate_terminal_fill")

        merged, flushed = self.partials.on_filled(event)
        trades: List[CompletedTrade] = []

        for partial in flushed:
            partial_cls = classify(partial, self.positions.lookup(partial.symbol), self.cfg.epsilon)
            counted = self._uncounted(partial)
            if counted.exec_qty <= self.cfg.epsilon:
                continue
            if partial.order_id:
                self._flushed[partial.order_id] = partial
            trade = self.matcher.absorb(counted, partial_cls)
            if trade is not None:
                trades.append(trade)

        classification = classify(event, self.positions.lookup(event.symbol), self.cfg.epsilon)
        counted = self._uncounted(event)
        earlier = self._flushed.pop(event.order_id, None)
        self._remember_terminal(event.order_id)
        if earlier is not None and counted.exec_qty <= self.cfg.epsilon:
            self._log.info("terminal_fill_already_counted", extra={"order_id": event.order_id, "symbol": event.symbol})
            return EngineEffects(event=event, classification=classification, skipped="already_counted")

        trade = self.matcher.absorb(counted, classification, merged_partial=merged or earlier)
        if trade is not None:
            trades.append(trade)

        metrics: Optional[Metrics] = None
        for t in trades:
            metrics = self.metrics.record(t)
        return EngineEffects(event=event, classification=classification, completed_trades=tuple(trades), metrics=metrics)

    def _uncounted(self, event: OrderFillEvent) -> OrderFillEvent:
        """Strip the part of a cumulative fill that an earlier flush already put into a group."""
        earlier = self._flushed.get(event.order_id) if event.order_id else None
        if earlier is None:
            return event
        qty = max(event.exec_qty - earlier.exec_qty, 0.0)
        return replace(
            event,
            qty=qty,
            cum_exec_qty=qty,
            cum_exec_value=event.exec_value - earlier.exec_value if qty > 0 else 0.0,
            cum_exec_fee=event.cum_exec_fee - earlier.cum_exec_fee,
            closed_pnl=event.closed_pnl - earlier.closed_pnl,
        )

    def _already_terminal(self, order_id: str) -> bool:
        return bool(self.cfg.dedupe_terminal_fills and order_id and order_id in self._terminal_ids)

    def _remember_terminal(self, order_id: str) -> None:
        if not self.cfg.dedupe_terminal_fills or not order_id or order_id in self._terminal_ids:
            return
        if len(self._terminal_order) >= self.cfg.dedupe_window:
            self._terminal_ids.discard(self._terminal_order.popleft())
        self._terminal_order.append(order_id)
        self._terminal_ids.add(order_id)

    def _publish(self, effects: EngineEffects) -> None:
        if self.bus is None:
            return
        for trade in effects.completed_trades:
            self.bus.publish(trade)
        self.bus.publish(self.snapshot())

    def snapshot(self) -> ReconciledSnapshot:
        opening, closing = self.matcher.in_flight()
        return ReconciledSnapshot(
            positions=tuple(self.positions.positions()),
            opening_fills=tuple(opening),
            closing_fills=tuple(closing),
            pending_partials=tuple(self.partials.pending()),
            completed_trades=self.ledger.trades(),
            metrics=self.metrics.current(),
            events_processed=self._events_processed,
            last_update=self._last_update,
        )

    def reset(self) -> None:
        """Drop all in-flight and accumulated state, as on a fresh start."""
        dropped_partials = self.partials.discard()
        dropped_fills = self.matcher.discard()
        self._log.info(
            "engine_reset",
            extra={"dropped_partials": dropped_partials, "dropped_fills": dropped_fills, "trades": len(self.ledger)},
        )
        self._init_state()
