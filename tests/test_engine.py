from __future__ import annotations

import json
import math
from typing import Any

from fillrecon.bus import EventBus
from fillrecon.config import EngineConfig
from fillrecon.engine import ReconciliationEngine
from fillrecon.models import CLOSING, OPENING, CompletedTrade, ReconciledSnapshot


def _order(order_id: str, status: str, side: str, cum_qty: Any, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "orderId": order_id,
        "symbol": "BTCUSDT",
        "side": side,
        "orderStatus": status,
        "qty": cum_qty,
        "cumExecQty": cum_qty,
        "closedPnl": "0",
    }
    payload.update(extra)
    return payload


def test_scenario_partial_then_fill_then_reduce_only_close() -> None:
    engine = ReconciliationEngine()

    e1 = engine.absorb(_order("1", "PartiallyFilled", "Buy", 2, qty=5))
    assert e1.skipped is None
    assert [p.order_id for p in engine.snapshot().pending_partials] == ["1"]

    e2 = engine.absorb(_order("1", "Filled", "Buy", 5, cumExecValue=500))
    assert e2.classification == OPENING
    snap = engine.snapshot()
    assert snap.pending_partials == ()
    assert len(snap.opening_fills) == 1
    assert snap.opening_fills[0].merged_partial is not None
    assert engine.matcher.group("BTCUSDT").opening_qty == 5  # type: ignore[union-attr]

    e3 = engine.absorb(_order("2", "Filled", "Sell", 5, cumExecValue=550, closedPnl=50, reduceOnly=True))
    assert e3.classification == CLOSING
    assert len(e3.completed_trades) == 1
    trade = e3.completed_trades[0]
    assert trade.entry_price == 100.0
    assert trade.exit_price == 110.0
    assert trade.realized_pnl == 50.0

    snap = engine.snapshot()
    assert snap.completed_trades == (trade,)
    assert snap.opening_fills == () and snap.closing_fills == ()
    assert snap.metrics.total_trades == 1
    assert snap.events_processed == 3


def test_sell_without_position_is_opening() -> None:
    engine = ReconciliationEngine()
    effects = engine.absorb(_order("9", "Filled", "Sell", 1, cumExecValue=100, reduceOnly=False))
    assert effects.classification == OPENING
    assert len(engine.snapshot().opening_fills) == 1


def test_position_snapshot_drives_classification() -> None:
    engine = ReconciliationEngine()
    engine.absorb_message({"topic": "position", "data": [{"symbol": "BTCUSDT", "side": "Buy", "size": "1"}]})
    assert len(engine.snapshot().positions) == 1

    effects = engine.absorb(_order("3", "Filled", "Sell", 1, cumExecValue=100))
    assert effects.classification == CLOSING


def test_metrics_after_win_and_loss() -> None:
    engine = ReconciliationEngine()
    engine.absorb(_order("1", "Filled", "Buy", 1, cumExecValue=100))
    engine.absorb(_order("2", "Filled", "Sell", 1, cumExecValue=150, closedPnl=50))
    engine.absorb(_order("3", "Filled", "Buy", 1, cumExecValue=100))
    effects = engine.absorb(_order("4", "Filled", "Sell", 1, cumExecValue=80, closedPnl=-20))

    m = effects.metrics
    assert m is not None
    assert (m.win_count, m.loss_count) == (1, 1)
    assert m.total_pnl == 30.0
    assert m.avg_win == 50.0
    assert m.avg_loss == 20.0
    assert m.win_rate == 50.0
    assert len(engine.ledger) == 2


def test_duplicate_terminal_fill_is_skipped() -> None:
    engine = ReconciliationEngine()
    fill = _order("1", "Filled", "Buy", 5, cumExecValue=500)
    engine.absorb(fill)
    effects = engine.absorb(fill)

    assert effects.skipped == "duplicate_terminal_fill"
    assert engine.matcher.group("BTCUSDT").opening_qty == 5  # type: ignore[union-attr]
    assert len(engine.snapshot().opening_fills) == 1


def test_duplicates_accumulate_when_dedupe_disabled() -> None:
    engine = ReconciliationEngine(EngineConfig(dedupe_terminal_fills=False))
    fill = _order("1", "Filled", "Buy", 5, cumExecValue=500)
    engine.absorb(fill)
    engine.absorb(fill)
    assert engine.matcher.group("BTCUSDT").opening_qty == 10  # type: ignore[union-attr]


def test_late_partial_after_terminal_is_skipped() -> None:
    engine = ReconciliationEngine()
    engine.absorb(_order("1", "Filled", "Buy", 5, cumExecValue=500))
    effects = engine.absorb(_order("1", "PartiallyFilled", "Buy", 2))
    assert effects.skipped == "late_partial"
    assert engine.snapshot().pending_partials == ()


def test_dedupe_window_evicts_oldest() -> None:
    engine = ReconciliationEngine(EngineConfig(dedupe_window=2))
    for oid in ("1", "2", "3"):
        engine.absorb(_order(oid, "Filled", "Buy", 0))
    again = engine.absorb(_order("1", "Filled", "Buy", 0))
    assert again.skipped is None
    still_seen = engine.absorb(_order("3", "Filled", "Buy", 0))
    assert still_seen.skipped == "duplicate_terminal_fill"


def test_zero_quantity_events_never_finalize() -> None:
    engine = ReconciliationEngine()
    for i in range(10):
        side = "Buy" if i % 2 == 0 else "Sell"
        effects = engine.absorb(_order(str(i), "Filled", side, "0", closedPnl=0 if side == "Buy" else 1))
        assert effects.completed_trades == ()
    assert engine.snapshot().completed_trades == ()


def test_single_slot_flushes_other_order_partial() -> None:
    engine = ReconciliationEngine(EngineConfig(partial_policy="single_slot"))
    engine.absorb(_order("1", "PartiallyFilled", "Buy", 2, avgPrice=100))
    engine.absorb(_order("2", "Filled", "Buy", 3, cumExecValue=330))

    group = engine.matcher.group("BTCUSDT")
    assert group is not None
    assert group.opening_qty == 5
    assert [f.event.order_id for f in group.opening_fills] == ["1", "2"]

    # Only the quantity filled after the flush is added
    effects = engine.absorb(_order("1", "Filled", "Buy", 5, cumExecValue=500))
    assert effects.skipped is None
    assert effects.classification == OPENING
    assert group.opening_qty == 8
    assert group.opening_fills[-1].event.exec_value == 300
    assert group.opening_fills[-1].merged_partial is not None

    again = engine.absorb(_order("1", "Filled", "Buy", 5, cumExecValue=500))
    assert again.skipped == "duplicate_terminal_fill"

    trade_fx = engine.absorb(_order("3", "Filled", "Sell", 8, cumExecValue=960, closedPnl=70, reduceOnly=True))
    trade = trade_fx.completed_trades[0]
    assert trade.qty == 8
    assert math.isclose(trade.entry_price, (200 + 330 + 300) / 8)
    assert trade.opening_order_ids == ("1", "2", "1")


def test_single_slot_reflushed_order_counts_each_unit_once() -> None:
    engine = ReconciliationEngine(EngineConfig(partial_policy="single_slot"))
    engine.absorb(_order("1", "PartiallyFilled", "Buy", 2, avgPrice=100))
    engine.absorb(_order("2", "Filled", "Buy", 3, cumExecValue=330))
    engine.absorb(_order("1", "PartiallyFilled", "Buy", 4, avgPrice=100))
    engine.absorb(_order("3", "Filled", "Buy", 1, cumExecValue=110))

    group = engine.matcher.group("BTCUSDT")
    assert group is not None
    assert group.opening_qty == 8
    assert [f.event.order_id for f in group.opening_fills] == ["1", "2", "1", "3"]

    effects = engine.absorb(_order("1", "Filled", "Buy", 4, avgPrice=100))
    assert effects.skipped == "already_counted"
    assert group.opening_qty == 8
    assert engine.snapshot().pending_partials == ()


def test_new_and_unknown_statuses_are_ignored() -> None:
    engine = ReconciliationEngine()
    assert engine.absorb(_order("1", "New", "Buy", 0)).skipped == "status_ignored"
    assert engine.absorb(_order("1", "Cancelled", "Buy", 0)).skipped == "status_ignored"
    snap = engine.snapshot()
    assert snap.opening_fills == () and snap.pending_partials == ()


def test_malformed_event_does_not_mutate_state() -> None:
    engine = ReconciliationEngine()
    engine.absorb(_order("1", "Filled", "Buy", 1, cumExecValue=100))
    before = engine.snapshot()

    effects = engine.absorb({"unexpected": True})
    assert effects.skipped == "unrecognized"
    results = engine.absorb_message("{broken")
    assert [r.skipped for r in results] == ["unrecognized"]

    after = engine.snapshot()
    assert after.opening_fills == before.opening_fills
    assert after.completed_trades == before.completed_trades


def test_internal_failure_never_escapes(monkeypatch) -> None:
    engine = ReconciliationEngine()

    def boom(*args: Any, **kwargs: Any) -> None:
        raise RuntimeError("boom")

    monkeypatch.setattr(engine.matcher, "absorb", boom)
    effects = engine.absorb(_order("1", "Filled", "Buy", 1, cumExecValue=100))
    assert effects.skipped == "internal_error"


def test_bus_receives_trades_and_snapshots() -> None:
    bus = EventBus()
    seen: list[str] = []
    snapshots: list[ReconciledSnapshot] = []

    def on_trade(t: CompletedTrade) -> None:
        seen.append("trade")

    def on_snapshot(s: ReconciledSnapshot) -> None:
        seen.append("snapshot")
        snapshots.append(s)

    def broken(s: ReconciledSnapshot) -> None:
        raise ValueError("render failed")

    bus.subscribe(CompletedTrade, on_trade)
    bus.subscribe(ReconciledSnapshot, on_snapshot)
    bus.subscribe(ReconciledSnapshot, broken)

    engine = ReconciliationEngine(bus=bus)
    engine.absorb(_order("1", "Filled", "Buy", 1, cumExecValue=100))
    engine.absorb(_order("2", "Filled", "Sell", 1, cumExecValue=110, closedPnl=10))

    assert seen == ["snapshot", "trade", "snapshot"]
    assert snapshots[-1].metrics.total_trades == 1
    assert snapshots[-1].last_update is not None


def test_snapshot_serializes_to_json() -> None:
    engine = ReconciliationEngine()
    engine.absorb_message({"topic": "position", "data": {"symbol": "BTCUSDT", "side": "Buy", "size": "1"}})
    engine.absorb(_order("1", "PartiallyFilled", "Buy", 1))
    engine.absorb(_order("2", "Filled", "Buy", 1, cumExecValue=100))

    data = json.loads(json.dumps(engine.snapshot().to_dict()))
    assert data["positions"][0]["symbol"] == "BTCUSDT"
    assert data["opening_fills"][0]["event"]["order_id"] == "2"
    assert data["pending_partials"][0]["order_id"] == "1"


def test_reset_discards_state() -> None:
    engine = ReconciliationEngine()
    engine.absorb(_order("1", "PartiallyFilled", "Buy", 1))
    engine.absorb(_order("2", "Filled", "Buy", 1, cumExecValue=100))
    engine.reset()

    snap = engine.snapshot()
    assert snap.pending_partials == ()
    assert snap.opening_fills == ()
    assert snap.events_processed == 0
    # Order ids seen before the reset are accepted again
    assert engine.absorb(_order("2", "Filled", "Buy", 1, cumExecValue=100)).skipped is None
