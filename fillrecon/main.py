from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from fillrecon.bus import EventBus
from fillrecon.config import AppConfig, load_config
from fillrecon.engine import ReconciliationEngine
from fillrecon.feed import read_jsonl
from fillrecon.logging_setup import setup_logging
from fillrecon.models import CompletedTrade, Metrics


app = typer.Typer(add_completion=False)

TRADE_COLUMNS = [
    "symbol",
    "side",
    "qty",
    "opened_time",
    "time",
    "entry_price",
    "exit_price",
    "realized_pnl",
    "fees",
    "net_pnl",
]


def _load(config: Optional[str]) -> AppConfig:
    if config is None:
        return AppConfig()
    return load_config(config)


def _export_trades(path: Path, trades: tuple[CompletedTrade, ...]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(TRADE_COLUMNS)
        for t in trades:
            writer.writerow([getattr(t, col) for col in TRADE_COLUMNS])


def _format_metrics(m: Metrics) -> str:
    return (
        f"trades={m.total_trades} wins={m.win_count} losses={m.loss_count} "
        f"total_pnl={m.total_pnl:.2f} avg_win={m.avg_win:.2f} avg_loss={m.avg_loss:.2f} "
        f"win_rate={m.win_rate:.2f}% fees={m.total_fees:.2f}"
    )


@app.command()
def replay(
    input_file: str = typer.Option(..., "--input", "-i", help="JSON lines file of recorded transport messages"),
    config: Optional[str] = typer.Option(None, "--config", "-c"),
    trades_csv: Optional[str] = typer.Option(None, "--trades-csv", help="Write completed trades to this CSV"),
    snapshot_out: Optional[str] = typer.Option(None, "--snapshot-out", help="Write the final snapshot as JSON"),
    json_out: bool = typer.Option(False, "--json", help="Print the final snapshot as JSON instead of the summary"),
) -> None:
    """Replay a recorded order/position stream through a fresh engine."""
    input_path = Path(input_file)
    if not input_path.exists():
        typer.echo(f"input file not found: {input_file}")
        raise typer.Exit(code=1)

    cfg = _load(config)
    setup_logging(cfg.log)
    log = logging.getLogger("replay")

    bus = EventBus()
    engine = ReconciliationEngine(cfg.engine, bus=bus)

    def on_trade(trade: CompletedTrade) -> None:
        typer.echo(
            f"trade {trade.symbol} {trade.side} qty={trade.qty:g} "
            f"entry={trade.entry_price:.4f} exit={trade.exit_price:.4f} pnl={trade.realized_pnl:.2f}"
        )

    # stdout carries only the snapshot document in JSON mode
    if not json_out:
        bus.subscribe(CompletedTrade, on_trade)

    messages = 0
    skipped = 0
    for message in read_jsonl(input_path):
        messages += 1
        for effects in engine.absorb_message(message):
            if effects.skipped == "unrecognized":
                skipped += 1

    snap = engine.snapshot()
    log.info(
        "replay_complete",
        extra={"messages": messages, "events": snap.events_processed, "trades": len(snap.completed_trades)},
    )

    if trades_csv:
        _export_trades(Path(trades_csv), snap.completed_trades)
    if snapshot_out:
        out = Path(snapshot_out)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(snap.to_dict(), indent=2), encoding="utf-8")

    if json_out:
        typer.echo(json.dumps(snap.to_dict(), indent=2))
        return

    typer.echo(
        f"messages={messages} events={snap.events_processed} unrecognized={skipped} "
        f"in_flight_opening={len(snap.opening_fills)} in_flight_closing={len(snap.closing_fills)}"
    )
    typer.echo(_format_metrics(snap.metrics))


@app.command("check-config")
def check_config(config: str = typer.Option(..., "--config", "-c")) -> None:
    """Validate a config file and print the effective settings."""
    try:
        cfg = load_config(config)
    except Exception as e:
        typer.echo(f"invalid config: {e}")
        raise typer.Exit(code=1)
    typer.echo(json.dumps(cfg.model_dump(by_alias=True), indent=2))


if __name__ == "__main__":
    app()
