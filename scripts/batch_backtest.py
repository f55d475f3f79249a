"""Batch backtesting — replay a list of trade signals and summarize the outcomes.

Usage:
    python scripts/batch_backtest.py --signals signals/week12.json
    python scripts/batch_backtest.py --signals signals/week12.json --provider yfinance --timeframe 1d
    python scripts/batch_backtest.py --signals signals/week12.json --workers 8 --output results/week12.json
"""

import argparse
import asyncio
import json
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from tradereplay.config import settings
from tradereplay.errors import BacktestError, InvalidInputError
from tradereplay.services.backtest.batch import BatchItem, run_backtests
from tradereplay.services.backtest.metrics import summarize_results
from tradereplay.services.backtest.signal import BacktestInput
from tradereplay.services.backtest.validation import validate_input
from tradereplay.services.data.candles import Candle
from tradereplay.services.data.chunking import fetch_candle_series
from tradereplay.services.data.feeds import get_provider

logger = logging.getLogger(__name__)

DEFAULT_TIMEFRAME = "1h"

_signal_list = TypeAdapter(list[BacktestInput])


def load_signals(path: str) -> list[BacktestInput]:
    return _signal_list.validate_json(Path(path).read_text())


def format_summary_table(items: list[BatchItem], summary: dict) -> str:
    """Format batch outcomes as a markdown summary table."""
    lines = []
    lines.append("# Batch Backtest Results")
    lines.append("")
    lines.append(f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}")
    lines.append("")
    lines.append("| Trade | Symbol | Dir | Status | Targets | Stop | P/L | P/L% | Minutes |")
    lines.append("|-------|--------|-----|--------|---------|------|-----|------|---------|")

    for item in items:
        trade_id = item.signal.trade_id or "-"
        if item.result is None:
            lines.append(
                f"| {trade_id} | {item.signal.symbol} | {item.signal.direction.value} | "
                f"ERROR | - | - | - | - | - |"
            )
            continue

        r = item.result
        lines.append(
            f"| {trade_id} | {r.symbol} | {r.direction} | {r.status.value} | "
            f"{','.join(r.targets_hit) or '-'} | {'yes' if r.stop_loss_hit else '-'} | "
            f"{r.profit_loss_usd:+.2f} | {r.profit_loss_percent:+.2f} | "
            f"{r.trade_duration_minutes} |"
        )

    errors = sum(1 for item in items if item.result is None)

    lines.append("")
    lines.append("## Summary")
    lines.append("")
    if summary["total_trades"] > 0:
        lines.append(
            f"- **Runs**: {summary['total_trades']} backtested, {errors} errors"
        )
        lines.append(
            f"- **Outcomes**: {summary['successful_trades']} success, "
            f"{summary['failed_trades']} stopped, {summary['expired_trades']} expired, "
            f"{summary['invalid_trades']} invalid"
        )
        lines.append(f"- **Success Rate**: {summary['success_rate_pct']:.1f}%")
        lines.append(f"- **Total P/L**: {summary['total_profit_loss_usd']:+.2f}")
        lines.append(
            f"- **Avg Win / Loss**: {summary['avg_profit_usd']:+.2f} / "
            f"{summary['avg_loss_usd']:+.2f} (ratio {summary['win_loss_ratio']:.2f})"
        )
        lines.append(
            f"- **Hit Rates**: TP1 {summary['tp1_hit_rate_pct']:.1f}%, "
            f"TP2 {summary['tp2_hit_rate_pct']:.1f}%, TP3 {summary['tp3_hit_rate_pct']:.1f}%, "
            f"Stop {summary['stop_loss_hit_rate_pct']:.1f}%"
        )
        lines.append(f"- **Partial Fills**: {summary['partial_fills']}")
    else:
        lines.append("- No successful runs.")

    return "\n".join(lines)


async def fetch_jobs(
    signals: list[BacktestInput], provider_name: str, timeframe: str | None
) -> tuple[list[tuple[BacktestInput, list[Candle]]], list[BatchItem], dict[int, tuple]]:
    """Fetch candles for each signal, one at a time.

    Invalid signals are passed through with no candles so the engine reports
    them as ``invalid``. Signals whose data cannot be fetched become errors.
    Also returns (source, resolution, quality score) per fetched signal, keyed
    by ``id(signal)``.
    """
    provider = get_provider(provider_name)
    jobs: list[tuple[BacktestInput, list[Candle]]] = []
    failed: list[BatchItem] = []
    provenance: dict[int, tuple] = {}

    for number, signal in enumerate(signals, start=1):
        label = f"[{number}/{len(signals)}] {signal.trade_id or '-'} {signal.symbol}"
        try:
            validate_input(signal)
        except InvalidInputError as e:
            print(f"{label} ... INVALID: {e}")
            jobs.append((signal, []))
            continue

        tf = timeframe or signal.timeframe or DEFAULT_TIMEFRAME
        t0 = time.time()
        try:
            series = await fetch_candle_series(
                signal.symbol, tf, signal.entry_timestamp, signal.expires_at, provider=provider
            )
        except (BacktestError, ValueError) as e:
            print(f"{label} ... ERROR: {e} ({time.time() - t0:.1f}s)")
            failed.append(BatchItem(signal=signal, error=str(e)))
            continue

        flag = " (low confidence)" if series.low_confidence else ""
        print(
            f"{label} ... {len(series.candles)} candles, "
            f"quality {series.data_quality_score:.0f}%{flag} ({time.time() - t0:.1f}s)"
        )
        jobs.append((signal, series.candles))
        provenance[id(signal)] = (provider_name, tf, series.data_quality_score)

    return jobs, failed, provenance


async def run_batch(args: argparse.Namespace) -> int:
    """Fetch, replay and report. Returns the process exit code."""
    try:
        signals = load_signals(args.signals)
    except ValidationError as e:
        print(f"Invalid signals file: {e}", file=sys.stderr)
        return 1

    if not signals:
        print("No signals to run.", file=sys.stderr)
        return 1

    print(f"Batch backtest: {len(signals)} signals via {args.provider}")
    print()

    batch_start = time.time()
    jobs, failed, provenance = await fetch_jobs(signals, args.provider, args.timeframe)
    items = run_backtests(jobs, max_workers=args.workers)
    for item in items:
        if item.result is not None and id(item.signal) in provenance:
            item.result = item.result.with_data(*provenance[id(item.signal)])

    # Restore input order across fetched and failed signals
    order = {id(signal): i for i, signal in enumerate(signals)}
    items = sorted(items + failed, key=lambda item: order[id(item.signal)])

    results = [item.result for item in items if item.result is not None]
    summary = summarize_results(results)

    batch_elapsed = time.time() - batch_start
    print(f"\nBatch complete: {len(items)} signals in {batch_elapsed:.1f}s")

    table = format_summary_table(items, summary)
    print()
    print(table)

    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w") as f:
            json.dump({
                "provider": args.provider,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "summary": summary,
                "results": [
                    item.result.to_dict() if item.result is not None
                    else {"trade_id": item.signal.trade_id, "symbol": item.signal.symbol,
                          "error": item.error}
                    for item in items
                ],
            }, f, indent=2)
        print(f"\nJSON: {output}")

    return 0


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    parser = argparse.ArgumentParser(
        description="Batch backtesting — replay a list of trade signals"
    )
    parser.add_argument(
        "--signals", required=True,
        help="Path to a JSON file holding a list of trade signals",
    )
    parser.add_argument(
        "--provider", default=settings.candle_provider,
        choices=["ccxt", "yfinance"],
        help=f"Candle provider (default: {settings.candle_provider})",
    )
    parser.add_argument(
        "--timeframe",
        choices=["1m", "5m", "15m", "1h", "4h", "1d", "1w"],
        help=f"Candle resolution for every signal (default: each signal's, else {DEFAULT_TIMEFRAME})",
    )
    parser.add_argument(
        "--workers", type=int, default=settings.batch_max_workers,
        help=f"Parallel backtest workers (default: {settings.batch_max_workers})",
    )
    parser.add_argument(
        "--output",
        help="Also write per-signal results and the summary to this JSON file",
    )
    args = parser.parse_args()

    sys.exit(asyncio.run(run_batch(args)))


if __name__ == "__main__":
    main()
