"""CLI for replaying one trade signal against historical candles.

Usage:
    python scripts/backtest.py --signal signals/btc-long.json
    python scripts/backtest.py --signal signals/btc-long.json --provider ccxt --timeframe 15m
    python scripts/backtest.py --signal signals/aapl.json --provider yfinance --json
    python scripts/backtest.py --signal signals/btc-long.json --candles data/btc_1h.csv

Exit codes:
    0  backtest ran
    1  signal failed validation
    2  no usable candle data
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import pandas as pd
from pydantic import ValidationError

from tradereplay.config import settings
from tradereplay.errors import BacktestError, DataUnavailableError, InvalidInputError
from tradereplay.services.backtest.engine import run_backtest
from tradereplay.services.backtest.result import BacktestResult
from tradereplay.services.backtest.signal import BacktestInput
from tradereplay.services.backtest.validation import validate_input
from tradereplay.services.data.candles import Candle, candles_from_dataframe
from tradereplay.services.data.chunking import CandleSeries, fetch_candle_series
from tradereplay.services.data.feeds import get_provider
from tradereplay.services.data.quality import score_series

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INVALID_INPUT = 1
EXIT_NO_DATA = 2

DEFAULT_TIMEFRAME = "1h"


def format_report(result: BacktestResult, data: dict) -> str:
    """Format a backtest result as a readable console report."""
    lines = []
    sep = "=" * 68

    lines.append(sep)
    lines.append("  TradeReplay Backtest Report")
    lines.append(sep)
    lines.append(
        f"  Trade:       {result.trade_id or '-':<16s}"
        f"Symbol:  {result.symbol} ({result.direction})"
    )
    lines.append(
        f"  Status:      {result.status.value:<16s}"
        f"Candles: {result.candles_evaluated} evaluated"
    )
    lines.append("-" * 68)

    lines.append("  TARGETS")
    for name, hit, at, price in (
        ("TP1", result.tp1_hit, result.tp1_hit_at, result.tp1_hit_price),
        ("TP2", result.tp2_hit, result.tp2_hit_at, result.tp2_hit_price),
        ("TP3", result.tp3_hit, result.tp3_hit_at, result.tp3_hit_price),
        ("Stop", result.stop_loss_hit, result.stop_loss_hit_at, result.stop_loss_hit_price),
    ):
        if hit:
            lines.append(f"  {name:<6s} HIT   @ {price:>14,.2f}  {at.isoformat()}")
        else:
            lines.append(f"  {name:<6s} -")

    lines.append("")
    lines.append("  PROFIT / LOSS")
    lines.append(f"  Entry Price:            {result.entry_price:>14,.2f}")
    if result.exit_price is not None:
        lines.append(f"  Exit Price:             {result.exit_price:>14,.2f}")
    lines.append(f"  P/L per unit:           {result.profit_loss_usd:>+14,.2f}")
    lines.append(f"  P/L %:                  {result.profit_loss_percent:>+13.2f}%")
    lines.append(f"  Open Allocation:        {result.remaining_allocation:>13g}%")
    lines.append(f"  Duration:               {result.trade_duration_minutes:>10d} min")

    lines.append("")
    lines.append("  DATA")
    lines.append(
        f"  Quality:                {data['data_quality_score']:>13.0f}%"
        f"   Chunks: {data['chunks']}/{data['chunks_planned']}"
    )
    if data["low_confidence"]:
        lines.append("  ** Low confidence: partial or low-quality candle data **")

    for message in (result.error_message, result.warning_message):
        if message:
            lines.append("")
            lines.append(f"  NOTE: {message}")

    lines.append(sep)
    return "\n".join(lines)


def load_signal(path: str) -> BacktestInput:
    return BacktestInput.model_validate_json(Path(path).read_text())


def load_candles_csv(path: str) -> list[Candle]:
    """Read a timestamp,open,high,low,close,volume CSV."""
    df = pd.read_csv(path, parse_dates=["timestamp"])
    return sorted(candles_from_dataframe(df), key=lambda c: c.timestamp)


async def load_candles(
    args: argparse.Namespace, signal: BacktestInput, timeframe: str
) -> tuple[list[Candle], dict]:
    """Candles from CSV or the chunked fetcher, plus data-quality metadata."""
    if args.candles:
        candles = load_candles_csv(args.candles)
        if not candles:
            raise DataUnavailableError(f"No candles in {args.candles}")
        score = score_series(candles, timeframe)
        return candles, {
            "source": args.candles,
            "chunks": 1,
            "chunks_planned": 1,
            "data_quality_score": score,
            "low_confidence": score < settings.min_data_quality_score,
        }

    series: CandleSeries = await fetch_candle_series(
        signal.symbol,
        timeframe,
        signal.entry_timestamp,
        signal.expires_at,
        provider=get_provider(args.provider),
    )
    return series.candles, {
        "source": args.provider,
        "chunks": series.chunks,
        "chunks_planned": series.chunks_planned,
        "data_quality_score": series.data_quality_score,
        "low_confidence": series.low_confidence,
        "partial_data": str(series.partial_data) if series.partial_data else None,
    }


async def run(args: argparse.Namespace) -> int:
    """Validate, fetch, replay and print. Returns the process exit code."""
    try:
        signal = load_signal(args.signal)
        validate_input(signal)
    except (ValidationError, InvalidInputError) as e:
        print(f"Invalid signal: {e}", file=sys.stderr)
        return EXIT_INVALID_INPUT

    timeframe = args.timeframe or signal.timeframe or DEFAULT_TIMEFRAME

    try:
        candles, data = await load_candles(args, signal, timeframe)
        result = run_backtest(signal, candles).with_data(
            data["source"], timeframe, data["data_quality_score"]
        )
    except BacktestError as e:
        print(f"Data error: {e}", file=sys.stderr)
        return EXIT_NO_DATA

    if data["low_confidence"]:
        logger.warning(
            "Low-confidence data for %s: quality %.0f%%, %d/%d chunks",
            signal.symbol, data["data_quality_score"], data["chunks"], data["chunks_planned"],
        )

    if args.json:
        print(json.dumps({"result": result.to_dict(), "data": data}, indent=2))
    else:
        print(format_report(result, data))
    return EXIT_OK


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    parser = argparse.ArgumentParser(
        description="TradeReplay — replay a trade signal against historical candles"
    )
    parser.add_argument(
        "--signal", required=True,
        help="Path to a trade signal JSON file",
    )
    parser.add_argument(
        "--candles",
        help="Read candles from a CSV instead of fetching them",
    )
    parser.add_argument(
        "--provider", default=settings.candle_provider,
        choices=["ccxt", "yfinance"],
        help=f"Candle provider (default: {settings.candle_provider})",
    )
    parser.add_argument(
        "--timeframe",
        choices=["1m", "5m", "15m", "1h", "4h", "1d", "1w"],
        help=f"Candle resolution (default: the signal's, else {DEFAULT_TIMEFRAME})",
    )
    parser.add_argument(
        "--json", action="store_true",
        help="Output result as JSON instead of formatted report",
    )
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
