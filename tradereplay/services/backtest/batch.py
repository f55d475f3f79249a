"""Run many independent backtests in parallel worker threads.

Each run owns its TargetState, so no locking is needed. Job order is preserved
in the output regardless of completion order.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Sequence

from tradereplay.config import settings
from tradereplay.errors import BacktestError
from tradereplay.services.backtest.engine import run_backtest
from tradereplay.services.backtest.result import BacktestResult
from tradereplay.services.backtest.signal import BacktestInput
from tradereplay.services.data.candles import Candle

logger = logging.getLogger(__name__)


@dataclass
class BatchItem:
    """Outcome of one job: a result, or the error that stopped it."""

    signal: BacktestInput
    result: BacktestResult | None = None
    error: str | None = None


def run_backtests(
    jobs: Sequence[tuple[BacktestInput, Sequence[Candle]]],
    max_workers: int | None = None,
) -> list[BatchItem]:
    """Backtest every (signal, candles) pair. A failing job never aborts the batch."""
    workers = max_workers or settings.batch_max_workers
    logger.info("Running %d backtests on %d workers", len(jobs), workers)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(run_backtest, signal, candles) for signal, candles in jobs]

        items: list[BatchItem] = []
        for (signal, _), future in zip(jobs, futures):
            try:
                items.append(BatchItem(signal=signal, result=future.result()))
            except BacktestError as e:
                logger.error("Backtest failed for %s (%s): %s", signal.trade_id or "-", signal.symbol, e)
                items.append(BatchItem(signal=signal, error=str(e)))
            except Exception as e:
                logger.exception(
                    "Unexpected error backtesting %s (%s)", signal.trade_id or "-", signal.symbol
                )
                items.append(BatchItem(signal=signal, error=f"{type(e).__name__}: {e}"))

    return items
