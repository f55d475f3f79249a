"""Backtest replay engine for trade signals.

Deterministic candle-by-candle simulation of an already-produced signal
(entry, three take-profits, stop-loss, validity window).
"""

from tradereplay.services.backtest.engine import PositionState, TargetState, run_backtest
from tradereplay.services.backtest.result import BacktestResult, BacktestStatus
from tradereplay.services.backtest.signal import BacktestInput, Direction
from tradereplay.services.backtest.validation import validate_input

__all__ = [
    "BacktestInput",
    "BacktestResult",
    "BacktestStatus",
    "Direction",
    "PositionState",
    "TargetState",
    "run_backtest",
    "validate_input",
]
