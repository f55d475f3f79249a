"""Data quality checks for fetched candle series.

Detects gaps (missing bars) and price anomalies, and condenses them into a
0-100 score. A low score does not stop a backtest; it marks the result as
lower confidence because a gap may hide exactly the bar that hit a target.
"""

from dataclasses import dataclass
from datetime import datetime

import numpy as np

from tradereplay.services.data.candles import Candle, candles_to_dataframe, timeframe_delta

# A step wider than this many intervals counts as a gap
GAP_INTERVAL_MULTIPLIER = 1.5
# Close-to-close moves above this fraction count as anomalies
ANOMALY_MOVE_PCT = 0.20

MAX_GAP_PENALTY = 20.0
MAX_ANOMALY_PENALTY = 10.0


@dataclass
class CandleGap:
    """Missing stretch between two consecutive candles."""

    start: datetime
    end: datetime
    missing_bars: int


def find_gaps(candles: list[Candle], timeframe: str) -> list[CandleGap]:
    """All steps between consecutive candles wider than 1.5x the bar interval."""
    if len(candles) < 2:
        return []

    interval = timeframe_delta(timeframe)
    df = candles_to_dataframe(candles)
    steps = df.index.to_series().diff()

    gaps: list[CandleGap] = []
    for prev_ts, ts, step in zip(df.index[:-1], df.index[1:], steps.iloc[1:]):
        if step > interval * GAP_INTERVAL_MULTIPLIER:
            gaps.append(CandleGap(
                start=prev_ts.to_pydatetime(),
                end=ts.to_pydatetime(),
                missing_bars=int(step / interval) - 1,
            ))
    return gaps


def count_anomalies(candles: list[Candle]) -> int:
    """Close-to-close moves larger than 20%."""
    if len(candles) < 2:
        return 0
    closes = np.array([c.close for c in candles], dtype=float)
    moves = np.abs(np.diff(closes) / closes[:-1])
    return int(np.count_nonzero(moves > ANOMALY_MOVE_PCT))


def score_series(candles: list[Candle], timeframe: str) -> float:
    """Quality score 0-100. Empty series score 0.

    Starts at 100, minus up to 20 points for gaps and up to 10 points for
    anomalies, each proportional to their share of the series.
    """
    if not candles:
        return 0.0

    n = len(candles)
    gap_penalty = min(MAX_GAP_PENALTY, len(find_gaps(candles, timeframe)) / n * 100)
    anomaly_penalty = min(MAX_ANOMALY_PENALTY, count_anomalies(candles) / n * 100)

    return float(max(0.0, min(100.0, round(100.0 - gap_penalty - anomaly_penalty, 1))))
