"""OHLCV candle type and conversions to/from pandas."""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pandas as pd

from tradereplay.errors import MalformedCandleError

TIMEFRAME_DELTAS: dict[str, timedelta] = {
    "1m": timedelta(minutes=1),
    "5m": timedelta(minutes=5),
    "15m": timedelta(minutes=15),
    "1h": timedelta(hours=1),
    "4h": timedelta(hours=4),
    "1d": timedelta(days=1),
    "1w": timedelta(weeks=1),
}


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar. Timestamps are UTC, prices in quote currency."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


def timeframe_delta(timeframe: str) -> timedelta:
    """Bar interval for a timeframe string like '15m' or '1d'."""
    try:
        return TIMEFRAME_DELTAS[timeframe]
    except KeyError:
        raise ValueError(
            f"Unknown timeframe {timeframe!r} "
            f"(expected one of {', '.join(TIMEFRAME_DELTAS)})"
        ) from None


def ensure_utc(ts: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def check_candle(candle: Candle) -> None:
    """Raise MalformedCandleError if the bar's OHLCV values are impossible."""
    values = (candle.open, candle.high, candle.low, candle.close, candle.volume)
    if not all(math.isfinite(v) for v in values):
        raise MalformedCandleError(f"Non-finite value in candle at {candle.timestamp}")
    if candle.low <= 0:
        raise MalformedCandleError(
            f"Non-positive low {candle.low} in candle at {candle.timestamp}"
        )
    if candle.low > candle.high:
        raise MalformedCandleError(
            f"Low {candle.low} above high {candle.high} in candle at {candle.timestamp}"
        )
    if not (candle.low <= candle.open <= candle.high and candle.low <= candle.close <= candle.high):
        raise MalformedCandleError(
            f"Open/close outside [low, high] in candle at {candle.timestamp}"
        )
    if candle.volume < 0:
        raise MalformedCandleError(f"Negative volume in candle at {candle.timestamp}")


def candles_from_ccxt(rows: list[list]) -> list[Candle]:
    """Convert ccxt fetch_ohlcv rows ``[ms, o, h, l, c, v]`` to candles."""
    candles = []
    for ts_ms, o, h, l, cl, vol in rows:
        candles.append(Candle(
            timestamp=datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc),
            open=float(o),
            high=float(h),
            low=float(l),
            close=float(cl),
            volume=float(vol or 0.0),
        ))
    return candles


def candles_from_dataframe(df: pd.DataFrame) -> list[Candle]:
    """Build candles from a DatetimeIndex-ed OHLCV frame.

    Column names are matched case-insensitively, so both our own frames and
    yfinance's ``Open/High/Low/Close/Volume`` frames are accepted. A
    ``timestamp`` column is used as the index when present.
    """
    if df.empty:
        return []

    frame = df.rename(columns=str.lower)
    if "timestamp" in frame.columns:
        frame = frame.set_index("timestamp")

    index = pd.DatetimeIndex(pd.to_datetime(frame.index))
    if index.tz is None:
        index = index.tz_localize("UTC")
    else:
        index = index.tz_convert("UTC")

    volumes = frame["volume"] if "volume" in frame.columns else pd.Series(0.0, index=frame.index)

    candles = []
    for ts, o, h, l, cl, vol in zip(
        index, frame["open"], frame["high"], frame["low"], frame["close"], volumes
    ):
        candles.append(Candle(
            timestamp=ts.to_pydatetime(),
            open=float(o),
            high=float(h),
            low=float(l),
            close=float(cl),
            volume=float(vol) if not pd.isna(vol) else 0.0,
        ))
    return candles


def candles_to_dataframe(candles: list[Candle]) -> pd.DataFrame:
    """Inverse of candles_from_dataframe: OHLCV frame indexed by timestamp."""
    data = {
        "timestamp": [c.timestamp for c in candles],
        "open": [c.open for c in candles],
        "high": [c.high for c in candles],
        "low": [c.low for c in candles],
        "close": [c.close for c in candles],
        "volume": [c.volume for c in candles],
    }
    df = pd.DataFrame(data)
    df.set_index("timestamp", inplace=True)
    return df
