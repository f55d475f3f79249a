"""Shared test fixtures and builders."""

from datetime import datetime, timedelta, timezone

import pytest

from tradereplay.services.backtest.signal import BacktestInput
from tradereplay.services.data.candles import Candle

ENTRY_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_signal(**kwargs) -> BacktestInput:
    """Helper to create test signals with sensible defaults (a BTC long)."""
    defaults = {
        "symbol": "BTC",
        "direction": "long",
        "entry_price": 100000.0,
        "entry_timestamp": ENTRY_TIME,
        "tp1_price": 102000.0,
        "tp1_allocation": 30.0,
        "tp2_price": 104000.0,
        "tp2_allocation": 40.0,
        "tp3_price": 106000.0,
        "tp3_allocation": 30.0,
        "stop_loss_price": 98000.0,
        "timeframe_expiration_hours": 24,
        "timeframe": "1h",
        "trade_id": "t-1",
    }
    defaults.update(kwargs)
    return BacktestInput(**defaults)


def make_short_signal(**kwargs) -> BacktestInput:
    """Mirror image of make_signal: targets below entry, stop above."""
    defaults = {
        "direction": "short",
        "tp1_price": 98000.0,
        "tp2_price": 96000.0,
        "tp3_price": 94000.0,
        "stop_loss_price": 102000.0,
    }
    defaults.update(kwargs)
    return make_signal(**defaults)


def make_candle(
    hours: float,
    high: float,
    low: float,
    close: float | None = None,
    open: float | None = None,
    volume: float = 10.0,
) -> Candle:
    """Candle `hours` after ENTRY_TIME. Open/close default to the bar midpoint."""
    mid = (high + low) / 2
    return Candle(
        timestamp=ENTRY_TIME + timedelta(hours=hours),
        open=mid if open is None else open,
        high=high,
        low=low,
        close=mid if close is None else close,
        volume=volume,
    )


def flat_candles(n: int, price: float = 100000.0, start_hours: float = 0, spread: float = 500.0) -> list[Candle]:
    """n hourly candles hovering around price without reaching the default targets."""
    return [
        make_candle(start_hours + i, high=price + spread, low=price - spread, close=price)
        for i in range(n)
    ]


@pytest.fixture
def signal() -> BacktestInput:
    """Fresh default long signal for each test."""
    return make_signal()
