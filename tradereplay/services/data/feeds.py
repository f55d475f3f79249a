"""Shared provider singletons and the provider interface.

Providers hold lazily-initialized exchange clients, so reuse one instance per
process instead of constructing a new one per fetch.
"""

from datetime import datetime
from typing import Protocol

from tradereplay.services.data.candles import Candle
from tradereplay.services.data.ccxt_feed import CCXTCandleProvider
from tradereplay.services.data.yfinance_feed import YFinanceCandleProvider


class CandleProvider(Protocol):
    """Anything that can return candles in [start, end] for a symbol."""

    name: str

    async def fetch_candles(
        self, symbol: str, timeframe: str, start: datetime, end: datetime
    ) -> list[Candle]: ...


ccxt_provider = CCXTCandleProvider()
yfinance_provider = YFinanceCandleProvider()

PROVIDERS: dict[str, CandleProvider] = {
    "ccxt": ccxt_provider,
    "yfinance": yfinance_provider,
}


def get_provider(name: str) -> CandleProvider:
    """Look up a shared provider by name ('ccxt' or 'yfinance')."""
    try:
        return PROVIDERS[name]
    except KeyError:
        raise ValueError(
            f"Unknown candle provider {name!r} (expected one of {', '.join(PROVIDERS)})"
        ) from None
