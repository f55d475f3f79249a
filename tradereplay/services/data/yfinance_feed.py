"""yfinance candle provider for stocks (ASX with .AX suffix, US, UK with .L).

No authentication required. Intraday history is limited by Yahoo to recent
periods, so long intraday ranges may come back partially empty.
"""

import asyncio
import logging
from datetime import datetime

import yfinance as yf

from tradereplay.errors import ProviderError
from tradereplay.services.data.candles import Candle, candles_from_dataframe, timeframe_delta

logger = logging.getLogger(__name__)

# Our timeframe -> yfinance interval. 4h has no yfinance equivalent.
INTERVAL_MAP = {
    "1m": "1m",
    "5m": "5m",
    "15m": "15m",
    "1h": "1h",
    "1d": "1d",
    "1w": "1wk",
}


class YFinanceCandleProvider:
    """Pull OHLCV history from yfinance."""

    name = "yfinance"

    def _fetch_sync(
        self, symbol: str, timeframe: str, start: datetime, end: datetime
    ) -> list[Candle]:
        interval = INTERVAL_MAP.get(timeframe)
        if interval is None:
            raise ProviderError(f"yfinance does not support timeframe {timeframe!r}")

        # yfinance treats end as exclusive
        try:
            df = yf.Ticker(symbol).history(
                start=start, end=end + timeframe_delta(timeframe), interval=interval
            )
        except Exception as e:
            raise ProviderError(f"yfinance history failed for {symbol}: {e}") from e

        if df.empty:
            logger.warning("No data returned for %s (%s to %s)", symbol, start, end)
            return []

        candles = candles_from_dataframe(df)
        return [c for c in candles if start <= c.timestamp <= end]

    async def fetch_candles(
        self, symbol: str, timeframe: str, start: datetime, end: datetime
    ) -> list[Candle]:
        """Fetch candles in [start, end] without blocking the event loop."""
        return await asyncio.to_thread(self._fetch_sync, symbol, timeframe, start, end)
