"""CCXT candle provider for crypto history.

Uses CCXT public endpoints — no authentication required for market data.
"""

import asyncio
import logging
from datetime import datetime

import ccxt

from tradereplay.config import settings
from tradereplay.errors import ProviderError
from tradereplay.services.data.candles import Candle, candles_from_ccxt

logger = logging.getLogger(__name__)


class CCXTCandleProvider:
    """Pull OHLCV history via CCXT.

    Tries the configured exchange first and falls back to a second one.
    Pages through ``fetch_ohlcv`` until the requested window is covered.
    """

    name = "ccxt"

    def __init__(
        self,
        exchange_id: str | None = None,
        fallback_id: str | None = None,
        quote_currency: str | None = None,
        page_limit: int | None = None,
    ) -> None:
        self._exchange_id = exchange_id or settings.exchange_id
        self._fallback_id = fallback_id or settings.exchange_fallback_id
        self._quote = quote_currency or settings.quote_currency
        self._page_limit = page_limit or settings.ohlcv_page_limit
        self._exchange: ccxt.Exchange | None = None
        self._initialized: bool = False

    def _init_exchange(self) -> None:
        """Lazy init — try the primary exchange, fall back to the secondary."""
        if self._initialized:
            return

        timeout_ms = int(settings.request_timeout_seconds * 1000)
        for exchange_id in (self._exchange_id, self._fallback_id):
            try:
                exchange = getattr(ccxt, exchange_id)({"enableRateLimit": True, "timeout": timeout_ms})
                exchange.load_markets()
                self._exchange = exchange
                logger.info("CCXT: Using %s", exchange_id)
                break
            except Exception as e:
                logger.warning("Exchange %s unavailable: %s", exchange_id, e)

        self._initialized = True

    def market_symbol(self, symbol: str) -> str:
        """BTC -> BTC/USDT; already-paired symbols pass through."""
        if "/" in symbol:
            return symbol
        return f"{symbol.upper()}/{self._quote}"

    def _fetch_sync(
        self, symbol: str, timeframe: str, start: datetime, end: datetime
    ) -> list[Candle]:
        """Synchronous paged fetch of candles in [start, end]."""
        self._init_exchange()
        if self._exchange is None:
            raise ProviderError(
                f"No exchange available ({self._exchange_id}, {self._fallback_id})"
            )

        pair = self.market_symbol(symbol)
        cursor = int(start.timestamp() * 1000)
        end_ms = int(end.timestamp() * 1000)
        rows: list[list] = []

        try:
            while cursor <= end_ms:
                page = self._exchange.fetch_ohlcv(
                    pair, timeframe, since=cursor, limit=self._page_limit
                )
                if not page:
                    break

                rows.extend(r for r in page if cursor <= r[0] <= end_ms)

                # Move cursor past the last candle
                last_ts = page[-1][0]
                if last_ts < cursor:
                    break
                cursor = last_ts + 1
        except ccxt.BaseError as e:
            raise ProviderError(f"{pair} {timeframe} fetch failed: {e}") from e

        return candles_from_ccxt(rows)

    async def fetch_candles(
        self, symbol: str, timeframe: str, start: datetime, end: datetime
    ) -> list[Candle]:
        """Fetch candles in [start, end]. ccxt is synchronous — run in a thread."""
        return await asyncio.to_thread(self._fetch_sync, symbol, timeframe, start, end)
