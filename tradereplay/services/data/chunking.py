"""Chunked candle fetching for arbitrarily long date ranges.

Large ranges are split into timeframe-sized chunks and fetched strictly one
after another with a pause in between, to stay under provider timeouts and
rate limits. A chunk that still fails after its retries is logged and skipped;
the caller gets whatever the other chunks returned.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import NamedTuple

from tradereplay.config import settings
from tradereplay.errors import DataUnavailableError, PartialDataError
from tradereplay.services.data.candles import Candle, ensure_utc
from tradereplay.services.data.feeds import CandleProvider, get_provider
from tradereplay.services.data.quality import score_series

logger = logging.getLogger(__name__)

# Longest window fetched in one request, per timeframe
MAX_CHUNK_DURATION: dict[str, timedelta] = {
    "1m": timedelta(days=7),
    "5m": timedelta(days=7),
    "15m": timedelta(days=7),
    "1h": timedelta(days=14),
    "4h": timedelta(days=30),
    "1d": timedelta(days=90),
    "1w": timedelta(days=365),
}
DEFAULT_CHUNK_DURATION = timedelta(days=7)


class ChunkWindow(NamedTuple):
    start: datetime
    end: datetime


@dataclass
class CandleSeries:
    """Concatenated, ascending candles for one symbol/timeframe/range."""

    symbol: str
    timeframe: str
    start: datetime
    end: datetime
    candles: list[Candle] = field(default_factory=list)
    chunks: int = 0  # chunks fetched successfully
    chunks_planned: int = 0
    failed_chunks: list[ChunkWindow] = field(default_factory=list)
    cancelled: bool = False
    partial_data: PartialDataError | None = None
    data_quality_score: float = 0.0

    @property
    def is_partial(self) -> bool:
        return self.partial_data is not None

    @property
    def low_confidence(self) -> bool:
        return self.is_partial or self.data_quality_score < settings.min_data_quality_score


def max_chunk_duration(timeframe: str) -> timedelta:
    return MAX_CHUNK_DURATION.get(timeframe, DEFAULT_CHUNK_DURATION)


def plan_chunks(start: datetime, end: datetime, timeframe: str) -> list[ChunkWindow]:
    """Split [start, end] into consecutive windows no longer than the timeframe's cap.

    Adjacent windows share their boundary timestamp; the merge step drops the
    duplicate candle.
    """
    if end <= start:
        raise ValueError(f"start ({start.isoformat()}) must be before end ({end.isoformat()})")

    size = max_chunk_duration(timeframe)
    windows: list[ChunkWindow] = []
    cursor = start
    while cursor < end:
        chunk_end = min(cursor + size, end)
        windows.append(ChunkWindow(cursor, chunk_end))
        cursor = chunk_end
    return windows


async def _pause(seconds: float) -> None:
    await asyncio.sleep(seconds)


class ChunkedFetchCoordinator:
    """Fetch a long candle range chunk by chunk from one provider.

    Rules:
    - Chunks are fetched sequentially, in order, never concurrently
    - A fixed delay separates consecutive chunks
    - Each chunk gets a bounded number of attempts with exponential backoff,
      and each attempt its own timeout
    - A chunk that exhausts its attempts is skipped, not fatal
    - Setting cancel_event abandons the remaining chunks
    """

    def __init__(
        self,
        provider: CandleProvider,
        delay_seconds: float | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._provider = provider
        self._delay = settings.chunk_delay_seconds if delay_seconds is None else delay_seconds
        self._max_attempts = max(1, max_attempts or settings.chunk_max_attempts)
        self._backoff = (
            settings.chunk_retry_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self._timeout = timeout_seconds or settings.request_timeout_seconds

    async def fetch(
        self,
        symbol: str,
        timeframe: str,
        start: datetime,
        end: datetime,
        cancel_event: asyncio.Event | None = None,
    ) -> CandleSeries:
        """Fetch every chunk of [start, end] and merge the results.

        Raises:
            DataUnavailableError: no chunk produced any candles.
        """
        start, end = ensure_utc(start), ensure_utc(end)
        windows = plan_chunks(start, end, timeframe)
        series = CandleSeries(
            symbol=symbol, timeframe=timeframe, start=start, end=end,
            chunks_planned=len(windows),
        )

        if len(windows) > 1:
            logger.info(
                "Large date range for %s (%s): %d chunks of up to %s",
                symbol, timeframe, len(windows), max_chunk_duration(timeframe),
            )

        collected: list[Candle] = []
        for number, window in enumerate(windows, start=1):
            if number > 1 and self._delay > 0:
                logger.debug("Waiting %.1fs before next chunk", self._delay)
                await _pause(self._delay)

            if cancel_event is not None and cancel_event.is_set():
                logger.warning(
                    "Fetch cancelled for %s after %d/%d chunks",
                    symbol, number - 1, len(windows),
                )
                series.cancelled = True
                break

            logger.info(
                "Fetching chunk %d/%d for %s: %s to %s",
                number, len(windows), symbol, window.start.isoformat(), window.end.isoformat(),
            )
            try:
                chunk = await self._fetch_chunk(symbol, timeframe, window, number, len(windows))
            except Exception as e:
                # Continue with next chunk instead of failing completely
                logger.error(
                    "Failed to fetch chunk %d/%d for %s (%s to %s): %s",
                    number, len(windows), symbol,
                    window.start.isoformat(), window.end.isoformat(), e,
                )
                series.failed_chunks.append(window)
                continue

            collected.extend(chunk)
            series.chunks += 1
            logger.info("Chunk %d/%d fetched: %d candles", number, len(windows), len(chunk))

        series.candles = merge_candles(collected)

        if not series.candles:
            raise DataUnavailableError(
                f"No candles for {symbol} ({timeframe}): requested {start.isoformat()} "
                f"to {end.isoformat()}, retrieved 0 candles "
                f"({series.chunks}/{series.chunks_planned} chunks succeeded)"
            )

        if series.failed_chunks or series.cancelled:
            skipped = series.chunks_planned - series.chunks - len(series.failed_chunks)
            message = (
                f"Partial data for {symbol} ({timeframe}): {len(series.failed_chunks)} chunk(s) "
                f"failed, {skipped} skipped by cancellation; retrieved "
                f"{series.candles[0].timestamp.isoformat()} to "
                f"{series.candles[-1].timestamp.isoformat()}"
            )
            series.partial_data = PartialDataError(message, list(series.failed_chunks))
            logger.warning("%s", message)

        series.data_quality_score = score_series(series.candles, timeframe)
        logger.info(
            "Pagination complete: %d candles for %s from %d/%d chunks (quality %.0f%%)",
            len(series.candles), symbol, series.chunks, series.chunks_planned,
            series.data_quality_score,
        )
        return series

    async def _fetch_chunk(
        self, symbol: str, timeframe: str, window: ChunkWindow, number: int, total: int
    ) -> list[Candle]:
        """One chunk with bounded retries. Re-raises the last error."""
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await asyncio.wait_for(
                    self._provider.fetch_candles(symbol, timeframe, window.start, window.end),
                    timeout=self._timeout,
                )
            except Exception as e:
                if attempt >= self._max_attempts:
                    raise
                wait = self._backoff * 2 ** (attempt - 1)
                logger.warning(
                    "Chunk %d/%d attempt %d/%d failed (%s), retrying in %.1fs",
                    number, total, attempt, self._max_attempts, e, wait,
                )
                await _pause(wait)
        return []


def merge_candles(candles: list[Candle]) -> list[Candle]:
    """Sort ascending and drop duplicate timestamps (first occurrence wins)."""
    unique: dict[datetime, Candle] = {}
    for candle in candles:
        unique.setdefault(candle.timestamp, candle)
    return sorted(unique.values(), key=lambda c: c.timestamp)


async def fetch_candle_series(
    symbol: str,
    timeframe: str,
    start: datetime,
    end: datetime,
    provider: CandleProvider | None = None,
    cancel_event: asyncio.Event | None = None,
) -> CandleSeries:
    """Fetch candles for [start, end] through the configured (or given) provider."""
    if provider is None:
        provider = get_provider(settings.candle_provider)
    coordinator = ChunkedFetchCoordinator(provider)
    return await coordinator.fetch(symbol, timeframe, start, end, cancel_event=cancel_event)
