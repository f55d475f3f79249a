"""Tests for chunked candle fetching: planning, pacing, retries, merging."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, call, patch

import pytest

from tradereplay.config import settings
from tradereplay.errors import DataUnavailableError, PartialDataError
from tradereplay.services.data.candles import Candle
from tradereplay.services.data.chunking import (
    ChunkedFetchCoordinator,
    ChunkWindow,
    fetch_candle_series,
    merge_candles,
    plan_chunks,
)

START = datetime(2025, 3, 1, tzinfo=timezone.utc)
QUARTER_HOUR = timedelta(minutes=15)


def _bars(start: datetime, end: datetime, step: timedelta = QUARTER_HOUR) -> list[Candle]:
    candles = []
    ts = start
    while ts <= end:
        candles.append(Candle(ts, 100.0, 101.0, 99.0, 100.5, 1.0))
        ts += step
    return candles


class FakeProvider:
    """Serves synthetic 15m bars; failures are scripted per call number."""

    name = "fake"

    def __init__(self, fail_calls=(), empty=False, on_call=None):
        self.calls: list[ChunkWindow] = []
        self.fail_calls = set(fail_calls)
        self.empty = empty
        self.on_call = on_call

    async def fetch_candles(self, symbol, timeframe, start, end):
        self.calls.append(ChunkWindow(start, end))
        number = len(self.calls)
        if self.on_call is not None:
            self.on_call(number)
        if number in self.fail_calls:
            raise ConnectionError(f"boom on call {number}")
        if self.empty:
            return []
        return _bars(start, end)


class TestPlanChunks:
    def test_27_days_at_15m_is_4_chunks(self):
        windows = plan_chunks(START, START + timedelta(days=27), "15m")

        assert len(windows) == 4
        assert [w.end - w.start for w in windows] == [
            timedelta(days=7), timedelta(days=7), timedelta(days=7), timedelta(days=6),
        ]

    def test_windows_are_contiguous(self):
        windows = plan_chunks(START, START + timedelta(days=40), "1h")
        assert windows[0].start == START
        assert windows[-1].end == START + timedelta(days=40)
        for prev, nxt in zip(windows, windows[1:]):
            assert prev.end == nxt.start

    def test_short_range_is_one_chunk(self):
        assert len(plan_chunks(START, START + timedelta(days=2), "15m")) == 1

    def test_daily_chunks_are_90_days(self):
        windows = plan_chunks(START, START + timedelta(days=200), "1d")
        assert len(windows) == 3

    def test_unknown_timeframe_uses_default_size(self):
        assert len(plan_chunks(START, START + timedelta(days=14), "2h")) == 2

    def test_reject_empty_range(self):
        with pytest.raises(ValueError, match="must be before"):
            plan_chunks(START, START, "1h")


class TestMergeCandles:
    def test_sorted_and_deduplicated(self):
        a = Candle(START, 1, 2, 1, 1.5)
        b = Candle(START + QUARTER_HOUR, 1, 2, 1, 1.5)
        dup = Candle(START, 9, 9, 9, 9)

        merged = merge_candles([b, a, dup])

        assert merged == [a, b]

    def test_empty(self):
        assert merge_candles([]) == []


class TestChunkedFetch:
    @pytest.mark.asyncio
    async def test_27_days_fetches_4_chunks_with_delays(self):
        provider = FakeProvider()
        coordinator = ChunkedFetchCoordinator(provider, delay_seconds=2.0)
        end = START + timedelta(days=27)

        with patch("tradereplay.services.data.chunking._pause", new_callable=AsyncMock) as pause:
            series = await coordinator.fetch("BTC", "15m", START, end)

        assert len(provider.calls) == 4
        assert pause.await_args_list == [call(2.0)] * 3
        assert series.chunks == 4
        assert series.chunks_planned == 4
        assert series.is_partial is False

        timestamps = [c.timestamp for c in series.candles]
        assert timestamps == sorted(set(timestamps))
        assert timestamps[0] == START
        assert timestamps[-1] == end
        # Shared chunk boundaries are not duplicated
        assert len(series.candles) == 27 * 96 + 1
        assert series.data_quality_score == 100.0
        assert series.low_confidence is False

    @pytest.mark.asyncio
    async def test_chunks_fetched_in_order(self):
        provider = FakeProvider()
        coordinator = ChunkedFetchCoordinator(provider, delay_seconds=0)

        await coordinator.fetch("BTC", "15m", START, START + timedelta(days=20))

        starts = [w.start for w in provider.calls]
        assert starts == sorted(starts)

    @pytest.mark.asyncio
    async def test_failed_chunk_is_skipped(self):
        provider = FakeProvider(fail_calls={2, 3})
        coordinator = ChunkedFetchCoordinator(
            provider, delay_seconds=2.0, max_attempts=2, backoff_seconds=1.0
        )

        with patch("tradereplay.services.data.chunking._pause", new_callable=AsyncMock):
            series = await coordinator.fetch("BTC", "15m", START, START + timedelta(days=27))

        # Chunk 2 used calls 2 and 3; chunks 1, 3, 4 succeeded
        assert len(provider.calls) == 5
        assert series.chunks == 3
        assert series.failed_chunks == [provider.calls[1]]
        assert isinstance(series.partial_data, PartialDataError)
        assert series.partial_data.failed_windows == [provider.calls[1]]
        assert series.low_confidence is True
        assert series.candles[0].timestamp == START

    @pytest.mark.asyncio
    async def test_retry_recovers_with_backoff(self):
        provider = FakeProvider(fail_calls={1, 2})
        coordinator = ChunkedFetchCoordinator(
            provider, delay_seconds=0, max_attempts=3, backoff_seconds=1.5
        )

        with patch("tradereplay.services.data.chunking._pause", new_callable=AsyncMock) as pause:
            series = await coordinator.fetch("BTC", "15m", START, START + timedelta(days=1))

        assert len(provider.calls) == 3
        assert pause.await_args_list == [call(1.5), call(3.0)]
        assert series.chunks == 1
        assert series.is_partial is False

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failed_attempt(self):
        class SlowProvider(FakeProvider):
            async def fetch_candles(self, symbol, timeframe, start, end):
                self.calls.append(ChunkWindow(start, end))
                if len(self.calls) == 1:
                    await asyncio.sleep(5)
                return _bars(start, end)

        provider = SlowProvider()
        coordinator = ChunkedFetchCoordinator(
            provider, delay_seconds=0, max_attempts=2, backoff_seconds=0, timeout_seconds=0.05
        )

        with patch("tradereplay.services.data.chunking._pause", new_callable=AsyncMock):
            series = await coordinator.fetch("BTC", "15m", START, START + timedelta(days=1))

        assert len(provider.calls) == 2
        assert series.chunks == 1

    @pytest.mark.asyncio
    async def test_cancel_stops_remaining_chunks(self):
        cancel = asyncio.Event()
        provider = FakeProvider(on_call=lambda n: cancel.set())
        coordinator = ChunkedFetchCoordinator(provider, delay_seconds=2.0)

        with patch("tradereplay.services.data.chunking._pause", new_callable=AsyncMock):
            series = await coordinator.fetch(
                "BTC", "15m", START, START + timedelta(days=27), cancel_event=cancel
            )

        assert len(provider.calls) == 1
        assert series.cancelled is True
        assert series.chunks == 1
        assert series.is_partial is True
        assert series.candles[-1].timestamp == START + timedelta(days=7)

    @pytest.mark.asyncio
    async def test_no_candles_raises(self):
        coordinator = ChunkedFetchCoordinator(FakeProvider(empty=True), delay_seconds=0)

        with pytest.raises(DataUnavailableError, match="retrieved 0 candles"):
            await coordinator.fetch("BTC", "15m", START, START + timedelta(days=10))

    @pytest.mark.asyncio
    async def test_all_chunks_failing_raises(self):
        provider = FakeProvider(fail_calls=range(1, 10))
        coordinator = ChunkedFetchCoordinator(provider, delay_seconds=0, max_attempts=1)

        with pytest.raises(DataUnavailableError, match="0/2 chunks"):
            await coordinator.fetch("BTC", "15m", START, START + timedelta(days=10))

    @pytest.mark.asyncio
    async def test_naive_bounds_treated_as_utc(self):
        provider = FakeProvider()
        coordinator = ChunkedFetchCoordinator(provider, delay_seconds=0)

        series = await coordinator.fetch(
            "BTC", "15m", datetime(2025, 3, 1), datetime(2025, 3, 2)
        )

        assert series.start == START
        assert provider.calls[0].start.tzinfo == timezone.utc


class TestFetchCandleSeries:
    @pytest.mark.asyncio
    async def test_uses_given_provider(self):
        provider = FakeProvider()

        with patch("tradereplay.services.data.chunking._pause", new_callable=AsyncMock):
            series = await fetch_candle_series(
                "ETH", "15m", START, START + timedelta(days=8), provider=provider
            )

        assert series.symbol == "ETH"
        assert series.chunks == 2
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_defaults_to_configured_provider(self):
        provider = FakeProvider()

        with patch(
            "tradereplay.services.data.chunking.get_provider", return_value=provider
        ) as lookup:
            await fetch_candle_series("ETH", "15m", START, START + timedelta(days=1))

        lookup.assert_called_once_with(settings.candle_provider)
