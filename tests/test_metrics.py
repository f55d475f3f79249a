"""Tests for aggregate performance statistics."""

import pytest

from tradereplay.services.backtest.engine import run_backtest
from tradereplay.services.backtest.metrics import summarize_results
from tradereplay.services.backtest.result import BacktestResult, BacktestStatus

from tests.conftest import flat_candles, make_candle, make_signal


def _result(status: BacktestStatus, pnl: float = 0.0, **kwargs) -> BacktestResult:
    return BacktestResult(
        symbol="BTC", direction="long", entry_price=100000.0,
        status=status, profit_loss_usd=pnl, **kwargs,
    )


class TestSummarizeResults:
    def test_empty(self):
        summary = summarize_results([])
        assert summary["total_trades"] == 0
        assert summary["success_rate_pct"] == 0.0
        assert summary["win_loss_ratio"] == 0.0

    def test_status_counts_and_success_rate(self):
        results = [
            _result(BacktestStatus.COMPLETED_SUCCESS, 4000, tp1_hit=True, tp2_hit=True, tp3_hit=True),
            _result(BacktestStatus.COMPLETED_SUCCESS, 4000, tp1_hit=True, tp2_hit=True, tp3_hit=True),
            _result(BacktestStatus.COMPLETED_FAILURE, -2000, stop_loss_hit=True),
            _result(BacktestStatus.EXPIRED, 600, tp1_hit=True),
            _result(BacktestStatus.INVALID),
        ]

        summary = summarize_results(results)

        assert summary["total_trades"] == 5
        assert summary["completed_trades"] == 3
        assert summary["successful_trades"] == 2
        assert summary["failed_trades"] == 1
        assert summary["expired_trades"] == 1
        assert summary["invalid_trades"] == 1
        assert summary["success_rate_pct"] == pytest.approx(200 / 3)
        assert summary["partial_fills"] == 1

    def test_profit_and_loss_figures(self):
        results = [
            _result(BacktestStatus.COMPLETED_SUCCESS, 4000),
            _result(BacktestStatus.EXPIRED, 1000),
            _result(BacktestStatus.COMPLETED_FAILURE, -2000),
        ]

        summary = summarize_results(results)

        assert summary["total_profit_loss_usd"] == pytest.approx(3000)
        assert summary["avg_profit_usd"] == pytest.approx(2500)
        assert summary["avg_loss_usd"] == pytest.approx(-2000)
        assert summary["largest_win_usd"] == 4000
        assert summary["largest_loss_usd"] == -2000
        assert summary["win_loss_ratio"] == pytest.approx(1.25)

    def test_hit_rates_exclude_invalid(self):
        results = [
            _result(BacktestStatus.EXPIRED, 600, tp1_hit=True),
            _result(BacktestStatus.COMPLETED_FAILURE, -2000, stop_loss_hit=True),
            _result(BacktestStatus.INVALID),
        ]

        summary = summarize_results(results)

        assert summary["tp1_hit_rate_pct"] == pytest.approx(50)
        assert summary["tp2_hit_rate_pct"] == 0
        assert summary["stop_loss_hit_rate_pct"] == pytest.approx(50)

    def test_with_engine_results(self):
        signal = make_signal()
        results = [
            run_backtest(signal, [make_candle(0, high=106500, low=99500)]),
            run_backtest(signal, [make_candle(0, high=100500, low=97000)]),
            run_backtest(signal, flat_candles(3)),
        ]

        summary = summarize_results(results)

        assert summary["successful_trades"] == 1
        assert summary["failed_trades"] == 1
        assert summary["expired_trades"] == 1
        assert summary["success_rate_pct"] == pytest.approx(50)
        assert summary["total_profit_loss_usd"] == pytest.approx(2000)
