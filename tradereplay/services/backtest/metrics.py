"""Aggregate performance statistics across many backtest results."""

from tradereplay.services.backtest.result import BacktestResult, BacktestStatus


def summarize_results(results: list[BacktestResult]) -> dict:
    """Status counts, success rate, P/L distribution and per-target hit rates.

    Success rate is measured over completed trades only (stopped out or all
    targets hit); expired and invalid runs are counted but excluded from it.
    Invalid runs are also excluded from P/L and hit-rate figures.
    """
    counts = {status: 0 for status in BacktestStatus}
    for r in results:
        counts[r.status] += 1

    scored = [r for r in results if r.status != BacktestStatus.INVALID]
    completed = counts[BacktestStatus.COMPLETED_SUCCESS] + counts[BacktestStatus.COMPLETED_FAILURE]

    profits = [r.profit_loss_usd for r in scored if r.profit_loss_usd > 0]
    losses = [r.profit_loss_usd for r in scored if r.profit_loss_usd < 0]

    avg_profit = sum(profits) / len(profits) if profits else 0.0
    avg_loss = sum(losses) / len(losses) if losses else 0.0

    return {
        "total_trades": len(results),
        "completed_trades": completed,
        "successful_trades": counts[BacktestStatus.COMPLETED_SUCCESS],
        "failed_trades": counts[BacktestStatus.COMPLETED_FAILURE],
        "expired_trades": counts[BacktestStatus.EXPIRED],
        "invalid_trades": counts[BacktestStatus.INVALID],
        "partial_fills": sum(1 for r in scored if r.is_partial_fill),
        "success_rate_pct": (
            counts[BacktestStatus.COMPLETED_SUCCESS] / completed * 100 if completed else 0.0
        ),
        "total_profit_loss_usd": sum(r.profit_loss_usd for r in scored),
        "avg_profit_usd": avg_profit,
        "avg_loss_usd": avg_loss,
        "largest_win_usd": max(profits) if profits else 0.0,
        "largest_loss_usd": min(losses) if losses else 0.0,
        "win_loss_ratio": abs(avg_profit / avg_loss) if avg_loss else 0.0,
        "tp1_hit_rate_pct": _hit_rate(scored, "tp1_hit"),
        "tp2_hit_rate_pct": _hit_rate(scored, "tp2_hit"),
        "tp3_hit_rate_pct": _hit_rate(scored, "tp3_hit"),
        "stop_loss_hit_rate_pct": _hit_rate(scored, "stop_loss_hit"),
    }


def _hit_rate(results: list[BacktestResult], attr: str) -> float:
    if not results:
        return 0.0
    return sum(1 for r in results if getattr(r, attr)) / len(results) * 100
