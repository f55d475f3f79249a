"""Trade replay engine. Walks candles one at a time and scores a signal.

Pure and synchronous: no I/O, no shared state. The only mutable state is the
TargetState created for each run, so independent runs can execute in parallel.

Intrabar ambiguity: an OHLC bar does not say whether its high or its low came
first. When one bar spans both the stop-loss and a take-profit, the stop-loss
is resolved first. This is the worst-case assumption and is intentional.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Sequence

from tradereplay.errors import DataUnavailableError, InvalidInputError, MalformedCandleError
from tradereplay.services.backtest.result import BacktestResult, BacktestStatus
from tradereplay.services.backtest.signal import BacktestInput
from tradereplay.services.backtest.validation import validate_input
from tradereplay.services.data.candles import Candle, check_candle, timeframe_delta

logger = logging.getLogger(__name__)

# Residual allocation below this is float noise from fractional percentages
ALLOCATION_EPSILON = 1e-9

# Gaps wider than this many bar intervals are reported in the result
GAP_WARNING_MULTIPLIER = 2


class PositionState(str, Enum):
    OPEN = "open"
    PARTIALLY_CLOSED = "partially_closed"
    CLOSED_BY_STOP = "closed_by_stop"
    CLOSED_BY_TARGETS = "closed_by_targets"
    EXPIRED = "expired"


STATUS_BY_STATE: dict[PositionState, BacktestStatus] = {
    PositionState.CLOSED_BY_STOP: BacktestStatus.COMPLETED_FAILURE,
    PositionState.CLOSED_BY_TARGETS: BacktestStatus.COMPLETED_SUCCESS,
    PositionState.EXPIRED: BacktestStatus.EXPIRED,
}


@dataclass
class TargetHit:
    hit: bool = False
    hit_at: datetime | None = None
    hit_price: float | None = None


@dataclass
class TargetState:
    """Per-run position state. remaining_allocation starts at 100 and only decreases."""

    tp1: TargetHit = field(default_factory=TargetHit)
    tp2: TargetHit = field(default_factory=TargetHit)
    tp3: TargetHit = field(default_factory=TargetHit)
    stop_loss: TargetHit = field(default_factory=TargetHit)
    remaining_allocation: float = 100.0
    profit_loss_usd: float = 0.0
    expired: bool = False

    @property
    def position_state(self) -> PositionState:
        # Fully realized counts as closed by targets even if TP3 was never
        # touched, e.g. a 50/50/0 split closes at TP2
        if self.stop_loss.hit:
            return PositionState.CLOSED_BY_STOP
        if self.remaining_allocation <= 0:
            return PositionState.CLOSED_BY_TARGETS
        if self.expired:
            return PositionState.EXPIRED
        if self.remaining_allocation < 100:
            return PositionState.PARTIALLY_CLOSED
        return PositionState.OPEN

    def target(self, name: str) -> TargetHit:
        return getattr(self, name)


def run_backtest(signal: BacktestInput, candles: Sequence[Candle]) -> BacktestResult:
    """Replay a trade signal against an ascending candle sequence.

    Steps:
    1. Validate the signal (failure short-circuits to an ``invalid`` result)
    2. Skip candles before entry; stop at the first candle past expiry
    3. Per candle: stop-loss first, then TP1 -> TP2 -> TP3
    4. Mark any open allocation to the last close (expiry)
    5. Derive the terminal status from the final position state

    Raises:
        DataUnavailableError: no candle falls inside the trade window.
        MalformedCandleError: a candle has impossible OHLC values or is out of order.
    """
    try:
        validate_input(signal)
    except InvalidInputError as e:
        logger.warning("Invalid signal %s (%s): %s", signal.trade_id or "-", signal.symbol, e)
        return _invalid_result(signal, str(e))

    entry_time = signal.entry_timestamp
    deadline = signal.expires_at

    if not candles:
        raise DataUnavailableError(
            f"No candles for {signal.symbol}: requested {entry_time.isoformat()} "
            f"to {deadline.isoformat()}, retrieved none"
        )

    logger.info(
        "Starting backtest: %s %s on %s, entry=%s at %s, expires %s, %d candles",
        signal.trade_id or "-", signal.direction.value, signal.symbol,
        signal.entry_price, entry_time.isoformat(), deadline.isoformat(), len(candles),
    )

    state = TargetState()
    interval = timeframe_delta(signal.timeframe) if signal.timeframe else None
    warnings: list[str] = []
    previous: Candle | None = None
    last: Candle | None = None
    evaluated = 0

    for candle in candles:
        if previous is not None and candle.timestamp < previous.timestamp:
            raise MalformedCandleError(
                f"Candles out of order: {candle.timestamp.isoformat()} "
                f"follows {previous.timestamp.isoformat()}"
            )
        previous = candle

        if candle.timestamp < entry_time:
            continue
        if candle.timestamp > deadline:
            logger.info("Trade window closed at %s", deadline.isoformat())
            break

        check_candle(candle)

        if interval is not None and last is not None and not warnings:
            gap = candle.timestamp - last.timestamp
            if gap > interval * GAP_WARNING_MULTIPLIER:
                message = (
                    f"Data gap detected: {int(gap.total_seconds() // 60)} minutes between "
                    f"candles (expected {int(interval.total_seconds() // 60)} minutes)"
                )
                logger.warning("%s at %s", message, candle.timestamp.isoformat())
                warnings.append(message)

        last = candle
        evaluated += 1

        if _process_candle(signal, candle, state, first=evaluated == 1):
            break

    if last is None:
        raise DataUnavailableError(
            f"No candles for {signal.symbol} inside the trade window: requested "
            f"{entry_time.isoformat()} to {deadline.isoformat()}, retrieved "
            f"{candles[0].timestamp.isoformat()} to {candles[-1].timestamp.isoformat()}"
        )

    if state.remaining_allocation > 0:
        # Expired with allocation still open: mark to market at the last close
        state.profit_loss_usd += _pnl(signal, last.close, state.remaining_allocation)
        state.expired = True
        exit_price = last.close
        duration_minutes = int(signal.timeframe_expiration_hours * 60)

        hit_names = [t.name.upper() for t in signal.targets() if state.target(t.name).hit]
        if hit_names:
            warnings.append(
                f"Trade expired with partial fills: {', '.join(hit_names)} hit, "
                f"{state.remaining_allocation:g}% marked at last close {last.close}"
            )
    else:
        exit_price = _exit_price(state)
        duration_minutes = int((last.timestamp - entry_time).total_seconds() // 60)

    result = _build_result(
        signal, state,
        exit_price=exit_price,
        duration_minutes=duration_minutes,
        evaluated=evaluated,
        warning_message="; ".join(warnings) or None,
    )

    logger.info(
        "Backtest complete: %s on %s — %s, P/L=%.2f (%.2f%%), targets=%s, stop=%s, %d candles",
        result.trade_id or "-", result.symbol, result.status.value,
        result.profit_loss_usd, result.profit_loss_percent,
        ",".join(result.targets_hit) or "none", result.stop_loss_hit, evaluated,
    )
    return result


def _process_candle(
    signal: BacktestInput, candle: Candle, state: TargetState, first: bool = False
) -> bool:
    """Apply one bar: stop-loss first, then TP1 -> TP2 -> TP3.

    Returns True once the position is fully closed.
    """
    stop_touched = (
        candle.low <= signal.stop_loss_price
        if signal.is_long
        else candle.high >= signal.stop_loss_price
    )
    if stop_touched:
        remaining = state.remaining_allocation
        state.profit_loss_usd += _pnl(signal, signal.stop_loss_price, remaining)
        state.stop_loss = TargetHit(True, candle.timestamp, signal.stop_loss_price)
        state.remaining_allocation = 0.0
        logger.info(
            "Stop loss hit %sat %s (%g%% remaining closed at %s)",
            "on first candle " if first else "",
            candle.timestamp.isoformat(), remaining, signal.stop_loss_price,
        )
        return True

    targets = signal.targets()
    for target in targets:
        if state.remaining_allocation <= 0:
            break
        if state.target(target.name).hit:
            continue

        touched = candle.high >= target.price if signal.is_long else candle.low <= target.price
        if not touched:
            continue

        # Allocations may sum to 100 +/- ALLOCATION_TOLERANCE; the last target
        # closes whatever is left, earlier ones never realize more than remains
        if target is targets[-1]:
            realized = state.remaining_allocation
        else:
            realized = min(target.allocation, state.remaining_allocation)

        profit = _pnl(signal, target.price, realized)
        state.profit_loss_usd += profit
        state.remaining_allocation -= realized
        if state.remaining_allocation < ALLOCATION_EPSILON:
            state.remaining_allocation = 0.0
        setattr(state, target.name, TargetHit(True, candle.timestamp, target.price))

        logger.info(
            "%s hit at %s (%+.2f, %g%% remaining)",
            target.name.upper(), candle.timestamp.isoformat(),
            profit, state.remaining_allocation,
        )

    return state.remaining_allocation <= 0


def _pnl(signal: BacktestInput, price: float, allocation_pct: float) -> float:
    """P/L of closing allocation_pct of one unit at price."""
    move = price - signal.entry_price if signal.is_long else signal.entry_price - price
    return move * (allocation_pct / 100)


def _exit_price(state: TargetState) -> float | None:
    """Price of the event that closed the position."""
    if state.stop_loss.hit:
        return state.stop_loss.hit_price
    for hit in (state.tp3, state.tp2, state.tp1):
        if hit.hit:
            return hit.hit_price
    return None


def _build_result(
    signal: BacktestInput,
    state: TargetState,
    exit_price: float | None,
    duration_minutes: int,
    evaluated: int,
    warning_message: str | None,
) -> BacktestResult:
    status = STATUS_BY_STATE[state.position_state]
    return BacktestResult(
        symbol=signal.symbol,
        direction=signal.direction.value,
        entry_price=signal.entry_price,
        status=status,
        tp1_hit=state.tp1.hit,
        tp1_hit_at=state.tp1.hit_at,
        tp1_hit_price=state.tp1.hit_price,
        tp2_hit=state.tp2.hit,
        tp2_hit_at=state.tp2.hit_at,
        tp2_hit_price=state.tp2.hit_price,
        tp3_hit=state.tp3.hit,
        tp3_hit_at=state.tp3.hit_at,
        tp3_hit_price=state.tp3.hit_price,
        stop_loss_hit=state.stop_loss.hit,
        stop_loss_hit_at=state.stop_loss.hit_at,
        stop_loss_hit_price=state.stop_loss.hit_price,
        remaining_allocation=state.remaining_allocation,
        profit_loss_usd=state.profit_loss_usd,
        profit_loss_percent=state.profit_loss_usd / signal.entry_price * 100,
        exit_price=exit_price,
        trade_duration_minutes=duration_minutes,
        candles_evaluated=evaluated,
        trade_id=signal.trade_id,
        warning_message=warning_message,
        data_resolution=signal.timeframe,
    )


def _invalid_result(signal: BacktestInput, error_message: str) -> BacktestResult:
    """Zero P/L, nothing hit, allocation untouched."""
    return BacktestResult(
        symbol=signal.symbol,
        direction=signal.direction.value,
        entry_price=signal.entry_price,
        status=BacktestStatus.INVALID,
        trade_id=signal.trade_id,
        error_message=error_message,
    )
