"""Trade signal validation. Runs once per backtest, before the candle loop."""

import math
import operator

from tradereplay.errors import InvalidInputError
from tradereplay.services.backtest.signal import BacktestInput
from tradereplay.services.data.candles import TIMEFRAME_DELTAS

# Allocations are percentages; 33.33 + 33.33 + 33.34 must pass
ALLOCATION_TOLERANCE = 0.01


def validate_input(signal: BacktestInput) -> BacktestInput:
    """Check every trade invariant. Returns the signal or raises InvalidInputError.

    Checks run in a fixed order and the first violation is reported:
    1. All prices are positive
    2. Allocations are non-negative
    3. Allocations sum to 100%
    4. Price ordering matches the direction
       long:  stop < entry < tp1 < tp2 < tp3
       short: stop > entry > tp1 > tp2 > tp3
    5. Expiration window is positive
    6. Candle timeframe, when given, is a known resolution
    """
    prices = {
        "Entry price": signal.entry_price,
        "TP1 price": signal.tp1_price,
        "TP2 price": signal.tp2_price,
        "TP3 price": signal.tp3_price,
        "Stop loss price": signal.stop_loss_price,
    }
    for label, price in prices.items():
        if not math.isfinite(price) or price <= 0:
            raise InvalidInputError(f"{label} must be positive (got {price})")

    allocations = (signal.tp1_allocation, signal.tp2_allocation, signal.tp3_allocation)
    if any(not math.isfinite(a) or a < 0 for a in allocations):
        raise InvalidInputError(f"Allocations must be non-negative (got {list(allocations)})")

    total = sum(allocations)
    if abs(total - 100) > ALLOCATION_TOLERANCE:
        raise InvalidInputError(f"Allocations must sum to 100% (got {total:g}%)")

    _check_price_ordering(signal)

    if not math.isfinite(signal.timeframe_expiration_hours) or signal.timeframe_expiration_hours <= 0:
        raise InvalidInputError(
            f"Timeframe expiration hours must be positive "
            f"(got {signal.timeframe_expiration_hours})"
        )

    if signal.timeframe is not None and signal.timeframe not in TIMEFRAME_DELTAS:
        raise InvalidInputError(
            f"Unknown timeframe {signal.timeframe!r} "
            f"(expected one of {', '.join(TIMEFRAME_DELTAS)})"
        )

    return signal


def _check_price_ordering(signal: BacktestInput) -> None:
    if signal.is_long:
        word, stop_word = "above", "below"
        beyond = operator.gt
    else:
        word, stop_word = "below", "above"
        beyond = operator.lt

    if not beyond(signal.entry_price, signal.stop_loss_price):
        raise InvalidInputError(
            f"Stop loss price must be {stop_word} entry price for a "
            f"{signal.direction.value} trade "
            f"(stop {signal.stop_loss_price}, entry {signal.entry_price})"
        )
    if not beyond(signal.tp1_price, signal.entry_price):
        raise InvalidInputError(
            f"TP1 price must be {word} entry price "
            f"(tp1 {signal.tp1_price}, entry {signal.entry_price})"
        )
    if not beyond(signal.tp2_price, signal.tp1_price):
        raise InvalidInputError(
            f"TP2 price must be {word} TP1 price "
            f"(tp2 {signal.tp2_price}, tp1 {signal.tp1_price})"
        )
    if not beyond(signal.tp3_price, signal.tp2_price):
        raise InvalidInputError(
            f"TP3 price must be {word} TP2 price "
            f"(tp3 {signal.tp3_price}, tp2 {signal.tp2_price})"
        )
