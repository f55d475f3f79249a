"""Trade signal model — the read-only input to a backtest run.

Signals are produced elsewhere (AI or heuristic generators) and arrive as JSON.
Pydantic handles parsing and types; trade invariants are checked separately by
validation.validate_input so a bad signal becomes an ``invalid`` result rather
than a parse failure.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import NamedTuple

from pydantic import BaseModel, Field, field_validator

from tradereplay.services.data.candles import ensure_utc


class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"


class TakeProfit(NamedTuple):
    """One take-profit level: tp1, tp2 or tp3."""

    name: str
    price: float
    allocation: float


class BacktestInput(BaseModel):
    """A proposed trade: entry, three take-profit levels, a stop and a validity window."""

    model_config = {"frozen": True}

    symbol: str
    direction: Direction = Direction.LONG
    entry_price: float
    entry_timestamp: datetime
    tp1_price: float
    tp1_allocation: float
    tp2_price: float
    tp2_allocation: float
    tp3_price: float
    tp3_allocation: float
    stop_loss_price: float
    timeframe_expiration_hours: float
    timeframe: str | None = Field(default=None, description="Candle resolution, e.g. 1h")
    trade_id: str | None = None

    @field_validator("entry_timestamp")
    @classmethod
    def _entry_timestamp_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def is_long(self) -> bool:
        return self.direction == Direction.LONG

    @property
    def expires_at(self) -> datetime:
        """Latest candle timestamp the engine will simulate."""
        return self.entry_timestamp + timedelta(hours=self.timeframe_expiration_hours)

    def targets(self) -> list[TakeProfit]:
        """Take-profit levels in evaluation order."""
        return [
            TakeProfit("tp1", self.tp1_price, self.tp1_allocation),
            TakeProfit("tp2", self.tp2_price, self.tp2_allocation),
            TakeProfit("tp3", self.tp3_price, self.tp3_allocation),
        ]
