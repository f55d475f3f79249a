"""Backtest result data structures. Prices in quote currency, per unit of position."""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum


class BacktestStatus(str, Enum):
    COMPLETED_SUCCESS = "completed_success"
    COMPLETED_FAILURE = "completed_failure"
    EXPIRED = "expired"
    INVALID = "invalid"


@dataclass(frozen=True)
class BacktestResult:
    """Final outcome of one replayed trade. Owned by the caller once returned."""

    symbol: str
    direction: str
    entry_price: float
    status: BacktestStatus

    tp1_hit: bool = False
    tp1_hit_at: datetime | None = None
    tp1_hit_price: float | None = None
    tp2_hit: bool = False
    tp2_hit_at: datetime | None = None
    tp2_hit_price: float | None = None
    tp3_hit: bool = False
    tp3_hit_at: datetime | None = None
    tp3_hit_price: float | None = None
    stop_loss_hit: bool = False
    stop_loss_hit_at: datetime | None = None
    stop_loss_hit_price: float | None = None

    remaining_allocation: float = 100.0
    profit_loss_usd: float = 0.0
    profit_loss_percent: float = 0.0
    exit_price: float | None = None
    trade_duration_minutes: int = 0
    candles_evaluated: int = 0

    trade_id: str | None = None
    error_message: str | None = None  # set for invalid signals
    warning_message: str | None = None  # data gaps, partial fills

    # Provenance of the candles the run was scored on
    data_source: str | None = None
    data_resolution: str | None = None
    data_quality_score: float | None = None

    @property
    def targets_hit(self) -> list[str]:
        return [
            name for name, hit in
            (("tp1", self.tp1_hit), ("tp2", self.tp2_hit), ("tp3", self.tp3_hit))
            if hit
        ]

    @property
    def is_partial_fill(self) -> bool:
        """Some but not all targets were realized before the position closed."""
        return 0 < len(self.targets_hit) < 3 and self.status != BacktestStatus.COMPLETED_SUCCESS

    def with_data(
        self,
        source: str | None,
        resolution: str | None,
        quality_score: float | None,
    ) -> "BacktestResult":
        """Copy of this result tagged with where its candles came from."""
        return replace(
            self,
            data_source=source,
            data_resolution=resolution,
            data_quality_score=quality_score,
        )

    def to_dict(self) -> dict:
        """Serialize to JSON-safe dict."""

        def _ts(value: datetime | None) -> str | None:
            return value.isoformat() if value is not None else None

        return {
            "trade_id": self.trade_id,
            "symbol": self.symbol,
            "direction": self.direction,
            "status": self.status.value,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "tp1_hit": self.tp1_hit,
            "tp1_hit_at": _ts(self.tp1_hit_at),
            "tp1_hit_price": self.tp1_hit_price,
            "tp2_hit": self.tp2_hit,
            "tp2_hit_at": _ts(self.tp2_hit_at),
            "tp2_hit_price": self.tp2_hit_price,
            "tp3_hit": self.tp3_hit,
            "tp3_hit_at": _ts(self.tp3_hit_at),
            "tp3_hit_price": self.tp3_hit_price,
            "stop_loss_hit": self.stop_loss_hit,
            "stop_loss_hit_at": _ts(self.stop_loss_hit_at),
            "stop_loss_hit_price": self.stop_loss_hit_price,
            "remaining_allocation": round(self.remaining_allocation, 4),
            "profit_loss_usd": round(self.profit_loss_usd, 2),
            "profit_loss_percent": round(self.profit_loss_percent, 2),
            "trade_duration_minutes": self.trade_duration_minutes,
            "candles_evaluated": self.candles_evaluated,
            "error_message": self.error_message,
            "warning_message": self.warning_message,
            "data_source": self.data_source,
            "data_resolution": self.data_resolution,
            "data_quality_score": self.data_quality_score,
        }
