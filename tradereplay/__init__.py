"""TradeReplay — deterministic replay of trade signals against historical candles."""

__version__ = "0.1.0"
