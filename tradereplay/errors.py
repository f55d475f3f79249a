"""Error taxonomy for backtest runs and candle fetching."""


class BacktestError(Exception):
    """Base class for all backtest-related errors."""


class InvalidInputError(BacktestError):
    """A trade signal violates one of its invariants. Never retried."""


class DataUnavailableError(BacktestError):
    """No usable candles for the requested window."""


class PartialDataError(BacktestError):
    """Some fetch chunks failed but others succeeded.

    Not fatal: attached to the fetched series and logged, never raised by the
    coordinator. Results built on such a series are lower confidence.
    """

    def __init__(self, message: str, failed_windows: list[tuple] | None = None) -> None:
        super().__init__(message)
        self.failed_windows = failed_windows or []


class MalformedCandleError(BacktestError):
    """A candle has impossible OHLC relations or is out of order."""


class ProviderError(BacktestError):
    """A market-data provider could not serve a request."""
