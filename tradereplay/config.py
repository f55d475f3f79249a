"""Application configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All config from environment. Never hardcode secrets."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Candle providers
    candle_provider: str = Field(default="ccxt")  # ccxt, yfinance
    exchange_id: str = Field(default="binance")
    exchange_fallback_id: str = Field(default="kraken")
    quote_currency: str = Field(default="USDT")
    ohlcv_page_limit: int = Field(default=500)

    # Chunked fetching
    request_timeout_seconds: float = Field(default=30.0)
    chunk_delay_seconds: float = Field(default=2.0)
    chunk_max_attempts: int = Field(default=3)
    chunk_retry_backoff_seconds: float = Field(default=2.0)

    # Below this score a series is reported as low confidence
    min_data_quality_score: float = Field(default=70.0)

    # Batch runs
    batch_max_workers: int = Field(default=4)

    # App
    log_level: str = Field(default="INFO")


settings = Settings()
