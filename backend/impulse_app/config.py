"""Application configuration."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Binance API (spot market data)
    binance_base_url: str = "https://api.binance.com"
    binance_api_key: str = ""
    binance_api_secret: str = ""

    # Trading Configuration
    trading_pairs: list[str] = ["XRP/USDT", "SOL/USDT", "BNB/USDT"]

    # Tick loop
    tick_interval_seconds: float = 20.0
    rolling_window_seconds: int = 360  # 1s candles fetched fresh every tick
    history_backfill_hours: int = 30  # 1m candles fetched on the first tick

    # Signal engine: "internal" (deterministic) or "external" (alternate provider)
    signal_engine: Literal["internal", "external"] = "internal"
    external_provider_api_key: str = ""

    # Persistence
    state_file: str = "state.json"
    price_history_max_entries: int = 5000
    strategy_file: str = "strategy.yaml"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
