"""Engine configuration models.

Configuration is passed explicitly to the detector, trade manager and
ensemble constructors; nothing here is read from module-level state.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class DetectorConfig(BaseModel):
    """Impulse detector thresholds.

    Windows are counted in candles of the buffer resolution (1s by default).
    """

    volatility_window: int = 300
    impulse_window: int = 15
    average_volume_window: int = 60

    # Minimum |price change| in percent before volatility scaling
    base_price_threshold_pct: float = 0.15
    volatility_multiplier: float = 1.0
    volume_spike_factor: float = 1.5

    # Heat score floor once a signal fires; also the actionable threshold
    confidence_threshold: float = 60.0

    horizon: str = "1s"

    @model_validator(mode="after")
    def _validate(self):
        for name in ("volatility_window", "impulse_window", "average_volume_window"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.base_price_threshold_pct <= 0:
            raise ValueError("base_price_threshold_pct must be positive")
        if self.volatility_multiplier < 0 or self.volume_spike_factor <= 0:
            raise ValueError("volatility_multiplier must be >= 0 and volume_spike_factor > 0")
        if not 0 <= self.confidence_threshold <= 100:
            raise ValueError("confidence_threshold must be within [0, 100]")
        return self


class TrailingStopConfig(BaseModel):
    """Trailing stop parameters (percentages of price)."""

    enabled: bool = False
    activation_pct: float = 0.5  # Unrealized profit needed before trailing starts
    distance_pct: float = 0.3  # Distance kept between the extreme price and the stop

    @model_validator(mode="after")
    def _validate(self):
        if self.activation_pct < 0 or self.distance_pct <= 0:
            raise ValueError("activation_pct must be >= 0 and distance_pct > 0")
        return self


class TradeConfig(BaseModel):
    """Simulated position management."""

    max_concurrent_trades: int = 3
    notional_usd: float = 100.0
    min_bet_usd: float = 1.0
    take_profit_pct: float = 3.0
    stop_loss_pct: float = 1.5
    auto_confirm: bool = True
    max_hold_seconds: float | None = None
    trailing_stop: TrailingStopConfig = Field(default_factory=TrailingStopConfig)

    @model_validator(mode="after")
    def _validate(self):
        if self.max_concurrent_trades < 1:
            raise ValueError("max_concurrent_trades must be at least 1")
        if self.notional_usd <= 0:
            raise ValueError("notional_usd must be positive")
        if self.take_profit_pct <= 0 or self.stop_loss_pct <= 0:
            raise ValueError("take_profit_pct and stop_loss_pct must be positive")
        return self


class EnsembleConfig(BaseModel):
    """Multi-timeframe ensemble and Kelly sizing parameters."""

    timeframes: list[int] = [1, 3, 5, 15, 30, 60, 120]
    min_candles: int = 50
    signal_threshold: float = 0.08
    ewma_alpha: float = 0.1

    total_capital_usd: float = 1000.0
    fractional_kelly: float = 0.5
    base_kelly_fraction: float = 1.0
    max_bet_pct: float = 0.05
    min_samples_for_bucket: int = 20


class EngineConfig(BaseModel):
    """Everything the tick engine needs besides I/O settings."""

    trading_pairs: list[str] = ["XRP/USDT", "SOL/USDT", "BNB/USDT"]
    detector: DetectorConfig = Field(default_factory=DetectorConfig)
    trade: TradeConfig = Field(default_factory=TradeConfig)
    ensemble: EnsembleConfig = Field(default_factory=EnsembleConfig)

    # Per-pair detector overrides, e.g. a looser threshold for a volatile pair
    pair_overrides: dict[str, DetectorConfig] = {}

    def detector_for(self, pair: str) -> DetectorConfig:
        """Get the detector config for a pair (override or default)."""
        return self.pair_overrides.get(pair, self.detector)
