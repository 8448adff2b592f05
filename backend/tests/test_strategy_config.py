"""Tests for strategy.yaml loading and engine configuration models."""

import textwrap

import pytest

from impulse_app.strategy_config import load_engine_config
from impulse_core.errors import ConfigurationError
from impulse_core.models.config import DetectorConfig, EngineConfig, TradeConfig


def write_yaml(tmp_path, content: str):
    path = tmp_path / "strategy.yaml"
    path.write_text(textwrap.dedent(content))
    return path


# ── Config model tests ────────────────────────────────────────────────────


class TestConfigModels:
    def test_detector_defaults(self):
        config = DetectorConfig()
        assert config.volatility_window == 300
        assert config.impulse_window == 15
        assert config.confidence_threshold == 60.0

    def test_invalid_window_raises(self):
        with pytest.raises(ValueError, match="impulse_window must be positive"):
            DetectorConfig(impulse_window=0)

    def test_confidence_threshold_bounds(self):
        with pytest.raises(ValueError):
            DetectorConfig(confidence_threshold=150)

    def test_trade_config_validation(self):
        with pytest.raises(ValueError, match="max_concurrent_trades"):
            TradeConfig(max_concurrent_trades=0)

    def test_detector_for_override(self):
        loose = DetectorConfig(base_price_threshold_pct=0.3)
        config = EngineConfig(pair_overrides={"SOL/USDT": loose})
        assert config.detector_for("SOL/USDT").base_price_threshold_pct == 0.3
        assert config.detector_for("XRP/USDT").base_price_threshold_pct == 0.15


# ── load_engine_config tests ──────────────────────────────────────────────


class TestLoadEngineConfig:
    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_engine_config(tmp_path / "missing.yaml", ["XRP/USDT"])
        assert config.trading_pairs == ["XRP/USDT"]
        assert config.detector == DetectorConfig()

    def test_loads_blocks(self, tmp_path):
        path = write_yaml(
            tmp_path,
            """
            trading_pairs: [XRP/USDT, BNB/USDT]
            detector:
              base_price_threshold_pct: 0.2
              volume_spike_factor: 2.0
            trade:
              max_concurrent_trades: 1
              auto_confirm: false
              trailing_stop:
                enabled: true
            """,
        )
        config = load_engine_config(path, ["ignored/USDT"])

        assert config.trading_pairs == ["XRP/USDT", "BNB/USDT"]
        assert config.detector.base_price_threshold_pct == 0.2
        assert config.detector.volume_spike_factor == 2.0
        assert config.trade.max_concurrent_trades == 1
        assert config.trade.auto_confirm is False
        assert config.trade.trailing_stop.enabled is True

    def test_pair_overrides_merge_over_detector(self, tmp_path):
        path = write_yaml(
            tmp_path,
            """
            detector:
              volume_spike_factor: 2.0
            pair_overrides:
              SOL/USDT:
                base_price_threshold_pct: 0.4
            """,
        )
        config = load_engine_config(path, ["SOL/USDT"])
        sol = config.detector_for("SOL/USDT")
        assert sol.base_price_threshold_pct == 0.4
        assert sol.volume_spike_factor == 2.0

    def test_invalid_yaml(self, tmp_path):
        path = write_yaml(tmp_path, "detector: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Cannot parse"):
            load_engine_config(path)

    def test_invalid_values(self, tmp_path):
        path = write_yaml(
            tmp_path,
            """
            detector:
              impulse_window: -1
            """,
        )
        with pytest.raises(ConfigurationError, match="Invalid strategy configuration"):
            load_engine_config(path, ["XRP/USDT"])

    def test_empty_pairs(self, tmp_path):
        path = write_yaml(tmp_path, "trading_pairs: []\n")
        with pytest.raises(ConfigurationError, match="At least one trading pair"):
            load_engine_config(path)

    def test_non_mapping_override(self, tmp_path):
        path = write_yaml(
            tmp_path,
            """
            pair_overrides:
              SOL/USDT: 0.4
            """,
        )
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            load_engine_config(path)
