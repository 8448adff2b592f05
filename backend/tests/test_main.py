"""Tests for application wiring."""

from unittest.mock import AsyncMock

import pytest

from impulse_app.config import Settings
from impulse_app.main import build_engine, build_provider
from impulse_app.services.external_provider import ExternalSignalProvider
from impulse_core.errors import ConfigurationError
from impulse_core.models.config import EngineConfig
from impulse_core.signal_provider import InternalSignalProvider


class TestBuildProvider:
    def test_internal(self):
        provider = build_provider(Settings(signal_engine="internal"), EngineConfig())
        assert isinstance(provider, InternalSignalProvider)

    def test_external_without_key(self):
        with pytest.raises(ConfigurationError, match="no API key"):
            build_provider(Settings(signal_engine="external"), EngineConfig())

    def test_external_without_source(self):
        settings = Settings(signal_engine="external", external_provider_api_key="key")
        with pytest.raises(ConfigurationError, match="no signal source"):
            build_provider(settings, EngineConfig())

    def test_external(self):
        settings = Settings(signal_engine="external", external_provider_api_key="key")
        provider = build_provider(settings, EngineConfig(), external_fetch=AsyncMock())
        assert isinstance(provider, ExternalSignalProvider)


class TestBuildEngine:
    @pytest.mark.asyncio
    async def test_valid_config(self, tmp_path):
        settings = Settings(
            strategy_file=str(tmp_path / "strategy.yaml"),
            state_file=str(tmp_path / "state.json"),
            trading_pairs=["XRP/USDT"],
        )
        engine, client = build_engine(settings)
        try:
            engine.validate()
            assert engine.config.trading_pairs == ["XRP/USDT"]
            assert engine.provider.name == "internal"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_config_error_refuses_start(self, tmp_path):
        strategy = tmp_path / "strategy.yaml"
        strategy.write_text("detector:\n  impulse_window: 0\n")
        settings = Settings(strategy_file=str(strategy), state_file=str(tmp_path / "state.json"))

        engine, client = build_engine(settings)
        try:
            with pytest.raises(ConfigurationError, match="Invalid strategy configuration"):
                await engine.start()
            assert engine.last_error is not None
        finally:
            await client.close()
