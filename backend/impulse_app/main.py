"""Main application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

# Configure logging FIRST, before any other imports
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)

# Reduce noise from third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from impulse_app.api import pump_events, router, websocket_endpoint
from impulse_app.clients.binance_rest import BinanceRestClient
from impulse_app.config import Settings, get_settings
from impulse_app.services.external_provider import ExternalSignalProvider, PayloadFetcher
from impulse_app.services.tick_engine import TickEngine
from impulse_app.storage.state_store import StateStore
from impulse_app.strategy_config import load_engine_config
from impulse_core.errors import ConfigurationError
from impulse_core.models.config import EngineConfig
from impulse_core.models.events import EngineCommand
from impulse_core.prediction_tracker import PredictionTracker
from impulse_core.signal_provider import InternalSignalProvider, SignalProvider

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def build_provider(
    settings: Settings,
    config: EngineConfig,
    external_fetch: PayloadFetcher | None = None,
) -> SignalProvider:
    """Create the signal provider selected in settings.

    Raises:
        ConfigurationError: the external engine is selected without
            credentials or without a payload source
    """
    if settings.signal_engine == "internal":
        return InternalSignalProvider(config)

    if not settings.external_provider_api_key:
        raise ConfigurationError("External signal engine selected but no API key is configured")
    if external_fetch is None:
        raise ConfigurationError("External signal engine selected but no signal source is registered")
    return ExternalSignalProvider(external_fetch, config.trading_pairs)


def build_engine(
    settings: Settings,
    external_fetch: PayloadFetcher | None = None,
) -> tuple[TickEngine, BinanceRestClient]:
    """Wire config, market data, provider and storage into a TickEngine.

    Configuration problems do not raise here: the engine is created in a
    state that refuses to start and reports the error.
    """
    client = BinanceRestClient(
        api_key=settings.binance_api_key,
        base_url=settings.binance_base_url,
    )

    config_error = None
    provider = None
    try:
        config = load_engine_config(Path(settings.strategy_file), settings.trading_pairs)
        provider = build_provider(settings, config, external_fetch)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        config_error = str(e)
        config = EngineConfig(trading_pairs=settings.trading_pairs)

    engine = TickEngine(
        config=config,
        market_data=client,
        provider=provider,
        tracker=PredictionTracker(),
        store=StateStore(settings.state_file, settings.price_history_max_entries),
        tick_interval=settings.tick_interval_seconds,
        rolling_window_seconds=settings.rolling_window_seconds,
        history_backfill_hours=settings.history_backfill_hours,
        config_error=config_error,
    )
    return engine, client


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    engine, client = build_engine(settings)
    app.state.engine = engine

    logger.info(
        f"Starting impulse engine: {len(engine.config.trading_pairs)} pairs, "
        f"{settings.signal_engine} signals, tick every {settings.tick_interval_seconds}s"
    )

    command_task = asyncio.create_task(engine.run())
    event_task = asyncio.create_task(pump_events(engine.events))
    await engine.commands.put(EngineCommand(type="init"))

    yield

    # Shutdown
    logger.info("Shutting down...")
    await engine.shutdown()
    for task in (command_task, event_task):
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    await client.close()
    app.state.engine = None
    logger.info("Shutdown complete")


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Create the FastAPI app (without lifespan for tests that inject an engine)."""
    app = FastAPI(
        title="Impulse Heat",
        description="Streaming impulse detection and simulated trading",
        version=VERSION,
        lifespan=lifespan if use_lifespan else None,
        default_response_class=ORJSONResponse,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")
    app.websocket("/ws")(websocket_endpoint)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"name": "Impulse Heat", "version": VERSION, "docs": "/docs"}

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()


def main():
    """Run the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "impulse_app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
