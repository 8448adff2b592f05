"""Tick engine driving fetch -> detect -> trade -> predict on a fixed interval.

Message passing only: commands arrive on ``commands`` (init/start/pause/
resume/stop) and results leave on ``events`` (tick/status/log). Nothing
here depends on the web layer.

Tick order:
1. Fetch candles and live prices for every pair concurrently (a failed
   pair is skipped for this tick)
2. Discard everything if the engine was stopped meanwhile
3. Signal provider (candle ingestion + detection)
4. Trades: auto-open actionable signals (running only), evaluate active
   trades at the live price
5. Predictions: record new, resolve pending, feed outcomes back
6. Persist and emit the TickResult
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

from impulse_core.errors import (
    ConfigurationError,
    SignalPayloadError,
    TradeRejectedError,
    TradeStateError,
)
from impulse_core.models.candle import Candle
from impulse_core.models.config import EngineConfig
from impulse_core.models.events import (
    EngineCommand,
    EngineEvent,
    EngineStatus,
    LogEntry,
    LogType,
    TickResult,
)
from impulse_core.models.prediction import PredictionRecord
from impulse_core.models.signal import Direction, HeatScore, Signal, heat_from_signal
from impulse_core.models.trade import CloseReason, Trade
from impulse_core.prediction_tracker import PredictionTracker
from impulse_core.signal_provider import (
    MarketSnapshot,
    PairSnapshot,
    SignalProvider,
    exit_levels,
)
from impulse_core.trade_manager import TradeManager
from impulse_app.storage.state_store import StateStore

logger = logging.getLogger(__name__)

# Type alias for event listeners
EventCallback = Callable[[EngineEvent], Awaitable[None]]

_LOG_LEVELS = {
    "info": logging.INFO,
    "request": logging.DEBUG,
    "response": logging.DEBUG,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class MarketDataSource(Protocol):
    async def fetch_candles(self, pair: str, resolution: str, since_ms: int) -> list[Candle]:
        ...

    async def get_ticker_prices(self, pairs: list[str]) -> dict[str, float]:
        ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TickEngine:
    """Single logical tick loop for all configured pairs."""

    def __init__(
        self,
        config: EngineConfig,
        market_data: MarketDataSource,
        provider: SignalProvider | None,
        trade_manager: TradeManager | None = None,
        tracker: PredictionTracker | None = None,
        store: StateStore | None = None,
        tick_interval: float = 20.0,
        rolling_window_seconds: int = 360,
        history_backfill_hours: int = 30,
        clock: Callable[[], datetime] = _utc_now,
        config_error: str | None = None,
    ):
        """
        Args:
            config: Pairs, detector, trade and ensemble settings
            market_data: Candle/price source (e.g. BinanceRestClient)
            provider: Signal provider; None if it could not be configured
            tick_interval: Seconds between ticks
            rolling_window_seconds: Length of the fresh 1s window fetched every tick
            history_backfill_hours: 1m history fetched on a pair's first tick
            config_error: Reason the engine must refuse to start, if any
        """
        self.config = config
        self.market_data = market_data
        self.provider = provider
        self.trade_manager = trade_manager or TradeManager(config.trade, clock=clock)
        self.tracker = tracker or PredictionTracker()
        self.store = store
        self.tick_interval = tick_interval
        self.rolling_window_seconds = rolling_window_seconds
        self.history_backfill_hours = history_backfill_hours
        self._clock = clock
        self._config_error = config_error

        self.commands: asyncio.Queue[EngineCommand] = asyncio.Queue()
        self.events: asyncio.Queue[EngineEvent] = asyncio.Queue()
        self._listeners: list[EventCallback] = []

        self.status = EngineStatus.STOPPED
        self.last_error: str | None = None
        self.tick_count = 0
        self.latest_signals: dict[str, Signal] = {}
        self.latest_prices: dict[str, float] = {}
        self.heat_scores: dict[str, HeatScore] = {}
        self.recent_logs: deque[LogEntry] = deque(maxlen=200)

        # Bumped on every start/stop; a tick only applies results for its own run
        self._generation = 0
        self._tick_running = False
        self._scheduler: asyncio.Task | None = None
        self._tick_tasks: set[asyncio.Task] = set()
        self._last_history_ts: dict[str, int] = {}
        self._stored_history: dict[str, list[Candle]] = {}

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def on_event(self, callback: EventCallback) -> None:
        """Register a listener called for every emitted event.

        Note: Duplicate callbacks are ignored.
        """
        if callback not in self._listeners:
            self._listeners.append(callback)

    async def _emit(self, event: EngineEvent) -> None:
        await self.events.put(event)
        for callback in self._listeners:
            try:
                await callback(event)
            except Exception as e:
                logger.error(f"Error in event listener: {e}")

    def _log(
        self,
        logs: list[LogEntry] | None,
        type: LogType,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> LogEntry:
        entry = LogEntry(timestamp=self._clock(), type=type, message=message, data=data)
        logger.log(_LOG_LEVELS[type], message)
        self.recent_logs.append(entry)
        if logs is not None:
            logs.append(entry)
        return entry

    async def _emit_log(self, type: LogType, message: str, data: dict[str, Any] | None = None) -> None:
        entry = self._log(None, type, message, data)
        await self._emit(EngineEvent(type="log", log=entry))

    async def _set_status(self, status: EngineStatus, error: str | None = None) -> None:
        self.status = status
        if error is not None:
            self.last_error = error
        await self._emit(EngineEvent(type="status", status=status, error=self.last_error))

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """Consume commands until cancelled."""
        while True:
            command = await self.commands.get()
            try:
                await self.handle_command(command)
            except ConfigurationError as e:
                await self._emit_log("error", f"Cannot {command.type}: {e}")
            finally:
                self.commands.task_done()

    async def handle_command(self, command: EngineCommand) -> None:
        handlers = {
            "init": self.init,
            "start": self.start,
            "pause": self.pause,
            "resume": self.resume,
            "stop": self.stop,
        }
        await handlers[command.type]()

    async def init(self) -> None:
        """Restore persisted trades, predictions and price history."""
        if self.store is None:
            return
        state = await asyncio.to_thread(self.store.load)
        await self.trade_manager.restore([*state.open_trades, *state.closed_trades])
        self.tracker.restore(state.predictions)
        self._stored_history = state.price_history
        for pair, candles in state.price_history.items():
            if candles:
                self._last_history_ts[pair] = candles[-1].timestamp
        await self._emit_log(
            "info",
            f"Restored {len(state.open_trades)} open trades, "
            f"{len(state.predictions)} predictions",
        )

    def validate(self) -> None:
        """Raise ConfigurationError if the engine cannot run."""
        if self._config_error:
            raise ConfigurationError(self._config_error)
        if not self.config.trading_pairs:
            raise ConfigurationError("No trading pairs configured")
        if self.provider is None:
            raise ConfigurationError("No signal provider configured")

    async def start(self) -> None:
        """Start ticking. The first tick runs while warming up."""
        if self.status in (EngineStatus.RUNNING, EngineStatus.WARMING_UP):
            return
        try:
            self.validate()
        except ConfigurationError as e:
            await self._set_status(EngineStatus.STOPPED, str(e))
            raise

        self._generation += 1
        self.last_error = None
        await self._set_status(EngineStatus.WARMING_UP)
        await self._emit_log(
            "info",
            f"Engine starting ({self.provider.name} provider, "
            f"{len(self.config.trading_pairs)} pairs, every {self.tick_interval}s)",
        )
        self._scheduler = asyncio.create_task(self._schedule(self._generation))

    async def pause(self) -> None:
        if self.status in (EngineStatus.RUNNING, EngineStatus.WARMING_UP):
            await self._set_status(EngineStatus.PAUSED)

    async def resume(self) -> None:
        if self.status == EngineStatus.PAUSED:
            self.last_error = None
            await self._set_status(EngineStatus.RUNNING)
        elif self.status == EngineStatus.STOPPED:
            await self.start()

    async def stop(self) -> None:
        """Stop ticking. In-flight fetches finish but their results are discarded."""
        self._generation += 1
        if self._scheduler is not None:
            self._scheduler.cancel()
            self._scheduler = None
        if self.status != EngineStatus.STOPPED:
            await self._set_status(EngineStatus.STOPPED)
            await self._emit_log("info", "Engine stopped")

    async def shutdown(self) -> None:
        """Stop and wait for in-flight ticks to finish."""
        await self.stop()
        if self._tick_tasks:
            await asyncio.gather(*self._tick_tasks, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    async def _schedule(self, generation: int) -> None:
        while generation == self._generation:
            if self.status != EngineStatus.PAUSED:
                self._launch_tick()
            await asyncio.sleep(self.tick_interval)

    def _launch_tick(self) -> None:
        task = asyncio.create_task(self.run_tick())
        self._tick_tasks.add(task)
        task.add_done_callback(self._tick_tasks.discard)

    async def run_tick(self) -> TickResult | None:
        """Run one tick now, unless another tick is still running."""
        if self._tick_running:
            await self._emit_log("warn", "Tick already in progress, skipping tick.")
            return None

        self._tick_running = True
        try:
            return await self._tick(self._generation)
        finally:
            self._tick_running = False

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    async def _fetch_pair(self, pair: str, now_ms: int) -> tuple[list[Candle], list[Candle]]:
        recent_since = now_ms - self.rolling_window_seconds * 1000
        last_ts = self._last_history_ts.get(pair)
        if last_ts is None:
            history_since = now_ms - self.history_backfill_hours * 3600 * 1000
        else:
            # Refetch the last stored minute; it may still have been forming
            history_since = last_ts

        recent, history = await asyncio.gather(
            self.market_data.fetch_candles(pair, "1s", recent_since),
            self.market_data.fetch_candles(pair, "1m", history_since),
        )
        return recent, history

    async def _fetch_snapshot(self, now: datetime, logs: list[LogEntry]) -> MarketSnapshot:
        pairs = self.config.trading_pairs
        now_ms = int(now.timestamp() * 1000)
        self._log(logs, "request", f"Fetching candles for {len(pairs)} pairs")

        results = await asyncio.gather(
            self.market_data.get_ticker_prices(pairs),
            *(self._fetch_pair(pair, now_ms) for pair in pairs),
            return_exceptions=True,
        )
        prices, per_pair = results[0], results[1:]

        if isinstance(prices, BaseException):
            self._log(logs, "warn", f"Live price fetch failed: {prices}")
            prices = {}

        snapshot = MarketSnapshot()
        for pair, result in zip(pairs, per_pair):
            if isinstance(result, BaseException):
                self._log(logs, "warn", f"Skipping {pair} this tick: {result}")
                continue
            recent, history = result
            stored = self._stored_history.get(pair)
            if stored:
                # Restored history seeds the provider on the pair's first tick
                history = [*stored, *history]
            snap = PairSnapshot(pair=pair, recent=recent, history=history, price=prices.get(pair))
            if snap.last_price is None:
                self._log(logs, "warn", f"No price for {pair}, skipping this tick")
                continue
            snapshot.pairs[pair] = snap

        self._log(
            logs,
            "response",
            f"Market data for {len(snapshot.pairs)}/{len(pairs)} pairs",
            {pair: len(s.recent) for pair, s in snapshot.pairs.items()},
        )
        return snapshot

    def _auto_confirm(self) -> bool:
        """Trades skip the pending state only for the internal provider while running."""
        return (
            self.config.trade.auto_confirm
            and self.status == EngineStatus.RUNNING
            and self.provider is not None
            and self.provider.name == "internal"
        )

    def _is_actionable(self, signal: Signal) -> bool:
        if signal.direction is None or not signal.is_complete:
            return False
        heat = heat_from_signal(signal)
        threshold = self.config.detector_for(signal.pair).confidence_threshold
        return max(heat.buy, heat.sell) >= threshold

    async def _tick(self, generation: int) -> TickResult | None:
        logs: list[LogEntry] = []
        started = self._clock()
        tick_id = self.tick_count + 1

        snapshot = await self._fetch_snapshot(started, logs)
        if generation != self._generation:
            logger.info(f"Discarding tick {tick_id}: engine stopped during fetch")
            return None

        try:
            self._log(logs, "request", f"Running {self.provider.name} signal analysis")
            signals = await self.provider.generate_signals(snapshot)
        except SignalPayloadError as e:
            await self._fail(e, logs, pause=e.rate_limited)
            return None
        except Exception as e:
            await self._fail(e, logs, pause=False)
            return None

        if generation != self._generation:
            logger.info(f"Discarding tick {tick_id}: engine stopped during analysis")
            return None

        now = self._clock()
        prices = snapshot.prices
        self.latest_prices.update(prices)
        for pair, snap in snapshot.pairs.items():
            if snap.history:
                self._last_history_ts[pair] = snap.history[-1].timestamp
            self._stored_history.pop(pair, None)

        result = TickResult(tick_id=tick_id, started_at=started, logs=logs)
        for signal in signals:
            self.latest_signals[signal.pair] = signal
            heat = heat_from_signal(signal, self.config.detector_for(signal.pair).horizon)
            self.heat_scores[signal.pair] = heat
            result.heat_scores.append(heat)
            result.signals.append(signal)

        # Trades
        if self.status == EngineStatus.RUNNING:
            for signal in signals:
                if not self._is_actionable(signal):
                    continue
                try:
                    trade = await self.trade_manager.create_trade(
                        signal, now=now, confirm=self._auto_confirm()
                    )
                except TradeRejectedError as e:
                    self._log(logs, "info", f"Not opening {signal.pair}: {e}")
                    continue
                result.opened_trades.append(trade)
                self._log(
                    logs,
                    "info",
                    f"Opened {trade.direction.value} {trade.pair} @ {trade.entry_price:.4f} "
                    f"(${trade.notional_usd:.2f})",
                    {"trade_id": trade.id},
                )

        result.closed_trades = await self.trade_manager.evaluate(prices, now)
        for trade in result.closed_trades:
            self._log(
                logs,
                "info",
                f"Position for {trade.pair} closed. Reason: {trade.close_reason.value}. "
                f"PNL: ${trade.pnl:.2f}",
                {"trade_id": trade.id},
            )

        # Predictions
        for signal in signals:
            result.new_predictions.extend(self.tracker.record_signal(signal, now))
        result.resolved_predictions = self.tracker.resolve(prices, now)
        for record in result.resolved_predictions:
            self.provider.record_outcome(record)

        # Persistence
        if self.store is not None:
            for pair, snap in snapshot.pairs.items():
                if snap.history:
                    self.store.append_price_history(pair, snap.history)
            await self._persist(logs)

        self.tick_count = tick_id
        if self.status == EngineStatus.WARMING_UP and generation == self._generation:
            await self._set_status(EngineStatus.RUNNING)

        await self._emit(EngineEvent(type="tick", tick=result))
        return result

    async def _fail(self, error: Exception, logs: list[LogEntry], pause: bool) -> None:
        message = f"Analysis Error: {error}"
        self._log(logs, "error", message, {"error_type": type(error).__name__})
        self.last_error = message
        if pause:
            await self._set_status(EngineStatus.PAUSED)
        else:
            await self.stop()

    # -------------------------------------------------------------------------
    # Imperative operations
    # -------------------------------------------------------------------------

    async def open_trade(self, pair: str, direction: Direction) -> Trade:
        """Open a trade on ``pair`` from its latest signal.

        Confirmed immediately only while running with the internal provider
        and auto-confirm enabled; otherwise it stays pending.
        """
        signal = self.latest_signals.get(pair)
        price = self.latest_prices.get(pair) or (signal.last_price if signal else None)
        if signal is None or price is None:
            raise TradeRejectedError(f"No signal data for {pair}")

        take_profit, stop_loss = exit_levels(direction, price, self.config.trade)
        action = "buy" if direction == Direction.LONG else "sell"
        signal = signal.model_copy(
            update={
                "action": action,
                "last_price": price,
                "take_profit": take_profit,
                "stop_loss": stop_loss,
            }
        )
        trade = await self.trade_manager.create_trade(
            signal, reason=f"Manual {direction.value}", confirm=self._auto_confirm()
        )
        await self._emit_log(
            "info",
            f"Position for {pair} ({direction.value}) of ${trade.notional_usd:.2f} "
            f"opened with status '{trade.status.value}'.",
            {"trade_id": trade.id},
        )
        await self._persist()
        return trade

    async def confirm_trade(self, trade_id: str) -> Trade:
        trade = await self.trade_manager.confirm_trade(trade_id)
        await self._emit_log("info", f"Confirmed trade for {trade.pair}. Position active.")
        await self._persist()
        return trade

    async def update_trade(
        self,
        trade_id: str,
        entry_price: float | None = None,
        take_profit: float | None = None,
        stop_loss: float | None = None,
    ) -> Trade:
        trade = await self.trade_manager.update_trade(
            trade_id, entry_price=entry_price, take_profit=take_profit, stop_loss=stop_loss
        )
        await self._emit_log("info", f"Updated trade for {trade.pair}.")
        await self._persist()
        return trade

    async def close_trade(
        self,
        trade_id: str,
        reason: CloseReason = CloseReason.MANUAL,
        exit_price: float | None = None,
    ) -> Trade:
        """Close an active trade at ``exit_price`` or the latest live price."""
        trade = self.trade_manager.get(trade_id)
        price = exit_price if exit_price is not None else self.latest_prices.get(trade.pair)
        if price is None:
            raise TradeStateError(f"No live price for {trade.pair}")
        closed = await self.trade_manager.close_trade(trade_id, price, reason)
        await self._emit_log(
            "info",
            f"Position for {closed.pair} closed. Reason: {reason.value}. PNL: ${closed.pnl:.2f}",
            {"trade_id": closed.id},
        )
        await self._persist()
        return closed

    async def _persist(self, logs: list[LogEntry] | None = None) -> None:
        if self.store is None:
            return
        try:
            await self.store.save_async(
                self.trade_manager.open_trades,
                self.trade_manager.closed_trades,
                self.tracker.records,
            )
        except OSError as e:
            if logs is not None:
                self._log(logs, "error", f"Failed to save state: {e}")
            else:
                await self._emit_log("error", f"Failed to save state: {e}")

    def predictions(self) -> list[PredictionRecord]:
        return self.tracker.records
