"""Trade lifecycle manager.

State machine per trade: pending -> active -> closed (terminal).

This service:
1. Creates trades from complete buy/sell signals (one open trade per pair,
   bounded number of concurrent trades)
2. Confirms, updates and closes trades on request
3. Evaluates active trades against live prices (TP, SL, trailing stop,
   optional timeout)
4. Computes realized PnL once, at closure

Trades handed out by the public methods are copies; the manager is the
only owner of the live objects.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable

from impulse_core.errors import TradeNotFoundError, TradeRejectedError, TradeStateError
from impulse_core.models.config import TradeConfig, TrailingStopConfig
from impulse_core.models.signal import Direction, Signal
from impulse_core.models.trade import CloseReason, Trade, TradeStatus

logger = logging.getLogger(__name__)

# Type alias for close callback
CloseCallback = Callable[[Trade], Awaitable[None]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Pure exit rules (shared with the backtest replay)
# =============================================================================

def check_exit(trade: Trade, price: float) -> tuple[float, CloseReason] | None:
    """Check take-profit, then stop-loss, at ``price``.

    Returns:
        (exit level, reason) if the trade should close, else None.
        The exit happens at the TP/SL level itself.
    """
    stop_reason = CloseReason.TRAILING_STOP if trade.trailing_active else CloseReason.STOP_LOSS
    if trade.direction == Direction.LONG:
        if price >= trade.take_profit:
            return trade.take_profit, CloseReason.TAKE_PROFIT
        if price <= trade.stop_loss:
            return trade.stop_loss, stop_reason
    else:
        if price <= trade.take_profit:
            return trade.take_profit, CloseReason.TAKE_PROFIT
        if price >= trade.stop_loss:
            return trade.stop_loss, stop_reason
    return None


def check_candle_exit(trade: Trade, high: float, low: float) -> tuple[float, CloseReason] | None:
    """Candle variant of check_exit: TP is tested against the favorable extreme first."""
    if trade.direction == Direction.LONG:
        return check_exit(trade, high) if high >= trade.take_profit else check_exit(trade, low)
    return check_exit(trade, low) if low <= trade.take_profit else check_exit(trade, high)


def ratchet_trailing_stop(trade: Trade, price: float, config: TrailingStopConfig) -> bool:
    """Move the stop toward price once unrealized profit passes the activation level.

    The stop only ever tightens: a candidate that would loosen it is ignored.

    Returns:
        True if the stop moved.
    """
    if trade.direction == Direction.LONG:
        if trade.high_water_mark is None or price > trade.high_water_mark:
            trade.high_water_mark = price
        extreme = trade.high_water_mark
    else:
        if trade.low_water_mark is None or price < trade.low_water_mark:
            trade.low_water_mark = price
        extreme = trade.low_water_mark

    if not config.enabled or trade.unrealized_pct(extreme) < config.activation_pct:
        return False

    if trade.direction == Direction.LONG:
        candidate = extreme * (1 - config.distance_pct / 100)
        if candidate <= trade.stop_loss:
            return False
    else:
        candidate = extreme * (1 + config.distance_pct / 100)
        if candidate >= trade.stop_loss:
            return False

    trade.stop_loss = candidate
    trade.trailing_active = True
    return True


def apply_close(trade: Trade, exit_price: float, reason: CloseReason, now: datetime) -> None:
    """Close ``trade`` in place. PnL is computed here and never again."""
    if trade.status == TradeStatus.CLOSED:
        raise TradeStateError(f"Trade {trade.id} is already closed")
    trade.status = TradeStatus.CLOSED
    trade.exit_price = exit_price
    trade.closed_at = now
    trade.close_reason = reason
    trade.pnl = trade.compute_pnl(exit_price)


def trade_from_signal(
    signal: Signal,
    config: TradeConfig,
    now: datetime,
    reason: str | None = None,
) -> Trade:
    """Build a pending trade from a complete buy/sell signal."""
    direction = signal.direction
    if direction is None:
        raise TradeRejectedError(f"Signal for {signal.pair} is not actionable ({signal.action})")
    if not signal.is_complete:
        raise TradeRejectedError(f"Signal for {signal.pair} lacks price, take-profit or stop-loss")

    notional = config.notional_usd
    if signal.bet_size_usd is not None and signal.bet_size_usd >= config.min_bet_usd:
        notional = signal.bet_size_usd

    return Trade(
        pair=signal.pair,
        direction=direction,
        entry_price=signal.last_price,
        opened_at=now,
        notional_usd=notional,
        take_profit=signal.take_profit,
        stop_loss=signal.stop_loss,
        reason=reason or signal.note,
        initial_confidence=signal.confidence,
        signal_meta=signal.meta,
    )


# =============================================================================
# Manager
# =============================================================================

class TradeManager:
    """Owns every simulated trade and drives its state machine.

    All mutating operations run under one asyncio.Lock, so the
    "one open trade per pair" and "max concurrent trades" checks stay
    consistent when pairs are processed concurrently.
    """

    def __init__(
        self,
        config: TradeConfig,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """
        Args:
            config: Position sizing and exit rules
            clock: Source of "now" (injectable for tests and replays)
        """
        self.config = config
        self._clock = clock
        self._trades: dict[str, Trade] = {}
        self._close_callbacks: list[CloseCallback] = []
        self._lock = asyncio.Lock()

    def on_close(self, callback: CloseCallback) -> None:
        """Register callback for closed trades.

        Note: Duplicate callbacks are ignored.
        """
        if callback not in self._close_callbacks:
            self._close_callbacks.append(callback)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def open_trades(self) -> list[Trade]:
        return [t.model_copy(deep=True) for t in self._trades.values() if t.is_open]

    @property
    def closed_trades(self) -> list[Trade]:
        return [t.model_copy(deep=True) for t in self._trades.values() if not t.is_open]

    @property
    def open_count(self) -> int:
        return sum(1 for t in self._trades.values() if t.is_open)

    def get(self, trade_id: str) -> Trade:
        return self._require(trade_id).model_copy(deep=True)

    def open_trade_for(self, pair: str) -> Trade | None:
        for trade in self._trades.values():
            if trade.pair == pair and trade.is_open:
                return trade.model_copy(deep=True)
        return None

    def _require(self, trade_id: str) -> Trade:
        trade = self._trades.get(trade_id)
        if trade is None:
            raise TradeNotFoundError(trade_id)
        return trade

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def create_trade(
        self,
        signal: Signal,
        reason: str | None = None,
        now: datetime | None = None,
        confirm: bool | None = None,
    ) -> Trade:
        """Open a trade from a signal.

        The trade starts pending and is confirmed immediately when
        ``confirm`` is true (``auto_confirm`` from the config if not given).

        Raises:
            TradeRejectedError: incomplete signal, pair already has an open
                trade, or the concurrent-trade limit is reached
        """
        async with self._lock:
            now = now or self._clock()
            trade = trade_from_signal(signal, self.config, now, reason)

            if any(t.pair == trade.pair and t.is_open for t in self._trades.values()):
                raise TradeRejectedError(f"{trade.pair} already has an open trade")
            if self.open_count >= self.config.max_concurrent_trades:
                raise TradeRejectedError(
                    f"Max concurrent trades reached ({self.config.max_concurrent_trades})"
                )
            if trade.id in self._trades:
                raise TradeRejectedError(f"Duplicate trade {trade.id}")

            if confirm is None:
                confirm = self.config.auto_confirm
            if confirm:
                trade.status = TradeStatus.ACTIVE
            self._trades[trade.id] = trade

            logger.info(
                f"Opened {trade.direction.value} {trade.pair} @ {trade.entry_price} "
                f"(TP {trade.take_profit}, SL {trade.stop_loss}, status {trade.status.value})"
            )
            return trade.model_copy(deep=True)

    async def confirm_trade(self, trade_id: str) -> Trade:
        """pending -> active. Confirming an active trade is a no-op."""
        async with self._lock:
            trade = self._require(trade_id)
            if trade.status == TradeStatus.CLOSED:
                raise TradeStateError(f"Trade {trade_id} is closed")
            if trade.status == TradeStatus.PENDING:
                trade.status = TradeStatus.ACTIVE
                logger.info(f"Confirmed trade {trade_id} ({trade.pair})")
            return trade.model_copy(deep=True)

    async def update_trade(
        self,
        trade_id: str,
        entry_price: float | None = None,
        take_profit: float | None = None,
        stop_loss: float | None = None,
    ) -> Trade:
        """Edit entry/TP/SL of a pending or active trade."""
        async with self._lock:
            trade = self._require(trade_id)
            if trade.status == TradeStatus.CLOSED:
                raise TradeStateError(f"Trade {trade_id} is closed and can no longer be updated")

            for name, value in (
                ("entry_price", entry_price),
                ("take_profit", take_profit),
                ("stop_loss", stop_loss),
            ):
                if value is not None and value <= 0:
                    raise ValueError(f"{name} must be positive, got {value}")

            if entry_price is not None:
                trade.entry_price = entry_price
            if take_profit is not None:
                trade.take_profit = take_profit
            if stop_loss is not None:
                trade.stop_loss = stop_loss
                if trade.status == TradeStatus.PENDING:
                    trade.initial_stop_loss = stop_loss

            logger.info(
                f"Updated trade {trade_id}: entry={trade.entry_price} "
                f"TP={trade.take_profit} SL={trade.stop_loss}"
            )
            return trade.model_copy(deep=True)

    async def close_trade(
        self,
        trade_id: str,
        exit_price: float,
        reason: CloseReason = CloseReason.MANUAL,
        now: datetime | None = None,
    ) -> Trade:
        """active -> closed at ``exit_price``."""
        async with self._lock:
            trade = self._require(trade_id)
            if trade.status != TradeStatus.ACTIVE:
                raise TradeStateError(
                    f"Trade {trade_id} is {trade.status.value}; only active trades can be closed"
                )
            apply_close(trade, exit_price, reason, now or self._clock())
            closed = trade.model_copy(deep=True)

        self._log_close(closed)
        await self._notify([closed])
        return closed

    async def evaluate(self, prices: dict[str, float], now: datetime | None = None) -> list[Trade]:
        """Evaluate every active trade against the latest price of its pair.

        Pairs without a price are skipped this tick.

        Returns:
            Trades closed by this evaluation
        """
        closed: list[Trade] = []
        async with self._lock:
            now = now or self._clock()
            for trade in self._trades.values():
                if trade.status != TradeStatus.ACTIVE:
                    continue
                price = prices.get(trade.pair)
                if price is None:
                    continue

                exit_info = check_exit(trade, price)
                if exit_info is None and self._timed_out(trade, now):
                    exit_info = (price, CloseReason.TIMEOUT)

                if exit_info is not None:
                    apply_close(trade, exit_info[0], exit_info[1], now)
                    closed.append(trade.model_copy(deep=True))
                    continue

                if ratchet_trailing_stop(trade, price, self.config.trailing_stop):
                    logger.debug(f"Trailing stop for {trade.pair} moved to {trade.stop_loss}")

        for trade in closed:
            self._log_close(trade)
        await self._notify(closed)
        return closed

    def _timed_out(self, trade: Trade, now: datetime) -> bool:
        if self.config.max_hold_seconds is None:
            return False
        return (now - trade.opened_at).total_seconds() >= self.config.max_hold_seconds

    def _log_close(self, trade: Trade) -> None:
        logger.info(
            f"Closed {trade.direction.value} {trade.pair} @ {trade.exit_price} "
            f"({trade.close_reason.value}), pnl={trade.pnl:.4f}"
        )

    async def _notify(self, trades: list[Trade]) -> None:
        for trade in trades:
            for callback in self._close_callbacks:
                try:
                    await callback(trade)
                except Exception as e:
                    logger.error(f"Error in close callback: {e}")

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    async def restore(self, trades: Iterable[Trade]) -> None:
        """Load previously persisted trades, replacing the current set."""
        async with self._lock:
            self._trades = {t.id: t.model_copy(deep=True) for t in trades}
            logger.info(f"Restored {len(self._trades)} trades ({self.open_count} open)")
