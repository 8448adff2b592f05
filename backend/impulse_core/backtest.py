"""Backtest replay of the impulse strategy over historical 1s candles.

Walks the candles in time order. For each candle:
1. Evaluate the open trade (if any) against the candle's high/low,
   take-profit first
2. Append the candle to the detector window and detect
3. Open a trade at the candle close on an actionable heat score

A trade still open after the last candle is closed at the last close
with reason ``end_of_data``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence

from impulse_core.detector import ImpulseDetector
from impulse_core.models.candle import Candle
from impulse_core.models.config import EngineConfig
from impulse_core.models.signal import Direction, Signal
from impulse_core.models.trade import CloseReason, Trade, TradeStatus
from impulse_core.signal_provider import exit_levels
from impulse_core.trade_manager import (
    apply_close,
    check_candle_exit,
    ratchet_trailing_stop,
    trade_from_signal,
)

logger = logging.getLogger(__name__)


def candle_time(candle: Candle) -> datetime:
    return datetime.fromtimestamp(candle.timestamp / 1000, tz=timezone.utc)


@dataclass
class BacktestResult:
    pair: str
    trades: list[Trade] = field(default_factory=list)
    candles_processed: int = 0

    @property
    def total_trades(self) -> int:
        return len(self.trades)

    @property
    def wins(self) -> int:
        return sum(1 for t in self.trades if (t.pnl or 0) > 0)

    @property
    def losses(self) -> int:
        return self.total_trades - self.wins

    @property
    def total_pnl(self) -> float:
        return sum(t.pnl or 0.0 for t in self.trades)

    @property
    def win_rate(self) -> float:
        return self.wins / self.total_trades if self.total_trades else 0.0

    def summary(self) -> dict:
        return {
            "pair": self.pair,
            "candles": self.candles_processed,
            "trades": self.total_trades,
            "wins": self.wins,
            "losses": self.losses,
            "total_pnl": round(self.total_pnl, 6),
            "win_rate": round(self.win_rate, 4),
        }


def replay(pair: str, candles: Sequence[Candle], config: EngineConfig) -> BacktestResult:
    """Replay ``candles`` through the detector and a single-position trade loop."""
    detector_config = config.detector_for(pair)
    detector = ImpulseDetector(pair, detector_config)
    result = BacktestResult(pair=pair)
    trade: Trade | None = None

    ordered = sorted(candles, key=lambda c: c.timestamp)
    for candle in ordered:
        now = candle_time(candle)

        if trade is not None:
            exit_info = check_candle_exit(trade, candle.high, candle.low)
            if exit_info is not None:
                apply_close(trade, exit_info[0], exit_info[1], now)
                result.trades.append(trade)
                trade = None
            else:
                ratchet_trailing_stop(trade, candle.close, config.trade.trailing_stop)

        detector.ingest([candle])
        heat = detector.detect()
        result.candles_processed += 1

        if trade is not None:
            continue

        threshold = detector_config.confidence_threshold
        if heat.buy > 0 and heat.buy >= threshold:
            direction, action, value = Direction.LONG, "buy", heat.buy
        elif heat.sell > 0 and heat.sell >= threshold:
            direction, action, value = Direction.SHORT, "sell", heat.sell
        else:
            continue

        take_profit, stop_loss = exit_levels(direction, candle.close, config.trade)
        signal = Signal(
            pair=pair,
            action=action,
            confidence=value / 100,
            last_price=candle.close,
            take_profit=take_profit,
            stop_loss=stop_loss,
            heat=heat,
        )
        trade = trade_from_signal(
            signal, config.trade, now, reason=f"{detector_config.horizon} impulse at {value}%"
        )
        trade.status = TradeStatus.ACTIVE

    if trade is not None and ordered:
        last = ordered[-1]
        apply_close(trade, last.close, CloseReason.END_OF_DATA, candle_time(last))
        result.trades.append(trade)

    logger.info(
        f"Backtest {pair}: {result.total_trades} trades, "
        f"win rate {result.win_rate:.2%}, pnl {result.total_pnl:.4f}"
    )
    return result
