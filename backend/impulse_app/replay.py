"""CLI entry point for replaying the impulse strategy over historical 1s candles.

Usage:
    python -m impulse_app.replay --pair XRP/USDT --minutes 120
    python -m impulse_app.replay --pair SOL/USDT --start 2025-06-01T12:00 --minutes 60
"""

import argparse
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import orjson

from impulse_app.clients.binance_rest import BinanceRestClient
from impulse_app.config import get_settings
from impulse_app.strategy_config import load_engine_config
from impulse_core.backtest import replay

logger = logging.getLogger(__name__)


def parse_time(value: str) -> datetime:
    """Parse an ISO timestamp (UTC if no offset is given)."""
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid timestamp: {value} (expected ISO format)")
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Replay the impulse strategy on 1s candles")
    parser.add_argument("--pair", default="XRP/USDT", help="Trading pair (default: XRP/USDT)")
    parser.add_argument("--start", type=parse_time, default=None, help="Start time (default: now - minutes)")
    parser.add_argument("--minutes", type=int, default=60, help="Minutes of data to replay (default: 60)")
    parser.add_argument("--strategy", type=Path, default=None, help="strategy.yaml to use")
    parser.add_argument("--json", action="store_true", help="Print the summary as JSON")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> dict:
    settings = get_settings()
    config = load_engine_config(args.strategy or Path(settings.strategy_file), [args.pair])

    start = args.start or datetime.now(timezone.utc) - timedelta(minutes=args.minutes)
    end = start + timedelta(minutes=args.minutes)
    start_ms, end_ms = int(start.timestamp() * 1000), int(end.timestamp() * 1000)

    client = BinanceRestClient(api_key=settings.binance_api_key, base_url=settings.binance_base_url)
    try:
        candles = await client.fetch_candles(args.pair, "1s", start_ms, end_ms)
    finally:
        await client.close()

    logger.info(f"Replaying {len(candles)} candles for {args.pair}")
    return replay(args.pair, candles, config).summary()


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)

    args = parse_args(argv)
    summary = asyncio.run(run(args))

    if args.json:
        print(orjson.dumps(summary, option=orjson.OPT_INDENT_2).decode())
    else:
        for key, value in summary.items():
            print(f"{key:>10}: {value}")


if __name__ == "__main__":
    main()
