"""Engine configuration loaded from strategy.yaml.

Supports:
- Detector, trade and ensemble blocks (see impulse_core.models.config)
- Per-pair detector overrides, merged over the default detector block
- No YAML file = defaults, with the trading pairs taken from settings
"""

import logging
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from impulse_core.errors import ConfigurationError
from impulse_core.models.config import EngineConfig

logger = logging.getLogger(__name__)

_DEFAULT_PATH = Path(__file__).parent.parent / "strategy.yaml"


def _merge_overrides(raw: dict) -> dict:
    """Expand ``pair_overrides`` entries into full detector blocks.

    An override only lists the fields it changes; everything else comes
    from the top-level ``detector`` block.
    """
    overrides = raw.get("pair_overrides") or {}
    if not isinstance(overrides, dict):
        raise ConfigurationError("pair_overrides must be a mapping of pair -> detector fields")

    base = raw.get("detector") or {}
    merged = {}
    for pair, fields in overrides.items():
        if not isinstance(fields, dict):
            raise ConfigurationError(f"Override for {pair} must be a mapping")
        merged[pair] = {**base, **fields}
    return {**raw, "pair_overrides": merged}


def load_engine_config(
    path: Path | None = None,
    trading_pairs: list[str] | None = None,
) -> EngineConfig:
    """Load the engine config from a YAML file.

    Args:
        path: YAML file (defaults to backend/strategy.yaml)
        trading_pairs: Pairs to use when the file does not list any

    Raises:
        ConfigurationError: invalid YAML, invalid values or an empty pair list
    """
    config_path = path or _DEFAULT_PATH

    env_path = config_path.parent / ".env"
    load_dotenv(env_path, override=False)

    raw: dict = {}
    if config_path.exists():
        try:
            with open(config_path) as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Cannot parse {config_path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping at the top level")
    else:
        logger.info("No strategy.yaml found at %s, using defaults", config_path)

    if trading_pairs is not None and "trading_pairs" not in raw:
        raw["trading_pairs"] = trading_pairs

    try:
        config = EngineConfig(**_merge_overrides(raw))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid strategy configuration: {e}") from e

    if not config.trading_pairs:
        raise ConfigurationError("At least one trading pair is required")

    logger.info(
        "Loaded strategy config: %d pairs, %d overrides, auto_confirm=%s",
        len(config.trading_pairs),
        len(config.pair_overrides),
        config.trade.auto_confirm,
    )
    return config
