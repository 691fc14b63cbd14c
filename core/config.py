"""
Config loading utilities.

- Loads YAML config (e.g., configs/dev.yaml).
- Merges an optional sibling overrides file (configs/dev.local.yaml).
- Validates the values the engine cannot start without.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

import yaml

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parents[1]

FEED_SOURCES = {"kite", "replay"}
SETTLEMENT_MODES = {"margin", "spot"}


class ConfigError(RuntimeError):
    """Raised when the configuration cannot drive a paper session."""


@dataclass
class AppConfig:
    raw: Dict[str, Any]

    @property
    def trading(self) -> Dict[str, Any]:
        return self.raw.get("trading") or {}

    @property
    def feed(self) -> Dict[str, Any]:
        return self.raw.get("feed") or {}

    @property
    def strategy(self) -> Dict[str, Any]:
        return self.raw.get("strategy") or {}

    @property
    def execution(self) -> Dict[str, Any]:
        return self.raw.get("execution") or {}

    @property
    def risk(self) -> Dict[str, Any]:
        return self.raw.get("risk") or {}

    @property
    def state(self) -> Dict[str, Any]:
        return self.raw.get("state") or {}

    @property
    def logging(self) -> Dict[str, Any]:
        return self.raw.get("logging") or {}


def load_config(path: str) -> AppConfig:
    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config root must be a mapping: {path}")
    _apply_local_overrides(raw, Path(path))
    cfg = AppConfig(raw=raw)
    validate_config(cfg)
    return cfg


def _apply_local_overrides(raw: Dict[str, Any], path: Path) -> None:
    overrides_path = path.with_name(f"{path.stem}.local{path.suffix}")
    if not overrides_path.exists():
        return
    try:
        overrides = yaml.safe_load(overrides_path.read_text(encoding="utf-8")) or {}
    except Exception as exc:  # noqa: BLE001
        logger.warning("Failed to read local overrides at %s: %s", overrides_path, exc)
        return
    if not isinstance(overrides, dict) or not overrides:
        return
    _recursive_merge(raw, overrides)
    logger.info(
        "Applied local overrides from %s (keys=%s)",
        overrides_path,
        ", ".join(overrides.keys()),
    )


def _recursive_merge(target: Dict[str, Any], overrides: Dict[str, Any]) -> None:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _recursive_merge(target[key], value)
        else:
            target[key] = value


def universe_symbols(cfg: AppConfig) -> List[str] | str:
    """
    Return the configured universe as a list of symbols, or the "all" wildcard.
    Accepts a YAML list or a comma separated string.
    """
    raw = cfg.trading.get("universe")
    if raw is None:
        return []
    if isinstance(raw, str):
        if raw.strip().lower() == "all":
            return "all"
        return [s.strip().upper() for s in raw.split(",") if s.strip()]
    return [str(s).strip().upper() for s in raw if str(s).strip()]


def _number(section: Dict[str, Any], key: str, default: float, where: str) -> float:
    value = section.get(key, default)
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{where}.{key} must be a number, got {value!r}") from exc


def validate_config(cfg: AppConfig) -> None:
    """Fail fast on values the engine cannot run with."""
    symbols = universe_symbols(cfg)
    if not symbols:
        raise ConfigError("trading.universe is required (list of symbols or 'all')")

    if _number(cfg.trading, "initial_deposit", 10000.0, "trading") <= 0:
        raise ConfigError("trading.initial_deposit must be > 0")
    if _number(cfg.trading, "base_notional", 100.0, "trading") <= 0:
        raise ConfigError("trading.base_notional must be > 0")
    if _number(cfg.trading, "max_markets", 1, "trading") < 1:
        raise ConfigError("trading.max_markets must be >= 1")
    if _number(cfg.trading, "tick_interval_sec", 1.0, "trading") <= 0:
        raise ConfigError("trading.tick_interval_sec must be > 0")

    source = str(cfg.feed.get("source", "kite")).lower()
    if source not in FEED_SOURCES:
        raise ConfigError(f"feed.source must be one of {sorted(FEED_SOURCES)}, got {source!r}")
    if source == "replay" and not cfg.feed.get("replay_path"):
        raise ConfigError("feed.replay_path is required when feed.source is 'replay'")

    settlement = str(cfg.execution.get("settlement", "margin")).lower()
    if settlement not in SETTLEMENT_MODES:
        raise ConfigError(f"execution.settlement must be one of {sorted(SETTLEMENT_MODES)}")

    # Imported here to keep config importable without the strategy package.
    from strategies import STRATEGY_REGISTRY

    name = str(cfg.strategy.get("name", "ema_adaptive"))
    if name not in STRATEGY_REGISTRY:
        raise ConfigError(f"strategy.name {name!r} is not registered ({', '.join(STRATEGY_REGISTRY)})")

    params = cfg.strategy.get("params") or {}
    fast = _number(params, "fast_period", 20, "strategy.params")
    slow = _number(params, "slow_period", 60, "strategy.params")
    if fast < 1 or slow < 1:
        raise ConfigError("strategy.params fast_period/slow_period must be >= 1")
    if fast >= slow:
        raise ConfigError(
            f"strategy.params.slow_period ({slow:g}) must be greater than fast_period ({fast:g})"
        )
