"""
Engine bootstrap shared by the paper entry point and tests.

Wires config -> logging -> price feed -> state store -> universe ->
strategies/broker/risk gate -> PaperEngine.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from broker.paper_broker import PaperBroker, build_execution_config
from core.config import AppConfig, universe_symbols
from core.json_log import install_engine_json_logger
from core.kite_env import make_kite_client, token_is_valid
from core.logging_utils import setup_logging
from core.state_store import DEFAULT_STATE_PATH, JsonStateBackend, MarketStateStore
from data.broker_feed import KiteQuoteFeed
from data.instruments import resolve_universe
from data.replay_feed import ReplayFeed
from engine.paper_engine import PaperEngine, build_engine_settings
from risk.risk_gate import RiskGate, build_risk_config
from strategies import build_strategy

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parents[1]

LOGIN_HINT = "populate secrets/kite_tokens.env with a fresh KITE_ACCESS_TOKEN"


def setup_engine_logging(cfg: AppConfig) -> None:
    setup_logging(cfg.logging)
    json_events = cfg.logging.get("json_events", True)
    if json_events:
        path = json_events if isinstance(json_events, str) else None
        install_engine_json_logger(Path(path) if path else None)
    logger.info("Engine logging initialized")


def build_feed(cfg: AppConfig) -> Any:
    """Return a price feed exposing instruments(), get_mark_price(handle) and close()."""
    source = str(cfg.feed.get("source", "kite")).lower()
    if source == "replay":
        return ReplayFeed(cfg.feed["replay_path"])

    kite = make_kite_client(
        secrets_dir=cfg.feed.get("secrets_dir"),
        timeout=int(cfg.feed.get("timeout", 7)),
    )
    if not token_is_valid(kite):
        logger.warning("Kite preflight failed; quotes may be unavailable (%s)", LOGIN_HINT)
    exchange = cfg.feed.get("exchange") or cfg.trading.get("exchange") or "NSE"
    return KiteQuoteFeed(kite, exchange=str(exchange), segment=cfg.feed.get("segment"))


def build_store(cfg: AppConfig, *, reset: bool = False) -> MarketStateStore:
    path = cfg.state.get("path") or DEFAULT_STATE_PATH
    store = MarketStateStore(
        JsonStateBackend(path),
        initial_deposit=float(cfg.trading.get("initial_deposit", 10000.0)),
        env=str(cfg.trading.get("env", "paper")),
        settlement=str(cfg.execution.get("settlement", "margin")).lower(),
    )
    store.load(reset=reset)
    return store


def strategy_params(cfg: AppConfig) -> Dict[str, Any]:
    params = dict(cfg.strategy.get("params") or {})
    params.setdefault("base_notional", float(cfg.trading.get("base_notional", 100.0)))
    return params


def build_engine(cfg: AppConfig, *, reset: bool = False, feed: Optional[Any] = None) -> PaperEngine:
    feed = feed if feed is not None else build_feed(cfg)
    store = build_store(cfg, reset=reset)

    universe = resolve_universe(
        feed.instruments(),
        universe_symbols(cfg),
        max_markets=int(cfg.trading.get("max_markets", 1)),
    )

    name = str(cfg.strategy.get("name", "ema_adaptive"))
    params = strategy_params(cfg)
    strategies = {symbol: build_strategy(name, params) for symbol, _handle in universe}

    broker = PaperBroker(store, build_execution_config(cfg.execution))
    risk = RiskGate(build_risk_config(cfg.risk), store)

    logger.info(
        "Paper engine wired: strategy=%s markets=%d settlement=%s state=%s",
        name,
        len(universe),
        store.ledger.settlement,
        store.backend.path,
    )
    return PaperEngine(
        settings=build_engine_settings(cfg.trading),
        feed=feed,
        universe=universe,
        store=store,
        strategies=strategies,
        broker=broker,
        risk=risk,
    )
