"""
Paper trading engine - standalone process entrypoint.

Usage:
    python -m apps.run_paper --config configs/dev.yaml
    python -m apps.run_paper --config configs/dev.yaml --reset
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import Optional

from core.config import ConfigError, load_config
from core.engine_bootstrap import build_engine, setup_engine_logging
from core.kite_env import KiteCredentialsError
from data.broker_feed import BrokerAuthError
from data.instruments import UniverseError
from engine.paper_engine import PaperEngine

logger = logging.getLogger(__name__)

# Global engine reference for signal handling
_engine: Optional[PaperEngine] = None


def signal_handler(signum, frame):
    """Ask the engine to stop; shutdown runs once the current tick returns."""
    logger.info("Received signal %d, shutting down paper engine...", signum)
    if _engine:
        _engine.stop()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Simulated (paper) trading engine")
    parser.add_argument(
        "--config",
        default="configs/dev.yaml",
        help="Path to YAML config file (default: configs/dev.yaml)",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Ignore the persisted state and start from the configured deposit.",
    )
    parser.add_argument(
        "--max-ticks",
        type=int,
        default=None,
        help="Stop after this many ticks (default: run until interrupted).",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    global _engine

    args = parse_args(argv)

    try:
        cfg = load_config(args.config)
    except (ConfigError, FileNotFoundError) as exc:
        print(f"ERROR: Failed to load config from {args.config}: {exc}")
        return 1

    setup_engine_logging(cfg)

    logger.info("=" * 60)
    logger.info("PAPER ENGINE")
    logger.info("=" * 60)
    logger.info("Config: %s", args.config)
    logger.info("Reset: %s", args.reset)
    logger.info("=" * 60)

    try:
        _engine = build_engine(cfg, reset=args.reset)
    except (UniverseError, KiteCredentialsError, BrokerAuthError, FileNotFoundError, ValueError, KeyError) as exc:
        logger.error("Failed to initialize paper engine: %s", exc)
        return 1

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info("Starting paper engine... (Press Ctrl+C to stop)")
    try:
        _engine.run_forever(max_ticks=args.max_ticks)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        # no-op when run_forever already shut down
        _engine.shutdown()
        logger.info("Paper engine shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
