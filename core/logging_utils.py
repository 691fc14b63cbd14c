"""
Process-wide logging setup for the paper engine.

Usage:
    from core.logging_utils import setup_logging
    setup_logging(config.logging)

Config keys (all optional):
    level        INFO by default; the LOG_LEVEL env var wins
    directory    where the dated log file goes; empty/null disables it
    file_prefix  log file name prefix
    quiet        loggers held at INFO or above (HTTP client chatter)
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from core.event_logging import DEFAULT_DATE_FORMAT, DEFAULT_FORMAT, build_stream_handler

DEFAULT_QUIET = ("urllib3", "kiteconnect")


def resolve_level(logging_cfg: Dict[str, Any]) -> int:
    name = str(os.getenv("LOG_LEVEL") or logging_cfg.get("level") or "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _dated_file_handler(directory: str, prefix: str) -> logging.Handler:
    log_dir = Path(directory)
    log_dir.mkdir(parents=True, exist_ok=True)
    path = log_dir / f"{prefix}_{datetime.now():%Y%m%d}.log"
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT))
    return handler


def setup_logging(logging_cfg: Dict[str, Any]) -> int:
    """Replace root handlers with console (+ dated file) output. Returns the level."""
    level = resolve_level(logging_cfg)
    handlers: List[logging.Handler] = [build_stream_handler()]
    directory = logging_cfg.get("directory", "logs")
    if directory:
        handlers.append(_dated_file_handler(str(directory), str(logging_cfg.get("file_prefix") or "paper_trader")))

    logging.basicConfig(level=level, handlers=handlers, force=True)
    for name in logging_cfg.get("quiet") or DEFAULT_QUIET:
        logging.getLogger(name).setLevel(max(level, logging.INFO))
    return level
