"""
Tagged engine events on top of stdlib logging.

Every event line starts with a [KIND:...] tag so the console can color it
and log readers can grep by type. The symbol and key/value fields also ride
on the LogRecord (`event_kind`, `event_symbol`, `event_fields`) for the JSON
lines handler in core/json_log.py.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Literal, Optional, TextIO

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

EventKind = Literal[
    "SIGNAL",
    "ORDER_FILL",
    "RISK_BLOCK",
    "STATUS",
    "NAV_MISMATCH",
    "INFO",
    "WARN",
    "ERROR",
]

# kind -> (default level, ANSI color)
EVENT_STYLES: Dict[str, tuple] = {
    "SIGNAL": (logging.INFO, "\033[36m"),
    "ORDER_FILL": (logging.INFO, "\033[32m"),
    "RISK_BLOCK": (logging.DEBUG, "\033[33m"),
    "STATUS": (logging.INFO, "\033[34m"),
    "NAV_MISMATCH": (logging.WARNING, "\033[31m"),
    "INFO": (logging.INFO, "\033[37m"),
    "WARN": (logging.WARNING, "\033[33m"),
    "ERROR": (logging.ERROR, "\033[31m"),
}
_RESET = "\033[0m"

EVENTS_LOGGER = "paper.events"


def use_color(stream: TextIO) -> bool:
    if os.getenv("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


class EventLogFormatter(logging.Formatter):
    """Plain formatter that colors the [KIND:...] tag of event records."""

    def __init__(self, *, color: bool = False) -> None:
        super().__init__(fmt=DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        kind = getattr(record, "event_kind", None)
        if not self.color or kind not in EVENT_STYLES:
            return line
        tag = f"[KIND:{kind}]"
        return line.replace(tag, f"{EVENT_STYLES[kind][1]}{tag}{_RESET}", 1)


def build_stream_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(EventLogFormatter(color=use_color(handler.stream)))
    return handler


def format_event(
    kind: str,
    msg: str,
    symbol: Optional[str] = None,
    fields: Optional[Dict[str, Any]] = None,
) -> str:
    parts = [f"[KIND:{kind}] {msg}"]
    if symbol:
        parts.append(f"sym={symbol}")
    if fields:
        parts.append(",".join(f"{key}={value}" for key, value in fields.items()))
    return " | ".join(parts)


def log_event(
    kind: EventKind,
    msg: str,
    *,
    symbol: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
    level: Optional[int] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Emit one engine event.

    `level` defaults per kind (risk blocks at DEBUG, NAV mismatches at
    WARNING). `logger` defaults to the shared "paper.events" logger.
    """
    if level is None:
        level = EVENT_STYLES.get(kind, (logging.INFO, ""))[0]
    target = logger or logging.getLogger(EVENTS_LOGGER)
    target.log(
        level,
        format_event(kind, msg, symbol, extra),
        extra={
            "event_kind": kind,
            "event_symbol": symbol,
            "event_fields": dict(extra or {}),
        },
    )
