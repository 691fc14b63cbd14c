"""
JSON lines sink for engine events.

Each event record becomes one object per line in
artifacts/logs/engine_events.jsonl: ts, level, logger, kind, symbol, fields,
message (plus exc_info when present).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

BASE_DIR = Path(__file__).resolve().parents[1]
ENGINE_LOG_PATH = BASE_DIR / "artifacts" / "logs" / "engine_events.jsonl"


class JsonEventFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "kind": getattr(record, "event_kind", None),
            "symbol": getattr(record, "event_symbol", None),
            "fields": getattr(record, "event_fields", None) or {},
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class EventRecordFilter(logging.Filter):
    """Pass only records emitted through log_event()."""

    def filter(self, record: logging.LogRecord) -> bool:
        return getattr(record, "event_kind", None) is not None


def install_engine_json_logger(
    path: Optional[Path] = None,
    *,
    events_only: bool = True,
) -> logging.Handler:
    """Attach a JSON lines file handler to the root logger; a second call for the same path is a no-op."""
    target = Path(path or ENGINE_LOG_PATH).resolve()
    root = logging.getLogger()
    for handler in root.handlers:
        if (
            isinstance(handler, logging.FileHandler)
            and isinstance(handler.formatter, JsonEventFormatter)
            and Path(handler.baseFilename) == target
        ):
            return handler

    target.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(target, encoding="utf-8")
    handler.setFormatter(JsonEventFormatter())
    handler.setLevel(logging.DEBUG)
    if events_only:
        handler.addFilter(EventRecordFilter())
    root.addHandler(handler)
    return handler
