"""
Tests for core/event_logging.py, core/json_log.py, core/logging_utils.py and core/kite_env.py
"""

import json
import logging

import pytest

from core.event_logging import EventLogFormatter, format_event, log_event
from core.json_log import install_engine_json_logger
from core.kite_env import KiteCredentials, KiteCredentialsError, parse_env_file
from core.logging_utils import resolve_level


def test_format_event_tags_symbol_and_fields():
    line = format_event("ORDER_FILL", "BUY 1 @ ~100", "INFY", {"fee": "0.02", "reason": "ok"})
    assert line == "[KIND:ORDER_FILL] BUY 1 @ ~100 | sym=INFY | fee=0.02,reason=ok"


def test_log_event_default_levels(caplog):
    with caplog.at_level(logging.DEBUG, logger="paper.events"):
        log_event("RISK_BLOCK", "vetoed", symbol="INFY", extra={"reason": "throttle"})
        log_event("NAV_MISMATCH", "drift")
        log_event("SIGNAL", "BUY")

    levels = {r.event_kind: r.levelno for r in caplog.records}
    assert levels == {"RISK_BLOCK": logging.DEBUG, "NAV_MISMATCH": logging.WARNING, "SIGNAL": logging.INFO}
    assert caplog.records[0].event_fields == {"reason": "throttle"}


def test_formatter_colors_only_when_enabled():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "[KIND:SIGNAL] BUY", None, None)
    record.event_kind = "SIGNAL"
    assert "\033[" not in EventLogFormatter(color=False).format(record)
    assert "\033[36m[KIND:SIGNAL]" in EventLogFormatter(color=True).format(record)


def test_json_logger_writes_event_lines(tmp_path):
    path = tmp_path / "events.jsonl"
    handler = install_engine_json_logger(path)
    try:
        assert install_engine_json_logger(path) is handler
        logging.getLogger("plain").warning("not an event")
        log_event("STATUS", "equity=100.00", extra={"drift": 0}, level=logging.WARNING)
        handler.flush()

        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 1
        payload = json.loads(lines[0])
        assert payload["kind"] == "STATUS"
        assert payload["fields"] == {"drift": 0}
        assert payload["message"].startswith("[KIND:STATUS]")
    finally:
        logging.getLogger().removeHandler(handler)
        handler.close()


def test_resolve_level(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    assert resolve_level({"level": "debug"}) == logging.DEBUG
    assert resolve_level({"level": "nonsense"}) == logging.INFO
    monkeypatch.setenv("LOG_LEVEL", "ERROR")
    assert resolve_level({"level": "debug"}) == logging.ERROR


def test_parse_env_file(tmp_path):
    path = tmp_path / "kite.env"
    path.write_text("# comment\nKITE_API_KEY = 'abc'\n\nBROKEN\nEMPTY=\n", encoding="utf-8")
    assert parse_env_file(path) == {"KITE_API_KEY": "abc", "EMPTY": ""}
    assert parse_env_file(tmp_path / "missing.env") == {}


def test_credentials_files_win_over_environment(tmp_path):
    (tmp_path / "kite.env").write_text("KITE_API_KEY=file_key\n", encoding="utf-8")
    creds = KiteCredentials.load(tmp_path, environ={"KITE_API_KEY": "env_key", "KITE_ACCESS_TOKEN": "tok"})
    assert creds == KiteCredentials(api_key="file_key", access_token="tok")


def test_credentials_missing_token(tmp_path):
    with pytest.raises(KiteCredentialsError):
        KiteCredentials.load(tmp_path, environ={"KITE_API_KEY": "key"})


def test_credentials_reject_token_for_other_key(tmp_path):
    (tmp_path / "kite_tokens.env").write_text(
        "KITE_ACCESS_TOKEN=tok\nKITE_TOKEN_API_KEY=old_key\n", encoding="utf-8"
    )
    with pytest.raises(KiteCredentialsError):
        KiteCredentials.load(tmp_path, environ={"KITE_API_KEY": "new_key"})
