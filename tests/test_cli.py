"""
Tests for apps/run_paper.py and scripts/show_paper_state.py
"""

import pytest

from apps import run_paper
from broker.paper_broker import ExecutionConfig, PaperBroker
from core.state_store import JsonStateBackend, MarketStateStore
from scripts import show_paper_state


def test_run_paper_exits_1_on_missing_config(tmp_path, capsys):
    assert run_paper.main(["--config", str(tmp_path / "missing.yaml")]) == 1
    assert "Failed to load config" in capsys.readouterr().out


def test_run_paper_exits_1_on_invalid_config(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("trading:\n  universe: []\n", encoding="utf-8")
    assert run_paper.main(["--config", str(path)]) == 1


def test_parse_args_defaults():
    args = run_paper.parse_args([])
    assert args.config == "configs/dev.yaml"
    assert args.reset is False
    assert args.max_ticks is None


def test_show_paper_state_prints_books_and_trades(tmp_path, capsys):
    path = tmp_path / "paper_state.json"
    store = MarketStateStore(JsonStateBackend(path), initial_deposit=1_000.0)
    broker = PaperBroker(store, ExecutionConfig(fee_bps=0.0, slippage_bps=0.0))
    broker.fill("INFY", "buy", 2.0, 100.0)
    store.book("INFY").last_mark = 101.0
    store.save()

    show_paper_state.main(["--state", str(path)])
    out = capsys.readouterr().out
    assert "Settlement     : margin" in out
    assert "INFY" in out
    assert "Last trades for INFY:" in out
    assert "NAV drift          : 0.000000000" in out


def test_show_paper_state_requires_snapshot(tmp_path):
    with pytest.raises(FileNotFoundError):
        show_paper_state.main(["--state", str(tmp_path / "none.json")])
