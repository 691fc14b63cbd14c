"""
Tests for core/state_store.py
"""

import json
import logging

import pytest

from core.state_store import JsonStateBackend, MarketBook, MarketStateStore


def test_books_are_created_lazily(store):
    assert dict(store.items()) == {}
    book = store.book("INFY")
    assert isinstance(book, MarketBook)
    assert book.position == 0.0
    assert store.book("INFY") is book


def test_json_backend_round_trip(tmp_path):
    path = tmp_path / "state" / "paper_state.json"
    store = MarketStateStore(JsonStateBackend(path), initial_deposit=2_500.0, settlement="spot")
    book = store.book("INFY")
    book.position = -1.5
    book.entry_price = 1_510.0
    book.realized_pnl = 12.5
    book.fees_paid = 0.75
    book.last_mark = 1_500.0
    book.trades.append({"ts": "2026-10-16T03:45:00+00:00", "side": "sell", "qty": 1.5, "price": 1_510.0})
    store.set_indicator_snapshot("INFY", {"version": 1, "kind": "ema_adaptive", "ticks": 42})
    store.ledger.cash = 2_480.0
    store.ledger.day_start_equity = 2_490.0
    store.ledger.day_start_date = "2026-10-16"
    assert store.save()

    reloaded = MarketStateStore(JsonStateBackend(path), initial_deposit=999.0, settlement="spot")
    assert reloaded.load() is True

    assert reloaded.ledger.deposit == pytest.approx(2_500.0)
    assert reloaded.ledger.cash == pytest.approx(2_480.0)
    assert reloaded.ledger.day_start_equity == pytest.approx(2_490.0)
    assert reloaded.ledger.day_start_date == "2026-10-16"
    assert reloaded.ledger.created_at == store.ledger.created_at
    assert reloaded.book("INFY") == store.book("INFY")
    assert reloaded.indicator_snapshot("INFY")["ticks"] == 42


def test_blob_layout(store):
    store.book("INFY").position = 1.0
    blob = store.to_blob()
    assert set(blob) == {"meta", "deposit", "cash", "markets"}
    assert blob["meta"]["settlement"] == "margin"
    assert blob["meta"]["env"] == "paper"
    assert "INFY" in blob["markets"]
    json.dumps(blob)


def test_reset_ignores_persisted_blob(make_backend):
    backend = make_backend(blob={"deposit": 50.0, "cash": 10.0, "markets": {"INFY": {"position": 3}}})
    store = MarketStateStore(backend, initial_deposit=1_000.0)

    assert store.load(reset=True) is False
    assert store.ledger.cash == pytest.approx(1_000.0)
    assert store.markets == {}


def test_flat_book_drops_stale_entry_price():
    book = MarketBook.from_dict({"position": 0, "entry_price": 123.0, "realized_pnl": "4.5"})
    assert book.entry_price == 0.0
    assert book.realized_pnl == pytest.approx(4.5)


def test_unreadable_state_file_falls_back_to_defaults(tmp_path, caplog):
    path = tmp_path / "paper_state.json"
    path.write_text("{not json", encoding="utf-8")
    store = MarketStateStore(JsonStateBackend(path), initial_deposit=1_000.0)

    with caplog.at_level(logging.WARNING, logger="core.state_store"):
        assert store.load() is False
    assert store.ledger.cash == pytest.approx(1_000.0)
    assert "Failed to read state file" in caplog.text


def test_failed_save_warns_and_keeps_memory(tmp_path, caplog):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x", encoding="utf-8")
    store = MarketStateStore(JsonStateBackend(blocker / "paper_state.json"), initial_deposit=1_000.0)
    store.book("INFY").position = 2.0

    with caplog.at_level(logging.WARNING, logger="core.state_store"):
        assert store.save() is False
    assert "Failed to write state file" in caplog.text
    assert store.book("INFY").position == 2.0


def test_totals_and_nav_drift(store):
    book = store.book("INFY")
    book.position = 2.0
    book.entry_price = 100.0
    book.last_mark = 105.0
    book.realized_pnl = 3.0
    book.fees_paid = 1.0
    store.ledger.cash = 10_000.0 + 3.0 - 1.0

    totals = store.totals()
    assert totals["unrealized_pnl"] == pytest.approx(10.0)
    assert totals["equity"] == pytest.approx(10_012.0)
    assert totals["drift"] == pytest.approx(0.0)
    assert store.nav_consistent()

    store.ledger.cash += 5.0
    assert not store.nav_consistent()
