"""
Inspect the persisted paper state.

Reads artifacts/paper_state.json (or --state PATH) and prints:

- ledger meta (deposit, cash, settlement, day-start anchor)
- per-market position, entry, last mark, realized/unrealized PnL and fees
- equity and the NAV cross-check

Usage:
    python -m scripts.show_paper_state
    python -m scripts.show_paper_state --state artifacts/paper_state.json
"""

import argparse
from pathlib import Path
from typing import Any, Dict

from core.state_store import DEFAULT_STATE_PATH, JsonStateBackend, MarketStateStore

LAST_TRADES = 5


def _load_store(path: Path) -> MarketStateStore:
    if not path.exists():
        raise FileNotFoundError(f"No paper state snapshot found at {path}. Run the engine first.")
    backend = JsonStateBackend(path)
    blob = backend.load()
    if blob is None:
        raise ValueError(f"Paper state at {path} is unreadable.")
    meta: Dict[str, Any] = blob.get("meta") or {}
    store = MarketStateStore(
        backend,
        initial_deposit=float(blob.get("deposit") or 0.0),
        settlement=str(meta.get("settlement") or "margin"),
    )
    store.apply_blob(blob)
    return store


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Print the persisted paper state")
    parser.add_argument("--state", default=str(DEFAULT_STATE_PATH), help="Path to the state JSON")
    args = parser.parse_args(argv)

    store = _load_store(Path(args.state))
    ledger = store.ledger

    print(f"Paper state @ {args.state}")
    print("=" * 78)
    print("Ledger:")
    print(f"  Env            : {ledger.env}")
    print(f"  Settlement     : {ledger.settlement}")
    print(f"  Created        : {ledger.created_at}")
    print(f"  Deposit        : {ledger.deposit:12.2f}")
    print(f"  Cash           : {ledger.cash:12.2f}")
    if ledger.day_start_equity is not None:
        print(f"  Day start      : {ledger.day_start_equity:12.2f} ({ledger.day_start_date})")

    print("-" * 78)
    if not store.markets:
        print("No markets.")
    else:
        print(
            f"{'Symbol':15} {'Pos':>10} {'Entry':>10} {'Last':>10} "
            f"{'RealPnL':>10} {'UnrealPnL':>10} {'Fees':>8}"
        )
        for symbol, book in store.items():
            last = book.last_mark if book.last_mark is not None else 0.0
            print(
                f"{symbol:15} {book.position:10.4f} {book.entry_price:10.2f} {last:10.2f} "
                f"{book.realized_pnl:10.2f} {book.unrealized_pnl():10.2f} {book.fees_paid:8.2f}"
            )

    totals = store.totals()
    print("-" * 78)
    print(f"Sum realized PnL   : {totals['realized_pnl']:.2f}")
    print(f"Sum unrealized PnL : {totals['unrealized_pnl']:.2f}")
    print(f"Fees paid          : {totals['fees_paid']:.2f}")
    print(f"Equity             : {totals['equity']:.2f}")
    print(f"NAV drift          : {totals['drift']:.9f}")
    print()
    print(f"Total trades recorded in snapshot: {sum(len(b.trades) for _, b in store.items())}")
    for symbol, book in store.items():
        if not book.trades:
            continue
        print(f"Last trades for {symbol}:")
        for trade in book.trades[-LAST_TRADES:]:
            print(
                f"  {trade.get('ts')} {str(trade.get('side')).upper():4} "
                f"{float(trade.get('qty', 0.0)):.6f} @ {float(trade.get('price', 0.0)):.4f} "
                f"fee={float(trade.get('fee', 0.0)):.4f} rpnl={float(trade.get('realized_pnl', 0.0)):.4f}"
            )


if __name__ == "__main__":
    main()
