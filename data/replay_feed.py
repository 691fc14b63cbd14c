"""
CSV replay price feed.

Replays recorded quotes through the same interface as the live Kite feed so
a paper session can run offline.

CSV columns:
    symbol | bid | ask | mark   (mark may be replaced by price or last_price)
    ts is optional and only used for ordering.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterator, Optional

import pandas as pd

from data.broker_feed import Quote

logger = logging.getLogger(__name__)

_MARK_COLUMNS = ("mark", "price", "last_price", "close")


def load_quotes(path: Path | str) -> pd.DataFrame:
    """
    Load and normalize a quote CSV into columns: symbol, bid, ask, mark.
    Rows with no usable mark are dropped.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Replay file not found: {path}")
    df = pd.read_csv(path)
    df.columns = [str(c).strip().lower() for c in df.columns]
    if "symbol" not in df.columns:
        raise ValueError(f"Replay file {path} has no 'symbol' column")

    if "ts" in df.columns:
        df["ts"] = pd.to_datetime(df["ts"], utc=True, errors="coerce")
        df = df.sort_values("ts", kind="stable")

    for col in ("bid", "ask"):
        df[col] = pd.to_numeric(df[col], errors="coerce") if col in df.columns else float("nan")

    mark_col = next((c for c in _MARK_COLUMNS if c in df.columns), None)
    if mark_col is not None:
        df["mark"] = pd.to_numeric(df[mark_col], errors="coerce")
    else:
        df["mark"] = float("nan")
    mid = (df["bid"] + df["ask"]) / 2.0
    df["mark"] = df["mark"].fillna(mid)

    df["symbol"] = df["symbol"].astype(str).str.strip().str.upper()
    df = df.dropna(subset=["mark"])
    df = df[df["mark"] > 0]
    return df[["symbol", "bid", "ask", "mark"]].reset_index(drop=True)


def _optional(value: float) -> Optional[float]:
    return None if pd.isna(value) else float(value)


class ReplayFeed:
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._frame = load_quotes(self.path)
        self._cursors: Dict[str, Iterator[Quote]] = {}
        for symbol, group in self._frame.groupby("symbol", sort=False):
            self._cursors[symbol] = self._iter_quotes(group)
        logger.info(
            "Replay feed loaded %d quotes for %d symbols from %s",
            len(self._frame),
            len(self._cursors),
            self.path,
        )

    @staticmethod
    def _iter_quotes(group: pd.DataFrame) -> Iterator[Quote]:
        for row in group.itertuples(index=False):
            yield Quote(bid=_optional(row.bid), ask=_optional(row.ask), mark=float(row.mark))

    def instruments(self) -> Dict[str, str]:
        return {symbol: symbol for symbol in self._cursors}

    def get_mark_price(self, handle: str) -> Optional[Quote]:
        cursor = self._cursors.get(handle)
        if cursor is None:
            return None
        return next(cursor, None)

    def close(self) -> None:
        self._cursors.clear()
