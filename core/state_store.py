from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parents[1]
DEFAULT_STATE_PATH = BASE_DIR / "artifacts" / "paper_state.json"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _safe_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


def sign(value: float) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


@dataclass
class MarketBook:
    """Per-instrument position, PnL and indicator state."""

    position: float = 0.0
    entry_price: float = 0.0
    realized_pnl: float = 0.0
    fees_paid: float = 0.0
    last_mark: Optional[float] = None
    trades: List[Dict[str, Any]] = field(default_factory=list)
    indicator_snapshot: Optional[Dict[str, Any]] = None

    def unrealized_pnl(self, mark: Optional[float] = None) -> float:
        px = self.last_mark if mark is None else mark
        if self.position == 0 or px is None:
            return 0.0
        return (px - self.entry_price) * sign(self.position) * abs(self.position)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarketBook":
        last_mark = data.get("last_mark")
        book = cls(
            position=_safe_float(data.get("position")),
            entry_price=_safe_float(data.get("entry_price")),
            realized_pnl=_safe_float(data.get("realized_pnl")),
            fees_paid=_safe_float(data.get("fees_paid")),
            last_mark=None if last_mark is None else _safe_float(last_mark),
            trades=list(data.get("trades") or []),
            indicator_snapshot=data.get("indicator_snapshot"),
        )
        if book.position == 0:
            book.entry_price = 0.0
        return book


@dataclass
class Ledger:
    """Global account state shared by every market book."""

    deposit: float
    cash: float
    env: str = "paper"
    settlement: str = "margin"
    created_at: str = field(default_factory=_utcnow_iso)
    day_start_equity: Optional[float] = None
    day_start_date: Optional[str] = None


class JsonStateBackend:
    """
    Best-effort JSON blob persistence.

    Writes go to a temp file that is renamed over the target so a crash never
    leaves a half-written checkpoint. Failures are logged, never raised.
    """

    def __init__(self, path: Optional[Path | str] = None) -> None:
        self.path = Path(path or DEFAULT_STATE_PATH)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.is_file():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to read state file %s: %s", self.path, exc)
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring state file %s: root is not an object", self.path)
            return None
        return data

    def save(self, blob: Dict[str, Any]) -> bool:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as handle:
                json.dump(blob, handle, indent=2, default=str)
            tmp.replace(self.path)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to write state file %s: %s", self.path, exc)
            return False
        return True


class MarketStateStore:
    """
    Owns the Ledger and the per-instrument MarketBooks.

    Books are created lazily on first access. `record_trade` persists
    synchronously; everything else is persisted by explicit `save()` calls.
    """

    def __init__(
        self,
        backend: Any,
        *,
        initial_deposit: float,
        env: str = "paper",
        settlement: str = "margin",
    ) -> None:
        self.backend = backend
        self.ledger = Ledger(
            deposit=float(initial_deposit),
            cash=float(initial_deposit),
            env=env,
            settlement=settlement,
        )
        self.markets: Dict[str, MarketBook] = {}
        self._initial_deposit = float(initial_deposit)
        self._env = env
        self._settlement = settlement

    # ------------------------------------------------------------ lifecycle
    def load(self, *, reset: bool = False) -> bool:
        """
        Populate state from the backend. Returns True when a persisted blob
        was applied, False when starting from fresh defaults.
        """
        blob = None if reset else self.backend.load()
        if reset:
            logger.info("State reset requested; starting from a fresh ledger")
        if not blob:
            self.ledger = Ledger(
                deposit=self._initial_deposit,
                cash=self._initial_deposit,
                env=self._env,
                settlement=self._settlement,
            )
            self.markets = {}
            return False
        self.apply_blob(blob)
        logger.info(
            "Loaded paper state: cash=%.2f deposit=%.2f markets=%d",
            self.ledger.cash,
            self.ledger.deposit,
            len(self.markets),
        )
        return True

    def apply_blob(self, blob: Dict[str, Any]) -> None:
        meta = blob.get("meta") or {}
        deposit = _safe_float(blob.get("deposit"), self._initial_deposit)
        settlement = str(meta.get("settlement") or self._settlement)
        if settlement != self._settlement:
            logger.warning(
                "Persisted state uses %s settlement but config asks for %s; keeping %s",
                settlement,
                self._settlement,
                settlement,
            )
        day_equity = meta.get("day_start_equity")
        self.ledger = Ledger(
            deposit=deposit,
            cash=_safe_float(blob.get("cash"), deposit),
            env=str(meta.get("env") or self._env),
            settlement=settlement,
            created_at=str(meta.get("created_at") or _utcnow_iso()),
            day_start_equity=None if day_equity is None else _safe_float(day_equity),
            day_start_date=meta.get("day_start_date"),
        )
        self.markets = {
            str(symbol): MarketBook.from_dict(data or {})
            for symbol, data in (blob.get("markets") or {}).items()
        }

    def to_blob(self) -> Dict[str, Any]:
        return {
            "meta": {
                "created_at": self.ledger.created_at,
                "env": self.ledger.env,
                "settlement": self.ledger.settlement,
                "day_start_equity": self.ledger.day_start_equity,
                "day_start_date": self.ledger.day_start_date,
                "saved_at": _utcnow_iso(),
            },
            "deposit": self.ledger.deposit,
            "cash": self.ledger.cash,
            "markets": {symbol: book.to_dict() for symbol, book in self.markets.items()},
        }

    def save(self) -> bool:
        return bool(self.backend.save(self.to_blob()))

    # ---------------------------------------------------------------- books
    def book(self, symbol: str) -> MarketBook:
        book = self.markets.get(symbol)
        if book is None:
            book = MarketBook()
            self.markets[symbol] = book
        return book

    def items(self) -> Iterator[Tuple[str, MarketBook]]:
        return iter(self.markets.items())

    def record_trade(self, symbol: str, trade: Dict[str, Any]) -> None:
        self.book(symbol).trades.append(trade)
        self.save()

    def set_indicator_snapshot(self, symbol: str, snapshot: Optional[Dict[str, Any]]) -> None:
        self.book(symbol).indicator_snapshot = snapshot

    def indicator_snapshot(self, symbol: str) -> Optional[Dict[str, Any]]:
        book = self.markets.get(symbol)
        return book.indicator_snapshot if book else None

    # ----------------------------------------------------------- aggregates
    def total_unrealized(self) -> float:
        return sum(book.unrealized_pnl() for book in self.markets.values())

    def market_value(self) -> float:
        total = 0.0
        for book in self.markets.values():
            if book.position and book.last_mark is not None:
                total += book.position * book.last_mark
        return total

    def equity(self) -> float:
        """
        Margin settlement: cash already carries realized PnL, so equity is
        cash plus open PnL. Spot settlement: cash paid for the inventory, so
        equity is cash plus the marked value of open positions.
        """
        if self.ledger.settlement == "spot":
            return self.ledger.cash + self.market_value()
        return self.ledger.cash + self.total_unrealized()

    def totals(self) -> Dict[str, float]:
        realized = sum(b.realized_pnl for b in self.markets.values())
        fees = sum(b.fees_paid for b in self.markets.values())
        unrealized = self.total_unrealized()
        equity = self.equity()
        expected = self.ledger.deposit + realized + unrealized - fees
        return {
            "equity": equity,
            "cash": self.ledger.cash,
            "deposit": self.ledger.deposit,
            "realized_pnl": realized,
            "unrealized_pnl": unrealized,
            "fees_paid": fees,
            "expected_equity": expected,
            "drift": equity - expected,
        }

    def nav_consistent(self, tolerance: float = 1e-6) -> bool:
        drift = self.totals()["drift"]
        return math.isfinite(drift) and abs(drift) <= tolerance
