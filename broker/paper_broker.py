"""
In-memory paper broker.

- Fills every order immediately at the mark, adjusted for slippage.
- Tracks per-market positions, VWAP entry, realized PnL and fees.
- Does NOT talk to the venue or place real orders.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from core.state_store import MarketStateStore, sign

logger = logging.getLogger(__name__)

SIDES = ("buy", "sell")
# residual positions below this are float noise from partial closes
QTY_EPSILON = 1e-12


@dataclass
class ExecutionConfig:
    fee_bps: float = 2.0
    slippage_bps: float = 1.0


def build_execution_config(raw: Optional[Dict[str, Any]]) -> ExecutionConfig:
    if not isinstance(raw, dict):
        return ExecutionConfig()
    allowed = {}
    for field_name in ExecutionConfig.__dataclass_fields__.keys():  # type: ignore[attr-defined]
        if field_name in raw and raw[field_name] is not None:
            allowed[field_name] = float(raw[field_name])
    return ExecutionConfig(**allowed)


@dataclass
class Trade:
    ts: str
    side: str
    qty: float
    price: float
    notional: float     # + for sell (cash in), - for buy (cash out)
    fee: float
    realized_pnl: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FillResult:
    trade: Trade
    realized_delta: float


class PaperBroker:
    def __init__(
        self,
        store: MarketStateStore,
        config: Optional[ExecutionConfig] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.config = config or ExecutionConfig()
        self.clock = clock

    def slip(self, price: float, side: str) -> float:
        s = (self.config.slippage_bps / 1e4) * price
        return price + s if side == "buy" else price - s

    def mark_to_market(self, symbol: str, mark: Optional[float] = None) -> float:
        return self.store.book(symbol).unrealized_pnl(mark)

    def fill(self, symbol: str, side: str, qty: float, mark: float) -> Optional[FillResult]:
        """
        Execute a paper fill against the symbol's book.

        Returns None (and touches nothing) for a non-positive quantity.
        """
        if qty <= 0:
            return None
        side = side.lower()
        if side not in SIDES:
            raise ValueError(f"side must be buy or sell, got {side!r}")

        book = self.store.book(symbol)
        ledger = self.store.ledger

        px = self.slip(mark, side)
        notional = px * qty
        fee = (self.config.fee_bps / 1e4) * abs(notional)

        prev_pos = book.position
        signed_qty = qty if side == "buy" else -qty
        new_pos = prev_pos + signed_qty
        if abs(new_pos) < QTY_EPSILON:
            new_pos = 0.0
        realized = 0.0

        if prev_pos == 0 or sign(prev_pos) == sign(signed_qty):
            # open or add on the same side
            total_cost = book.entry_price * abs(prev_pos) + px * qty
            book.entry_price = total_cost / abs(new_pos) if new_pos != 0 else 0.0
        else:
            # reduce / close / flip
            closing_qty = min(abs(prev_pos), qty)
            realized = (px - book.entry_price) * sign(prev_pos) * closing_qty
            book.realized_pnl += realized
            if new_pos == 0:
                book.entry_price = 0.0
            elif sign(new_pos) != sign(prev_pos):
                book.entry_price = px

        book.position = new_pos
        book.fees_paid += fee

        if ledger.settlement == "spot":
            ledger.cash += notional if side == "sell" else -notional
        else:
            ledger.cash += realized
        ledger.cash -= fee

        trade = Trade(
            ts=datetime.fromtimestamp(self.clock(), timezone.utc).isoformat(),
            side=side,
            qty=qty,
            price=px,
            notional=notional if side == "sell" else -notional,
            fee=fee,
            realized_pnl=realized,
        )
        self.store.record_trade(symbol, trade.to_dict())
        logger.debug(
            "Paper fill %s %s %.6f @ %.6f (pos %.6f -> %.6f, realized %.4f, fee %.4f)",
            symbol,
            side,
            qty,
            px,
            prev_pos,
            new_pos,
            realized,
            fee,
        )
        return FillResult(trade=trade, realized_delta=realized)
