"""
Risk gate between strategy signals and the paper broker.

- Exits toward flat are always allowed.
- Entries are rejected on trade-rate throttle, post-loss cooldown, or
  daily drawdown versus the day-start equity anchor.
- Entries that would push a market past its notional ceiling are sized down.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, Optional

import pytz

from core.state_store import MarketStateStore

logger = logging.getLogger(__name__)

REASON_EXIT = "exit"
REASON_OK = "ok"
REASON_ZERO = "zero"
REASON_MAX_POSITION = "max_position"
REASON_THROTTLE = "throttle"
REASON_COOLDOWN = "cooldown_after_loss"
REASON_DAILY_LOSS = "daily_loss_limit"

# tolerance when deciding that an opposing order fits inside the open position
_QTY_TOL = 1e-12


@dataclass
class RiskDecision:
    allowed: bool
    qty: float
    reason: str


@dataclass
class RiskConfig:
    max_trades_per_min: int = 6
    trade_window_sec: float = 60.0
    cooldown_after_loss_sec: float = 60.0
    daily_loss_limit_pct: float = 3.0
    max_position_notional: float = 500.0
    day_timezone: str = "UTC"

    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RiskConfig":
        field_names = {f for f in cls.__dataclass_fields__ if f != "extra"}
        kwargs = {}
        extra = {}
        for k, v in data.items():
            if k in field_names:
                kwargs[k] = v
            else:
                extra[k] = v
        cfg = cls(**kwargs)
        cfg.extra = extra
        return cfg


def build_risk_config(raw: Any) -> RiskConfig:
    if isinstance(raw, RiskConfig):
        return raw
    if not isinstance(raw, dict):
        return RiskConfig()
    return RiskConfig.from_dict(raw)


class RiskGate:
    def __init__(
        self,
        config: RiskConfig,
        store: MarketStateStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.store = store
        self.clock = clock
        self.tz = pytz.timezone(config.day_timezone or "UTC")
        self.trade_times: Deque[float] = deque()
        self.last_loss_ts: Optional[float] = None
        self.veto_counts: Dict[str, int] = {}
        self.evaluations = 0

    # ---------------------------------------------------------------- utils
    def _today(self) -> str:
        return datetime.fromtimestamp(self.clock(), self.tz).date().isoformat()

    def _prune(self, now: float) -> None:
        window = float(self.config.trade_window_sec)
        while self.trade_times and now - self.trade_times[0] >= window:
            self.trade_times.popleft()

    def _deny(self, reason: str) -> RiskDecision:
        self.veto_counts[reason] = self.veto_counts.get(reason, 0) + 1
        return RiskDecision(allowed=False, qty=0.0, reason=reason)

    def ensure_day_start_equity(self) -> float:
        """
        Anchor the day's starting equity on the first call of each calendar
        day (in the configured time zone) and persist it with the ledger.
        """
        ledger = self.store.ledger
        today = self._today()
        if ledger.day_start_date != today or ledger.day_start_equity is None:
            ledger.day_start_date = today
            ledger.day_start_equity = self.store.equity()
            logger.info("Day-start equity for %s anchored at %.2f", today, ledger.day_start_equity)
            self.store.save()
        return float(ledger.day_start_equity)

    def is_exit(self, symbol: str, side: str, qty: float) -> bool:
        position = self.store.book(symbol).position
        if side == "buy" and position < 0:
            return qty <= abs(position) + _QTY_TOL
        if side == "sell" and position > 0:
            return qty <= position + _QTY_TOL
        return False

    def cap_by_max_position(self, symbol: str, side: str, qty: float, mark: float) -> float:
        max_notional = float(self.config.max_position_notional or 0.0)
        if max_notional <= 0 or mark <= 0:
            return qty
        position = self.store.book(symbol).position
        next_pos = position + qty if side == "buy" else position - qty
        if abs(next_pos) * mark <= max_notional:
            return qty

        target_abs = max_notional / mark
        opposing = (side == "buy" and position < 0) or (side == "sell" and position > 0)
        if opposing:
            # flip through flat, then up to the ceiling on the other side
            max_delta = abs(position) + target_abs
        else:
            max_delta = max(0.0, target_abs - abs(position))
        return min(qty, max_delta)

    # --------------------------------------------------------------- public
    def evaluate(self, symbol: str, side: str, qty: float, mark: float) -> RiskDecision:
        self.evaluations += 1
        side = side.lower()

        if self.is_exit(symbol, side, qty):
            if qty <= 0:
                return RiskDecision(allowed=False, qty=0.0, reason=REASON_ZERO)
            return RiskDecision(allowed=True, qty=qty, reason=REASON_EXIT)

        if qty <= 0:
            return self._deny(REASON_ZERO)

        now = self.clock()
        self._prune(now)
        cap = int(self.config.max_trades_per_min or 0)
        if cap > 0 and len(self.trade_times) >= cap:
            return self._deny(REASON_THROTTLE)

        cooldown = float(self.config.cooldown_after_loss_sec or 0.0)
        if cooldown > 0 and self.last_loss_ts is not None and now - self.last_loss_ts < cooldown:
            return self._deny(REASON_COOLDOWN)

        limit_pct = float(self.config.daily_loss_limit_pct or 0.0)
        if limit_pct > 0:
            day_start = self.ensure_day_start_equity()
            floor = day_start * (1 - limit_pct / 100.0)
            if self.store.equity() < floor:
                return self._deny(REASON_DAILY_LOSS)

        capped = self.cap_by_max_position(symbol, side, qty, mark)
        if capped <= 0:
            return self._deny(REASON_MAX_POSITION)

        self.trade_times.append(now)
        if capped < qty:
            return RiskDecision(allowed=True, qty=capped, reason=REASON_MAX_POSITION)
        return RiskDecision(allowed=True, qty=qty, reason=REASON_OK)

    def on_fill(self, realized_delta: float) -> None:
        """Arm the post-loss cooldown on a losing fill, clear it on a winning one."""
        if realized_delta < 0:
            self.last_loss_ts = self.clock()
        elif realized_delta > 0:
            self.last_loss_ts = None

    def summary(self) -> Dict[str, Any]:
        self._prune(self.clock())
        return {
            "evaluations": self.evaluations,
            "trades_in_window": len(self.trade_times),
            "cooling_down": self.last_loss_ts is not None
            and self.clock() - self.last_loss_ts < float(self.config.cooldown_after_loss_sec or 0.0),
            "day_start_equity": self.store.ledger.day_start_equity,
            "day_start_date": self.store.ledger.day_start_date,
            "veto_counts": dict(sorted(self.veto_counts.items(), key=lambda item: item[1], reverse=True)),
            "config": {k: v for k, v in asdict(self.config).items() if k != "extra"},
        }
