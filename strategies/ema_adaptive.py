"""
Adaptive EMA crossover for bull and bear regimes.

- fast/slow EMA spread measured in bps of the current mark
- slow EMA slope as a regime filter (only buy a rising trend, only short a falling one)
- entry/exit thresholds widen with an EWMA of absolute tick returns
- min-hold and post-exit cooldown to limit churn
- optional breakout confirmation against the recent high/low window
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import asdict, dataclass, fields
from typing import Any, Deque, Dict, Optional

from strategies.base import PriceTick, Signal, ema_step, snapshot_float, snapshot_int

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

STATE_FLAT = "flat"
STATE_LONG = "long"
STATE_SHORT = "short"


@dataclass
class EmaAdaptiveParams:
    fast_period: int = 20
    slow_period: int = 60
    base_notional: float = 100.0

    # side-specific base thresholds in bps (1bp = 0.01%)
    enter_bps_long: float = 20.0
    exit_bps_long: float = 10.0
    enter_bps_short: float = 28.0
    exit_bps_short: float = 12.0

    long_only: bool = False

    min_hold_sec: float = 120.0
    cooldown_sec: float = 30.0

    # volatility adaptation (EWMA of abs returns, in bps)
    vol_lookback: int = 60
    vol_k: float = 1.5

    # breakout filter, 0 disables
    breakout_lookback: int = 0
    breakout_bps: float = 5.0

    # ticks before signals are trusted; defaults to slow_period
    warmup_ticks: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EmaAdaptiveParams":
        names = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in (data or {}).items() if k in names}
        unknown = sorted(set(data or {}) - names)
        if unknown:
            logger.warning("Ignoring unknown ema_adaptive params: %s", ", ".join(unknown))
        return cls(**kwargs)


class EmaAdaptiveStrategy:
    def __init__(self, params: Optional[EmaAdaptiveParams | Dict[str, Any]] = None) -> None:
        if not isinstance(params, EmaAdaptiveParams):
            params = EmaAdaptiveParams.from_dict(params)
        if params.fast_period >= params.slow_period:
            raise ValueError("slow_period must be greater than fast_period")
        self.params = params

        self.fast: Optional[float] = None
        self.slow: Optional[float] = None
        self.prev_slow: Optional[float] = None
        self.last_mark: Optional[float] = None
        self.vol_ewma_bps: Optional[float] = None
        self.state = STATE_FLAT
        self.entry_ts: Optional[float] = None
        self.last_exit_ts: Optional[float] = None
        self.ticks = 0
        warmup = params.warmup_ticks if params.warmup_ticks is not None else params.slow_period
        self.warmup_ticks = max(2, int(warmup))
        self.window: Deque[float] = deque(maxlen=max(0, int(params.breakout_lookback)) or None)

    # ---------------------------------------------------------------- state
    def snapshot(self) -> Dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "kind": "ema_adaptive",
            "fast": self.fast,
            "slow": self.slow,
            "prev_slow": self.prev_slow,
            "last_mark": self.last_mark,
            "vol_ewma_bps": self.vol_ewma_bps,
            "state": self.state,
            "entry_ts": self.entry_ts,
            "last_exit_ts": self.last_exit_ts,
            "ticks": self.ticks,
            "warmup_ticks": self.warmup_ticks,
            "window": list(self.window),
            "params": asdict(self.params),
        }

    def restore(self, state: Dict[str, Any]) -> None:
        """Load a snapshot; on any error the current state is left untouched."""
        if not state:
            return
        version = state.get("version")
        if version != SNAPSHOT_VERSION or state.get("kind", "ema_adaptive") != "ema_adaptive":
            raise ValueError(f"Unsupported ema_adaptive snapshot (version={version!r})")
        regime = state.get("state", STATE_FLAT)
        if regime not in (STATE_FLAT, STATE_LONG, STATE_SHORT):
            raise ValueError(f"Unknown regime state in snapshot: {regime!r}")
        numbers = {
            key: snapshot_float(state, key)
            for key in ("fast", "slow", "prev_slow", "last_mark", "vol_ewma_bps", "entry_ts", "last_exit_ts")
        }
        ticks = snapshot_int(state, "ticks", 0)
        warmup = snapshot_int(state, "warmup_ticks", self.warmup_ticks)
        window = state.get("window") or []
        if not isinstance(window, list):
            raise TypeError(f"snapshot field 'window' must be a list, got {window!r}")
        if any(isinstance(m, bool) or not isinstance(m, (int, float)) for m in window):
            raise TypeError(f"snapshot field 'window' must hold numbers, got {window!r}")
        marks = [float(m) for m in window]

        for key, value in numbers.items():
            setattr(self, key, value)
        self.state = regime
        self.ticks = ticks
        self.warmup_ticks = max(2, warmup)
        self.window.clear()
        self.window.extend(marks)

    # -------------------------------------------------------------- helpers
    def _signal(self, action=None, intent=None, reason: str = "") -> Signal:
        return Signal(
            action=action,
            notional=self.params.base_notional,
            intent=intent,
            reason=reason,
        )

    def _update_volatility(self, mark: float) -> None:
        if self.last_mark is not None and self.last_mark > 0:
            ret_bps = abs((mark - self.last_mark) / self.last_mark) * 1e4
            k = 2.0 / (self.params.vol_lookback + 1.0)
            if self.vol_ewma_bps is None:
                self.vol_ewma_bps = ret_bps
            else:
                self.vol_ewma_bps += k * (ret_bps - self.vol_ewma_bps)
        self.last_mark = mark

    def _breakout_ok(self, mark: float) -> tuple[bool, bool]:
        p = self.params
        if p.breakout_lookback <= 0 or len(self.window) < 2:
            return True, True
        recent_high = max(self.window)
        recent_low = min(self.window)
        long_ok = mark >= recent_high * (1 - p.breakout_bps / 1e4)
        short_ok = mark <= recent_low * (1 + p.breakout_bps / 1e4)
        return long_ok, short_ok

    # ----------------------------------------------------------------- tick
    def on_price(self, tick: PriceTick) -> Signal:
        p = self.params
        mark = float(tick.mark)
        now = float(tick.ts)

        self._update_volatility(mark)
        if p.breakout_lookback > 0:
            self.window.append(mark)

        self.prev_slow = self.slow
        self.fast = ema_step(self.fast, mark, p.fast_period)
        self.slow = ema_step(self.slow, mark, p.slow_period)

        self.ticks += 1
        if self.ticks < self.warmup_ticks or self.prev_slow is None:
            return self._signal(reason="warmup")

        spread_bps = (self.fast - self.slow) / mark * 1e4
        slope_bps = (self.slow - self.prev_slow) / mark * 1e4

        vol = self.vol_ewma_bps or 0.0
        dyn_enter_long = max(p.enter_bps_long, vol * p.vol_k)
        dyn_exit_long = max(p.exit_bps_long, vol * p.vol_k * 0.5)
        dyn_enter_short = max(p.enter_bps_short, vol * p.vol_k)
        dyn_exit_short = max(p.exit_bps_short, vol * p.vol_k * 0.5)

        held = self.entry_ts is None or (now - self.entry_ts) >= p.min_hold_sec
        cooled = self.last_exit_ts is None or (now - self.last_exit_ts) >= p.cooldown_sec

        if self.state == STATE_LONG:
            if spread_bps < -dyn_exit_long and held:
                self.state = STATE_FLAT
                self.last_exit_ts = now
                return self._signal("sell", "exit_long", f"spread={spread_bps:.2f}bps")
            return self._signal()

        if self.state == STATE_SHORT:
            if spread_bps > dyn_exit_short and held:
                self.state = STATE_FLAT
                self.last_exit_ts = now
                return self._signal("buy", "exit_short", f"spread={spread_bps:.2f}bps")
            return self._signal()

        long_ok, short_ok = self._breakout_ok(mark)
        if spread_bps > dyn_enter_long and slope_bps > 0 and cooled and long_ok:
            self.state = STATE_LONG
            self.entry_ts = now
            return self._signal("buy", "enter_long", f"spread={spread_bps:.2f}bps slope={slope_bps:.3f}bps")
        if (
            not p.long_only
            and spread_bps < -dyn_enter_short
            and slope_bps < 0
            and cooled
            and short_ok
        ):
            self.state = STATE_SHORT
            self.entry_ts = now
            return self._signal("sell", "enter_short", f"spread={spread_bps:.2f}bps slope={slope_bps:.3f}bps")

        return self._signal()
