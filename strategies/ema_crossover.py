"""
Simple EMA crossover with a fixed hysteresis band.

Goes long when fast - slow rises above +hysteresis_bps of the mark, short
(unless long_only) when it falls below -hysteresis_bps, and reports each
transition once.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from strategies.base import PriceTick, Signal, ema_step, snapshot_float, snapshot_int

SNAPSHOT_VERSION = 1


class EmaCrossoverStrategy:
    def __init__(self, params: Optional[Dict[str, Any]] = None) -> None:
        params = dict(params or {})
        self.fast_period = int(params.get("fast_period", 20))
        self.slow_period = int(params.get("slow_period", 60))
        if self.fast_period >= self.slow_period:
            raise ValueError("slow_period must be greater than fast_period")
        self.base_notional = float(params.get("base_notional", 100.0))
        self.hysteresis_bps = float(params.get("hysteresis_bps", 5.0))
        self.long_only = bool(params.get("long_only", False))

        self.fast: Optional[float] = None
        self.slow: Optional[float] = None
        self.state = "flat"
        self.ticks = 0

    def snapshot(self) -> Dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "kind": "ema_crossover",
            "fast": self.fast,
            "slow": self.slow,
            "state": self.state,
            "ticks": self.ticks,
        }

    def restore(self, state: Dict[str, Any]) -> None:
        if not state:
            return
        if state.get("version") != SNAPSHOT_VERSION or state.get("kind") != "ema_crossover":
            raise ValueError("Unsupported ema_crossover snapshot")
        regime = state.get("state", "flat")
        if regime not in ("flat", "long", "short"):
            raise ValueError(f"Unknown crossover state in snapshot: {regime!r}")
        fast = snapshot_float(state, "fast")
        slow = snapshot_float(state, "slow")
        ticks = snapshot_int(state, "ticks", 0)
        self.fast, self.slow, self.state, self.ticks = fast, slow, regime, ticks

    def on_price(self, tick: PriceTick) -> Signal:
        mark = float(tick.mark)
        self.fast = ema_step(self.fast, mark, self.fast_period)
        self.slow = ema_step(self.slow, mark, self.slow_period)
        self.ticks += 1
        if self.ticks < 2:
            return Signal(notional=self.base_notional, reason="warmup")

        delta_bps = (self.fast - self.slow) / mark * 1e4

        if delta_bps > self.hysteresis_bps and self.state != "long":
            intent = "exit_short" if self.state == "short" else "enter_long"
            self.state = "flat" if self.state == "short" else "long"
            return Signal("buy", self.base_notional, intent, f"delta={delta_bps:.2f}bps")

        if delta_bps < -self.hysteresis_bps and self.state != "short":
            if self.state == "long":
                self.state = "flat"
                return Signal("sell", self.base_notional, "exit_long", f"delta={delta_bps:.2f}bps")
            if not self.long_only:
                self.state = "short"
                return Signal("sell", self.base_notional, "enter_short", f"delta={delta_bps:.2f}bps")

        return Signal(notional=self.base_notional)
