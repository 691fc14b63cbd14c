from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional, Protocol

Action = Literal["buy", "sell"]
Intent = Literal["enter_long", "exit_long", "enter_short", "exit_short"]

ENTRY_INTENTS = {"enter_long", "enter_short"}
EXIT_INTENTS = {"exit_long", "exit_short"}


@dataclass(frozen=True)
class PriceTick:
    mark: float
    ts: float                  # epoch seconds
    bid: Optional[float] = None
    ask: Optional[float] = None


@dataclass(frozen=True)
class Signal:
    action: Optional[Action] = None
    notional: float = 0.0
    intent: Optional[Intent] = None
    reason: str = ""

    @property
    def is_entry(self) -> bool:
        return self.intent in ENTRY_INTENTS

    @property
    def is_exit(self) -> bool:
        return self.intent in EXIT_INTENTS


class TickStrategy(Protocol):
    """
    Per-instrument decision engine.

    `snapshot()` must return plain JSON-able data that, handed to `restore()`
    on a fresh instance, resumes the strategy exactly where it left off.
    """

    def on_price(self, tick: PriceTick) -> Signal:
        ...

    def snapshot(self) -> Dict[str, Any]:
        ...

    def restore(self, state: Dict[str, Any]) -> None:
        ...


def ema_step(prev: Optional[float], price: float, period: int) -> float:
    k = 2.0 / (period + 1.0)
    return price if prev is None else prev + k * (price - prev)


def snapshot_float(state: Dict[str, Any], key: str) -> Optional[float]:
    """Read an optional numeric field from a persisted snapshot."""
    value = state.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"snapshot field {key!r} must be a number, got {value!r}")
    return float(value)


def snapshot_int(state: Dict[str, Any], key: str, default: int) -> int:
    value = state.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"snapshot field {key!r} must be an integer, got {value!r}")
    return value
