"""
Strategies live here.

Each strategy satisfies `strategies.base.TickStrategy`:

- `on_price(tick)` returns a `Signal` (action "buy"/"sell"/None plus intent).
- `snapshot()` / `restore(state)` carry all streaming state across restarts.

Strategies are picked by name from STRATEGY_REGISTRY.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from strategies.base import PriceTick, Signal, TickStrategy
from strategies.ema_adaptive import EmaAdaptiveStrategy
from strategies.ema_crossover import EmaCrossoverStrategy

STRATEGY_REGISTRY: Dict[str, Callable[[Dict[str, Any]], TickStrategy]] = {
    "ema_adaptive": EmaAdaptiveStrategy,
    "ema_crossover": EmaCrossoverStrategy,
}


def build_strategy(name: str, params: Optional[Dict[str, Any]] = None) -> TickStrategy:
    factory = STRATEGY_REGISTRY.get(name)
    if factory is None:
        raise KeyError(f"Unknown strategy {name!r}; registered: {', '.join(STRATEGY_REGISTRY)}")
    return factory(dict(params or {}))


__all__ = [
    "STRATEGY_REGISTRY",
    "PriceTick",
    "Signal",
    "TickStrategy",
    "build_strategy",
]
