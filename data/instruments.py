from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

ALL = "all"


class UniverseError(RuntimeError):
    """Raised when a configured symbol cannot be resolved to a feed handle."""


def _normalize_symbol(value: str) -> str:
    symbol = (value or "").strip().upper()
    # accept "NSE:INFY" style input; the catalog is keyed by tradingsymbol
    if ":" in symbol:
        symbol = symbol.split(":", 1)[1]
    return symbol


def resolve_universe(
    catalog: Dict[str, str],
    symbols: Union[Sequence[str], str],
    max_markets: int = 1,
) -> List[Tuple[str, str]]:
    """
    Resolve configured symbols to ordered (symbol, handle) pairs.

    - `symbols` is a list, or "all" for every catalog entry (sorted).
    - The result is clamped to `max_markets` (at least one).
    - Any symbol missing from the catalog raises UniverseError.
    """
    limit = max(1, int(max_markets))
    if isinstance(symbols, str):
        if symbols.strip().lower() != ALL:
            symbols = [s for s in symbols.split(",") if s.strip()]
        else:
            if not catalog:
                raise UniverseError("Instrument catalog is empty; cannot expand 'all'")
            chosen = sorted(catalog)[:limit]
            logger.info("Universe 'all' expanded to %d of %d instruments", len(chosen), len(catalog))
            return [(symbol, catalog[symbol]) for symbol in chosen]

    requested: List[str] = []
    for raw in symbols:
        symbol = _normalize_symbol(raw)
        if symbol and symbol not in requested:
            requested.append(symbol)
    if not requested:
        raise UniverseError("No symbols configured")
    if len(requested) > limit:
        logger.info("Clamping universe from %d to max_markets=%d", len(requested), limit)
        requested = requested[:limit]

    missing = [s for s in requested if s not in catalog]
    if missing:
        raise UniverseError(f"Unresolved instrument(s): {', '.join(missing)}")

    resolved = [(symbol, catalog[symbol]) for symbol in requested]
    for symbol, handle in resolved:
        logger.info("Resolved %s -> %s", symbol, handle)
    return resolved
