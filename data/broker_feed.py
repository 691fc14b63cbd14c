import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from kiteconnect import KiteConnect, exceptions as kite_exceptions

from core.kite_http import DEFAULT_DELAYS, kite_request

log = logging.getLogger(__name__)


class BrokerAuthError(Exception):
    """Raised when broker authentication fails (invalid API key or access token)."""
    pass


@dataclass(frozen=True)
class Quote:
    bid: Optional[float]
    ask: Optional[float]
    mark: float


def _best_price(levels: Any) -> Optional[float]:
    for level in levels or []:
        try:
            price = float(level.get("price") or 0.0)
        except (TypeError, ValueError, AttributeError):
            continue
        if price > 0:
            return price
    return None


def quote_from_payload(payload: Dict[str, Any]) -> Optional[Quote]:
    """
    Build a Quote from one entry of a Kite `quote()` response.

    Mark is the mid of the best bid/ask; a one-sided or empty book falls
    back to the last traded price.
    """
    depth = payload.get("depth") or {}
    bid = _best_price(depth.get("buy"))
    ask = _best_price(depth.get("sell"))
    if bid is not None and ask is not None:
        return Quote(bid=bid, ask=ask, mark=(bid + ask) / 2.0)
    try:
        last = float(payload.get("last_price") or 0.0)
    except (TypeError, ValueError):
        return None
    if last <= 0:
        return None
    return Quote(bid=bid, ask=ask, mark=last)


class KiteQuoteFeed:
    def __init__(
        self,
        kite: KiteConnect,
        *,
        exchange: str = "NSE",
        segment: Optional[str] = None,
        delays: Iterable[float] = DEFAULT_DELAYS,
    ):
        self._kite = kite
        self.exchange = exchange.upper()
        self.segment = segment
        self._delays = tuple(delays)
        self._warned_token = False
        # Track symbols we've already warned about to avoid log spam
        self._warned_missing_symbols = set()
        # Count consecutive auth errors to detect persistent auth failures
        self._consecutive_auth_errors = 0
        self._max_auth_errors_before_raise = 3

    def instruments(self) -> Dict[str, str]:
        """Return {tradingsymbol: "EXCHANGE:TRADINGSYMBOL"} for the configured exchange."""
        rows = kite_request(self._kite.instruments, self.exchange, delays=self._delays)
        catalog: Dict[str, str] = {}
        for inst in rows:
            if self.segment and inst.get("segment") != self.segment:
                continue
            symbol = str(inst.get("tradingsymbol") or "").upper()
            if symbol:
                catalog.setdefault(symbol, f"{self.exchange}:{symbol}")
        log.info("Loaded %d instruments for %s", len(catalog), self.exchange)
        return catalog

    def get_mark_price(self, handle: str) -> Optional[Quote]:
        """
        Fetch bid/ask/mark for an instrument handle ("NSE:INFY").

        Returns None when the venue has no data for the handle. Transient
        errors propagate after retries; repeated token failures raise
        BrokerAuthError.
        """
        try:
            data = kite_request(self._kite.quote, [handle], delays=self._delays)
            self._consecutive_auth_errors = 0
        except kite_exceptions.TokenException as exc:
            self._consecutive_auth_errors += 1
            if not self._warned_token:
                log.error("Kite token invalid while fetching quote (%s): %s", handle, exc)
                self._warned_token = True
            if self._consecutive_auth_errors >= self._max_auth_errors_before_raise:
                raise BrokerAuthError(f"Broker authentication failed: {exc}") from exc
            return None

        payload = (data or {}).get(handle)
        if not payload:
            if handle not in self._warned_missing_symbols:
                log.warning("No quote data for %s (will not warn again)", handle)
                self._warned_missing_symbols.add(handle)
            return None
        return quote_from_payload(payload)

    def close(self) -> None:
        session = getattr(self._kite, "reqsession", None)
        if session is not None:
            session.close()
