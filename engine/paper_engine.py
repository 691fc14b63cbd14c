from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from broker.paper_broker import PaperBroker
from core.event_logging import log_event
from core.state_store import MarketStateStore
from data.broker_feed import BrokerAuthError
from engine.scheduler import TickScheduler
from risk.risk_gate import RiskGate
from strategies.base import PriceTick, Signal, TickStrategy

logger = logging.getLogger(__name__)


@dataclass
class EngineSettings:
    base_notional: float = 100.0
    min_qty: float = 0.001
    # skip an entry when the min-qty floor inflates it past this multiple of base_notional (0 disables)
    max_entry_overshoot: float = 2.0
    min_mark_move_bps: float = 0.0
    tick_interval_sec: float = 1.0
    tick_jitter_sec: float = 0.0
    log_every_sec: float = 10.0
    autosave_every_sec: float = 30.0
    nav_tolerance: float = 1e-6


def build_engine_settings(raw: Optional[Dict[str, Any]]) -> EngineSettings:
    if not isinstance(raw, dict):
        return EngineSettings()
    allowed = {}
    for field_name in EngineSettings.__dataclass_fields__.keys():  # type: ignore[attr-defined]
        if raw.get(field_name) is not None:
            allowed[field_name] = float(raw[field_name])
    return EngineSettings(**allowed)


def _fmt_px(value: Optional[float]) -> str:
    if value is None:
        return "n/a"
    return f"{value:.2f}" if value >= 1000 else f"{value:.4f}"


class PaperEngine:
    """
    Tick orchestrator: feed -> strategy -> risk gate -> paper broker -> store.

    One tick walks the whole universe in order. The scheduler starts the
    next tick only after this one returns.
    """

    def __init__(
        self,
        *,
        settings: EngineSettings,
        feed: Any,
        universe: Sequence[Tuple[str, str]],
        store: MarketStateStore,
        strategies: Dict[str, TickStrategy],
        broker: PaperBroker,
        risk: RiskGate,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.feed = feed
        self.universe = list(universe)
        self.store = store
        self.strategies = strategies
        self.broker = broker
        self.risk = risk
        self.clock = clock
        self.monotonic = monotonic
        self.scheduler = TickScheduler(
            self.tick,
            interval_sec=settings.tick_interval_sec,
            jitter_sec=settings.tick_jitter_sec,
        )
        self._last_status: Optional[float] = None
        self._last_save: Optional[float] = None
        self._shutdown_done = False
        self._restore_strategies()

    def _restore_strategies(self) -> None:
        for symbol, _handle in self.universe:
            snapshot = self.store.indicator_snapshot(symbol)
            if not snapshot:
                continue
            try:
                self.strategies[symbol].restore(snapshot)
                logger.info("Restored indicator state for %s", symbol)
            except (ValueError, TypeError, KeyError) as exc:
                logger.warning("Discarding indicator snapshot for %s: %s", symbol, exc)

    # ----------------------------------------------------------------- tick
    def tick(self) -> None:
        for symbol, handle in self.universe:
            try:
                self._process_instrument(symbol, handle)
            except Exception as exc:  # noqa: BLE001
                logger.error("[%s] instrument processing failed: %s", symbol, exc, exc_info=True)

        now = self.monotonic()
        if self._last_status is None or now - self._last_status >= self.settings.log_every_sec:
            self._last_status = now
            self.report_status()
        if self._last_save is None:
            self._last_save = now
        elif now - self._last_save >= self.settings.autosave_every_sec:
            self._last_save = now
            self.store.save()

    def _process_instrument(self, symbol: str, handle: str) -> None:
        try:
            quote = self.feed.get_mark_price(handle)
        except BrokerAuthError as exc:
            logger.error("[%s] feed authentication failed: %s", symbol, exc)
            return
        except Exception as exc:  # noqa: BLE001
            logger.warning("[%s] feed error, skipping this tick: %s", symbol, exc)
            return
        if quote is None or not quote.mark or quote.mark <= 0:
            return

        mark = float(quote.mark)
        book = self.store.book(symbol)
        prev_mark = book.last_mark
        book.last_mark = mark

        if prev_mark and self.settings.min_mark_move_bps > 0:
            move_bps = abs((mark - prev_mark) / prev_mark) * 1e4
            if move_bps < self.settings.min_mark_move_bps:
                return

        strategy = self.strategies[symbol]
        signal = strategy.on_price(
            PriceTick(mark=mark, ts=self.clock(), bid=quote.bid, ask=quote.ask)
        )
        self.store.set_indicator_snapshot(symbol, strategy.snapshot())

        if signal.action is None:
            return
        log_event(
            "SIGNAL",
            f"{signal.action.upper()} {signal.intent or ''}".strip(),
            symbol=symbol,
            extra={"mark": _fmt_px(mark), "reason": signal.reason or "-"},
        )

        order = self.order_for_signal(symbol, signal, mark)
        if order is None:
            return
        side, qty = order
        self._execute(symbol, side, qty, mark)

    # --------------------------------------------------------------- orders
    def entry_qty(self, notional: float, mark: float) -> Optional[float]:
        """
        Convert a notional into a quantity floored at min_qty. Returns None
        when the floor would inflate the order past max_entry_overshoot.
        """
        base = notional if notional > 0 else self.settings.base_notional
        qty = max(self.settings.min_qty, base / mark)
        limit = self.settings.max_entry_overshoot
        if limit > 0 and qty * mark > base * limit:
            return None
        return qty

    def order_for_signal(self, symbol: str, signal: Signal, mark: float) -> Optional[Tuple[str, float]]:
        """
        Translate a signal into (side, qty).

        Exits close the opposing position in full and never flip it. Entries
        open only from flat.
        """
        position = self.store.book(symbol).position
        side = signal.action

        closes = (side == "buy" and position < 0) or (side == "sell" and position > 0)
        if signal.is_exit or (signal.intent is None and closes):
            if not closes:
                logger.debug("[%s] %s exit with no opposing position; nothing to close", symbol, side)
                return None
            return side, abs(position)

        if position != 0:
            logger.debug("[%s] %s entry ignored; position already open (%.6f)", symbol, side, position)
            return None

        qty = self.entry_qty(signal.notional, mark)
        if qty is None:
            log_event(
                "RISK_BLOCK",
                f"{side.upper()} entry skipped: min_qty floor overshoots notional",
                symbol=symbol,
                extra={"min_qty": self.settings.min_qty, "mark": _fmt_px(mark), "reason": "min_qty_overshoot"},
                level=logging.INFO,
            )
            return None
        return side, qty

    def _execute(self, symbol: str, side: str, qty: float, mark: float) -> None:
        decision = self.risk.evaluate(symbol, side, qty, mark)
        if not decision.allowed or decision.qty <= 0:
            log_event(
                "RISK_BLOCK",
                f"{side.upper()} vetoed",
                symbol=symbol,
                extra={"qty": f"{qty:.6f}", "reason": decision.reason},
            )
            return

        result = self.broker.fill(symbol, side, decision.qty, mark)
        if result is None:
            return
        self.risk.on_fill(result.realized_delta)
        trade = result.trade
        log_event(
            "ORDER_FILL",
            f"{side.upper()} {trade.qty:.6f} @ ~{_fmt_px(trade.price)}",
            symbol=symbol,
            extra={
                "cash": f"{self.store.ledger.cash:.2f}",
                "rpnl": f"{result.realized_delta:.4f}",
                "fee": f"{trade.fee:.4f}",
                "reason": decision.reason,
            },
        )

    # ------------------------------------------------------------ reporting
    def report_status(self) -> Dict[str, float]:
        lines: List[str] = []
        for symbol, _handle in self.universe:
            book = self.store.book(symbol)
            lines.append(
                f"[{symbol}] px~{_fmt_px(book.last_mark)} pos={book.position:.4f} "
                f"entry={_fmt_px(book.entry_price)} UPNL={book.unrealized_pnl():.2f} "
                f"RPNL={book.realized_pnl:.2f} fees={book.fees_paid:.2f}"
            )

        totals = self.store.totals()
        log_event(
            "STATUS",
            f"equity={totals['equity']:.2f} cash={totals['cash']:.2f} "
            f"UPNL={totals['unrealized_pnl']:.2f} RPNL={totals['realized_pnl']:.2f} "
            f"deposit={totals['deposit']:.2f} | " + " | ".join(lines),
        )
        vetoes = self.risk.summary().get("veto_counts") or {}
        if vetoes:
            logger.debug("Risk vetoes so far: %s", vetoes)

        if abs(totals["drift"]) > self.settings.nav_tolerance:
            log_event(
                "NAV_MISMATCH",
                f"equity={totals['equity']:.6f} expected={totals['expected_equity']:.6f}",
                extra={"drift": f"{totals['drift']:.9f}"},
            )
        return totals

    def summary_lines(self) -> List[str]:
        lines: List[str] = ["=== FINAL PAPER STATS ==="]
        for symbol, _handle in self.universe:
            book = self.store.book(symbol)
            lines.append(f"-- {symbol} --")
            lines.append(f"Trades: {len(book.trades)}")
            lines.append(f"Realized PnL: {book.realized_pnl:.2f}")
            lines.append(f"Fees Paid: {book.fees_paid:.2f}")
            lines.append(f"Position: {book.position:.6f} @ {book.entry_price:.6f}")
            if book.trades:
                last = book.trades[-1]
                lines.append(
                    f"Last trade: {last.get('ts')} {last.get('side')} {last.get('qty')} @ {last.get('price')}"
                )
        lines.append(f"Cash: {self.store.ledger.cash:.2f}")
        lines.append(f"Equity: {self.store.equity():.2f}")
        return lines

    # ------------------------------------------------------------ lifecycle
    def run_forever(self, max_ticks: Optional[int] = None) -> None:
        logger.info(
            "Starting PaperEngine with universe: %s",
            ", ".join(symbol for symbol, _ in self.universe),
        )
        try:
            self.risk.ensure_day_start_equity()
            self.scheduler.run(max_ticks=max_ticks)
        finally:
            self.shutdown()

    def stop(self) -> None:
        self.scheduler.stop()

    def shutdown(self) -> List[str]:
        """Stop ticking, close the feed, force a final save, log the summary."""
        if self._shutdown_done:
            return []
        self._shutdown_done = True
        self.scheduler.stop()
        try:
            self.feed.close()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Error closing price feed: %s", exc)

        saved = self.store.save()
        lines = self.summary_lines()
        for line in lines:
            logger.info(line)
        if saved:
            logger.info("State saved to %s", getattr(self.store.backend, "path", "backend"))
        else:
            logger.warning("Final state save failed; in-memory state was not persisted")
        return lines
