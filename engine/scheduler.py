from __future__ import annotations

import logging
import random
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TickScheduler:
    """
    Self-rescheduling tick loop.

    The next tick is scheduled only after the current one returns, so ticks
    never overlap however long one takes. The wait between ticks is
    `interval_sec` plus a uniform jitter in [0, jitter_sec).
    """

    def __init__(
        self,
        tick_fn: Callable[[], None],
        *,
        interval_sec: float,
        jitter_sec: float = 0.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.tick_fn = tick_fn
        self.interval_sec = max(0.0, float(interval_sec))
        self.jitter_sec = max(0.0, float(jitter_sec))
        self.rng = rng or random.Random()
        self._stop = threading.Event()
        self.ticks_run = 0
        self.ticks_failed = 0

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        self._stop.set()

    def next_delay(self) -> float:
        jitter = self.rng.uniform(0.0, self.jitter_sec) if self.jitter_sec > 0 else 0.0
        return self.interval_sec + jitter

    def run_once(self) -> bool:
        """Run one tick; returns False if it raised."""
        self.ticks_run += 1
        try:
            self.tick_fn()
            return True
        except Exception as exc:  # noqa: BLE001
            self.ticks_failed += 1
            logger.error("Tick %d failed: %s", self.ticks_run, exc, exc_info=True)
            return False

    def run(self, max_ticks: Optional[int] = None) -> None:
        while not self._stop.is_set():
            self.run_once()
            if max_ticks is not None and self.ticks_run >= max_ticks:
                break
            # Event.wait returns early when stop() is called
            if self._stop.wait(self.next_delay()):
                break
