"""
Tests for engine/scheduler.py
"""

import random
import threading
import time

from engine.scheduler import TickScheduler


def test_ticks_never_overlap():
    """A slow tick delays the next one instead of running concurrently."""
    active = []
    overlaps = []
    lock = threading.Lock()

    def slow_tick():
        with lock:
            if active:
                overlaps.append(True)
            active.append(1)
        time.sleep(0.01)
        with lock:
            active.pop()

    scheduler = TickScheduler(slow_tick, interval_sec=0.0)
    scheduler.run(max_ticks=5)

    assert scheduler.ticks_run == 5
    assert overlaps == []


def test_failing_tick_does_not_stop_the_loop():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) % 2:
            raise RuntimeError("feed exploded")

    scheduler = TickScheduler(flaky, interval_sec=0.0)
    scheduler.run(max_ticks=4)

    assert len(calls) == 4
    assert scheduler.ticks_failed == 2


def test_jitter_stays_within_bounds():
    scheduler = TickScheduler(lambda: None, interval_sec=1.0, jitter_sec=0.5, rng=random.Random(7))
    delays = [scheduler.next_delay() for _ in range(200)]
    assert all(1.0 <= d <= 1.5 for d in delays)
    assert len(set(delays)) > 1


def test_stop_from_inside_tick_ends_run():
    scheduler = None

    def tick():
        scheduler.stop()

    scheduler = TickScheduler(tick, interval_sec=60.0)
    started = time.monotonic()
    scheduler.run()

    assert scheduler.ticks_run == 1
    assert scheduler.stopped
    assert time.monotonic() - started < 5.0


def test_stop_interrupts_the_wait():
    scheduler = TickScheduler(lambda: None, interval_sec=60.0)
    worker = threading.Thread(target=scheduler.run)
    worker.start()
    time.sleep(0.05)
    scheduler.stop()
    worker.join(timeout=5.0)
    assert not worker.is_alive()
