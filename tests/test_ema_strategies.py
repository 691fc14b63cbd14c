"""
Tests for strategies/ema_adaptive.py, strategies/ema_crossover.py and the registry.
"""

import json

import pytest

from strategies import STRATEGY_REGISTRY, build_strategy
from strategies.base import PriceTick, Signal, ema_step
from strategies.ema_adaptive import EmaAdaptiveParams, EmaAdaptiveStrategy
from strategies.ema_crossover import EmaCrossoverStrategy


def _ramp_prices():
    """60 flat ticks at 100, a 10-tick dip of 5bps per tick, then a steady 10bps-per-tick climb."""
    flat = [100.0] * 60
    dip = [100.0 * (1 - 0.0005 * k) for k in range(1, 11)]
    bottom = dip[-1]
    climb = [bottom * (1 + 0.001 * k) for k in range(1, 61)]
    return flat + dip + climb


def _scenario_params(**overrides):
    params = {
        "fast_period": 20,
        "slow_period": 60,
        "enter_bps_long": 20.0,
        "vol_k": 0.0,
        "breakout_lookback": 0,
        "cooldown_sec": 0.0,
    }
    params.update(overrides)
    return params


# ============================================================================
# ema_adaptive
# ============================================================================

def test_no_signal_before_warmup_regardless_of_prices():
    """Wild prices during warm-up never produce an action."""
    strat = EmaAdaptiveStrategy(_scenario_params())
    for i in range(59):
        price = 100.0 if i % 2 == 0 else 200.0
        signal = strat.on_price(PriceTick(mark=price, ts=float(i)))
        assert signal.action is None
    assert strat.state == "flat"


def test_single_entry_at_first_tick_over_threshold():
    """fast=20/slow=60/enter=20bps/vol_k=0: exactly one flat->long, at the first crossing."""
    strat = EmaAdaptiveStrategy(_scenario_params())
    prices = _ramp_prices()

    # independent EMA replay to find where the spread first clears 20bps
    fast = slow = None
    expected_index = None
    lowest_spread = 0.0
    for i, price in enumerate(prices):
        prev_slow = slow
        fast = ema_step(fast, price, 20)
        slow = ema_step(slow, price, 60)
        if i + 1 < 60 or prev_slow is None:
            continue
        spread = (fast - slow) / price * 1e4
        slope = (slow - prev_slow) / price * 1e4
        lowest_spread = min(lowest_spread, spread)
        if spread > 20.0 and slope > 0:
            expected_index = i
            break
    assert expected_index is not None
    # the dip drags the spread below zero before the climb crosses the threshold
    assert lowest_spread < 0

    actions = []
    for i, price in enumerate(prices):
        signal = strat.on_price(PriceTick(mark=price, ts=float(i)))
        if signal.action is not None:
            actions.append((i, signal))

    assert len(actions) == 1
    index, signal = actions[0]
    assert index == expected_index
    assert signal.action == "buy"
    assert signal.intent == "enter_long"
    assert signal.notional == pytest.approx(100.0)
    assert strat.state == "long"


def test_exit_waits_for_min_hold():
    strat = EmaAdaptiveStrategy(
        {
            "fast_period": 2,
            "slow_period": 5,
            "enter_bps_long": 1.0,
            "exit_bps_long": 1.0,
            "vol_k": 0.0,
            "min_hold_sec": 10.0,
            "cooldown_sec": 0.0,
            "warmup_ticks": 2,
        }
    )
    ticks = [(0.0, 100.0), (1.0, 100.0), (2.0, 110.0), (3.0, 90.0), (12.0, 90.0)]
    signals = [strat.on_price(PriceTick(mark=px, ts=ts)) for ts, px in ticks]

    assert signals[2].intent == "enter_long"
    # spread already negative but the position is only 1s old
    assert signals[3].action is None
    assert strat.state == "long"
    assert signals[4].action == "sell"
    assert signals[4].intent == "exit_long"
    assert strat.state == "flat"


def test_long_only_never_shorts():
    strat = EmaAdaptiveStrategy(_scenario_params(long_only=True))
    prices = [100.0] * 60 + [100.0 * (1 - 0.001 * k) for k in range(1, 61)]
    for i, price in enumerate(prices):
        signal = strat.on_price(PriceTick(mark=price, ts=float(i)))
        assert signal.action is None


def test_falling_market_enters_short():
    strat = EmaAdaptiveStrategy(_scenario_params(enter_bps_short=28.0))
    prices = [100.0] * 60 + [100.0 * (1 - 0.001 * k) for k in range(1, 61)]
    intents = []
    for i, price in enumerate(prices):
        signal = strat.on_price(PriceTick(mark=price, ts=float(i)))
        if signal.action:
            intents.append((signal.action, signal.intent))
    assert intents == [("sell", "enter_short")]


def test_snapshot_restore_continues_identically():
    prices = _ramp_prices()
    original = EmaAdaptiveStrategy(_scenario_params(breakout_lookback=5))
    for i, price in enumerate(prices[:70]):
        original.on_price(PriceTick(mark=price, ts=float(i)))

    snapshot = json.loads(json.dumps(original.snapshot()))
    resumed = EmaAdaptiveStrategy(_scenario_params(breakout_lookback=5))
    resumed.restore(snapshot)

    for i, price in enumerate(prices[70:], start=70):
        tick = PriceTick(mark=price, ts=float(i))
        assert original.on_price(tick) == resumed.on_price(tick)
    assert original.snapshot() == resumed.snapshot()


def test_restore_rejects_unknown_version():
    strat = EmaAdaptiveStrategy()
    with pytest.raises(ValueError):
        strat.restore({"version": 99, "kind": "ema_adaptive"})


def test_rejected_restore_leaves_strategy_fresh():
    strat = EmaAdaptiveStrategy()
    with pytest.raises(ValueError):
        strat.restore(
            {"version": 1, "kind": "ema_adaptive", "fast": 123.0, "slow": 456.0, "state": "bogus"}
        )
    assert strat.snapshot() == EmaAdaptiveStrategy().snapshot()


@pytest.mark.parametrize(
    "bad_fields",
    [
        {"fast": "100.0"},
        {"ticks": 3.5},
        {"entry_ts": True},
        {"window": [100.0, "101"]},
    ],
)
def test_restore_rejects_mistyped_fields(bad_fields):
    good = EmaAdaptiveStrategy(_scenario_params(breakout_lookback=3))
    for i, price in enumerate([100.0, 101.0, 102.0]):
        good.on_price(PriceTick(mark=price, ts=float(i)))
    snapshot = {**good.snapshot(), **bad_fields}

    strat = EmaAdaptiveStrategy(_scenario_params(breakout_lookback=3))
    with pytest.raises(TypeError):
        strat.restore(snapshot)
    assert strat.fast is None
    assert strat.ticks == 0
    # still usable after the rejected snapshot
    assert strat.on_price(PriceTick(mark=100.0, ts=0.0)).action is None


def test_fast_must_be_shorter_than_slow():
    with pytest.raises(ValueError):
        EmaAdaptiveStrategy({"fast_period": 60, "slow_period": 60})


def test_params_ignore_unknown_keys():
    params = EmaAdaptiveParams.from_dict({"fast_period": 5, "slow_period": 9, "bogus": 1})
    assert params.fast_period == 5
    assert params.slow_period == 9


# ============================================================================
# ema_crossover
# ============================================================================

def test_crossover_reports_each_transition_once():
    strat = EmaCrossoverStrategy({"fast_period": 2, "slow_period": 4, "hysteresis_bps": 5.0})
    prices = [100.0, 100.0, 110.0, 110.0, 70.0]
    signals = [strat.on_price(PriceTick(mark=px, ts=float(i))) for i, px in enumerate(prices)]

    assert [s.intent for s in signals] == [None, None, "enter_long", None, "exit_long"]
    assert signals[2].action == "buy"
    assert signals[4].action == "sell"


def test_crossover_snapshot_round_trip():
    strat = EmaCrossoverStrategy({"fast_period": 2, "slow_period": 4})
    for i, px in enumerate([100.0, 101.0, 103.0]):
        strat.on_price(PriceTick(mark=px, ts=float(i)))
    clone = EmaCrossoverStrategy({"fast_period": 2, "slow_period": 4})
    clone.restore(strat.snapshot())
    assert clone.snapshot() == strat.snapshot()


def test_crossover_rejects_mistyped_snapshot_untouched():
    strat = EmaCrossoverStrategy({"fast_period": 2, "slow_period": 4})
    with pytest.raises(TypeError):
        strat.restore({"version": 1, "kind": "ema_crossover", "fast": 100.0, "slow": "99", "state": "long"})
    assert (strat.fast, strat.slow, strat.state) == (None, None, "flat")


# ============================================================================
# registry
# ============================================================================

def test_registry_builds_by_name():
    assert set(STRATEGY_REGISTRY) == {"ema_adaptive", "ema_crossover"}
    strat = build_strategy("ema_crossover", {"fast_period": 3, "slow_period": 8})
    assert isinstance(strat, EmaCrossoverStrategy)
    assert isinstance(strat.on_price(PriceTick(mark=10.0, ts=0.0)), Signal)


def test_registry_rejects_unknown_name():
    with pytest.raises(KeyError):
        build_strategy("does_not_exist", {})
