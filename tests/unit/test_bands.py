"""Tests for the shared ratchet-and-flip band driver."""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from tacore.bands import (
    LONG,
    SHORT,
    BandState,
    OffsetFormula,
    band_states,
    run_band_engine,
    seed_state,
    step_band,
)


def _constant_vol_formula(source, reference=None, vol=1.0, mult=3.0):
    source = np.asarray(source, dtype=float)
    reference = source if reference is None else np.asarray(reference, dtype=float)
    volatility = np.full(len(source), vol) if np.isscalar(vol) else np.asarray(vol, dtype=float)
    return OffsetFormula(source, reference, volatility, mult)


# ---------------------------------------------------------------------------
# Ratchet
# ---------------------------------------------------------------------------

class TestRatchet:
    def test_rising_closes_stay_long_with_rising_stop(self):
        closes = np.arange(100.0, 111.0)
        result = run_band_engine(_constant_vol_formula(closes))
        assert (result.direction == LONG).all()
        assert result.flips == []
        np.testing.assert_allclose(result.stop, closes - 3.0)
        assert (np.diff(result.stop) >= 0).all()

    def test_long_stop_holds_when_raw_band_drops(self):
        closes = [100.0, 102.0, 101.0, 100.5]
        result = run_band_engine(_constant_vol_formula(closes))
        # Raw lower band falls after bar 1; the stop keeps 99.
        np.testing.assert_allclose(result.stop, [97.0, 99.0, 99.0, 99.0])

    def test_short_stop_never_rises(self):
        closes = np.arange(120.0, 100.0, -1.0)
        result = run_band_engine(_constant_vol_formula(closes), initial_direction=SHORT)
        assert (result.direction == SHORT).all()
        assert (np.diff(result.stop) <= 0).all()

    def test_random_walk_monotonic_while_direction_holds(self):
        rng = np.random.default_rng(5)
        n = 400
        close = pd.Series(100.0 + rng.standard_normal(n).cumsum())
        high = close + rng.uniform(0.2, 1.0, n)
        low = close - rng.uniform(0.2, 1.0, n)
        tr = pd.concat([high - low, (high - close.shift()).abs(), (low - close.shift()).abs()], axis=1).max(axis=1)
        vol = tr.rolling(10).mean().values
        formula = OffsetFormula(close.values, ((high + low) / 2).values, vol, 3.0)
        result = run_band_engine(formula)
        for i in range(1, n):
            if not (result.defined[i] and result.defined[i - 1]):
                continue
            if result.direction[i] != result.direction[i - 1]:
                continue
            if result.direction[i] == LONG:
                assert result.stop[i] >= result.stop[i - 1]
            else:
                assert result.stop[i] <= result.stop[i - 1]


# ---------------------------------------------------------------------------
# Flips
# ---------------------------------------------------------------------------

class TestFlips:
    def test_close_exactly_on_band_does_not_flip(self):
        formula = _constant_vol_formula([10.0, 9.0, 9.0], reference=[10.0, 10.0, 10.0], mult=1.0)
        result = run_band_engine(formula)
        assert (result.direction == LONG).all()
        assert result.flips == []

    def test_strict_cross_flips_to_opposite_raw_band(self):
        formula = _constant_vol_formula([10.0, 9.0, 8.99], reference=[10.0, 10.0, 10.0], mult=1.0)
        result = run_band_engine(formula)
        assert result.flips == [2]
        assert result.direction[2] == SHORT
        assert result.stop[2] == 11.0

    def test_short_flips_long_above_upper(self):
        formula = _constant_vol_formula([10.0, 11.5], reference=[10.0, 10.0], mult=1.0)
        result = run_band_engine(formula, initial_direction=SHORT)
        assert result.direction.tolist() == [SHORT, LONG]
        assert result.stop[1] == 9.0

    def test_flip_events_skip_warmup(self):
        closes = np.concatenate([np.arange(100.0, 120.0), np.arange(120.0, 90.0, -2.0)])
        result = run_band_engine(_constant_vol_formula(closes))
        assert result.flips
        first = result.flips[0]
        assert result.flip_events(warmup=first) == []
        events = result.flip_events(warmup=0)
        assert events[0].index == first
        assert events[0].label == "Sell"
        assert events[0].to_dict()["time"] is None

    def test_invalid_initial_direction(self):
        with pytest.raises(ValueError):
            run_band_engine(_constant_vol_formula([1.0, 2.0]), initial_direction=0)


# ---------------------------------------------------------------------------
# Degenerate volatility
# ---------------------------------------------------------------------------

class TestDegenerate:
    def test_nan_and_zero_volatility_carry_state(self):
        formula = _constant_vol_formula(
            [100.0, 50.0, 200.0, 101.0], vol=[1.0, np.nan, 0.0, 1.0],
        )
        result = run_band_engine(formula)
        assert result.stop[1] == result.stop[0] == 97.0
        assert result.stop[2] == 97.0
        assert result.direction[1] == result.direction[2] == LONG
        assert not np.isnan(result.stop).any()

    def test_break_on_carried_bar_flips_on_next_valid_bar(self):
        # Bar 3 closes under the long stop but has no volatility, so it is
        # carried; bar 4 must flip rather than drop the long stop to raw.
        formula = _constant_vol_formula(
            [100.0, 101.0, 102.0, 95.0, 99.0, 100.0],
            vol=[1.0, 1.0, 1.0, np.nan, 1.0, 1.0],
        )
        result = run_band_engine(formula)
        np.testing.assert_allclose(result.stop, [97.0, 98.0, 99.0, 99.0, 102.0, 102.0])
        assert result.direction.tolist() == [LONG, LONG, LONG, LONG, SHORT, SHORT]
        assert result.flips == [4]
        for i in range(1, len(result)):
            if result.direction[i] == result.direction[i - 1] == LONG:
                assert result.stop[i] >= result.stop[i - 1]
            elif result.direction[i] == result.direction[i - 1] == SHORT:
                assert result.stop[i] <= result.stop[i - 1]

    def test_undefined_until_first_valid_volatility(self):
        formula = _constant_vol_formula([10.0, 11.0, 12.0, 13.0], vol=[np.nan, np.nan, 1.0, 1.0])
        result = run_band_engine(formula)
        assert result.defined.tolist() == [False, False, True, True]
        # Seeded at the reference price, then raw bands with no ratchet.
        assert result.stop[0] == 10.0
        assert result.stop[2] == 9.0
        frame = result.to_frame()
        assert frame["stop"].iloc[:2].isna().all()
        assert frame["stop"].iloc[2] == 9.0

    def test_to_frame_masks_warmup(self):
        result = run_band_engine(_constant_vol_formula(np.arange(100.0, 110.0)))
        frame = result.to_frame(warmup=3)
        assert list(frame.columns) == ["stop", "direction", "long_stop", "short_stop", "lower", "upper"]
        assert frame["stop"].iloc[:3].isna().all()
        assert frame["direction"].tolist() == [0, 0, 0] + [LONG] * 7
        assert frame["long_stop"].iloc[3] == frame["stop"].iloc[3]
        assert frame["short_stop"].isna().all()

    def test_to_frame_has_no_direction_before_first_valid_bar(self):
        formula = _constant_vol_formula([10.0, 11.0, 12.0], vol=[np.nan, 1.0, 1.0])
        frame = run_band_engine(formula, initial_direction=SHORT).to_frame()
        assert frame["direction"].tolist() == [0, SHORT, SHORT]
        assert np.isnan(frame["short_stop"].iloc[0])
        assert frame["short_stop"].iloc[1] == 14.0


# ---------------------------------------------------------------------------
# Transition function in isolation
# ---------------------------------------------------------------------------

class TestStepBand:
    def test_seed_state_long(self):
        state = seed_state(_constant_vol_formula([100.0, 101.0]))
        assert state == BandState(LONG, 97.0, 97.0, 103.0, defined=True)

    def test_step_from_explicit_state(self):
        formula = _constant_vol_formula([100.0, 99.0], reference=[100.0, 100.0], mult=2.0)
        prev = BandState(LONG, 98.5, 98.5, 103.0)
        nxt = step_band(formula, 1, prev)
        assert nxt == BandState(LONG, 98.5, 98.5, 102.0)

    def test_reset_after_breach(self):
        # Previous close sat under the previous lower band and was never
        # tested: bands restart from raw and the cross flips on this bar.
        formula = _constant_vol_formula([95.0, 100.0], reference=[100.0, 100.0], mult=2.0)
        prev = BandState(LONG, 98.5, 98.5, 103.0)
        nxt = step_band(formula, 1, prev)
        assert nxt == BandState(SHORT, 102.0, 98.0, 102.0)

    def test_breach_without_reset_keeps_ratchet(self):
        formula = _constant_vol_formula([95.0, 100.0], reference=[100.0, 100.0], mult=2.0)
        formula.reset_on_breach = False
        prev = BandState(LONG, 98.5, 98.5, 103.0)
        assert step_band(formula, 1, prev) == BandState(LONG, 98.5, 98.5, 102.0)

    def test_degenerate_step_returns_previous(self):
        formula = _constant_vol_formula([100.0, 99.0], vol=[1.0, np.nan])
        prev = BandState(SHORT, 104.0, 96.0, 104.0)
        assert step_band(formula, 1, prev) is prev

    def test_runs_are_independent(self):
        formula = _constant_vol_formula(np.arange(100.0, 120.0))
        a = run_band_engine(formula)
        b = run_band_engine(formula)
        np.testing.assert_array_equal(a.stop, b.stop)
        assert band_states(a) == band_states(b)

    def test_band_states_snapshot(self):
        result = run_band_engine(_constant_vol_formula([100.0, 101.0]))
        states = band_states(result)
        assert states[1] == BandState(LONG, 98.0, 98.0, 104.0, defined=True)

    def test_empty_input(self):
        result = run_band_engine(_constant_vol_formula([]))
        assert len(result) == 0
        assert result.flips == []
