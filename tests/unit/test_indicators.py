"""Tests for the indicator module."""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from tacore.indicators import (
    atr,
    ema,
    highest,
    hl2,
    lowest,
    rma,
    rsi,
    sma,
    stdev,
    true_range,
    wma,
)
from tacore.validation import ConfigurationError


def _close_series(n: int = 50, seed: int = 42) -> pd.Series:
    rng = np.random.default_rng(seed)
    return pd.Series(100.0 + rng.standard_normal(n).cumsum())


# --- EMA -------------------------------------------------------------------

def test_ema_warmup_is_nan():
    s = _close_series()
    result = ema(s, 10)
    assert result.iloc[:9].isna().all()
    assert not np.isnan(result.iloc[9])


def test_ema_length_matches_input():
    s = _close_series()
    assert len(ema(s, 10)) == len(s)


def test_ema_matches_manual_calculation():
    """Recursive formula seeded with the first value; warm-up masked."""
    s = pd.Series([10.0, 11.0, 12.0, 11.5, 13.0])
    mult = 2.0 / (3 + 1)  # period=3
    expected = [10.0]
    for i in range(1, len(s)):
        expected.append(s.iloc[i] * mult + expected[-1] * (1 - mult))
    expected[0] = expected[1] = np.nan
    result = ema(s, 3)
    np.testing.assert_allclose(result.values, expected, atol=1e-10)


# --- SMA / WMA / RMA -------------------------------------------------------

def test_sma_first_values_nan():
    s = _close_series(10)
    result = sma(s, 5)
    assert result.iloc[:4].isna().all()
    assert not np.isnan(result.iloc[4])


def test_sma_value_correct():
    s = pd.Series([1.0, 2.0, 3.0, 4.0, 5.0])
    result = sma(s, 3)
    assert result.iloc[2] == 2.0  # (1+2+3)/3
    assert result.iloc[4] == 4.0  # (3+4+5)/3


def test_wma_weights_newest_bar_most():
    s = pd.Series([1.0, 2.0, 3.0])
    result = wma(s, 3)
    assert np.isnan(result.iloc[1])
    assert result.iloc[2] == pytest.approx(14.0 / 6.0)


def test_rma_constant_series_is_constant():
    s = pd.Series([4.0] * 12)
    result = rma(s, 5)
    assert result.iloc[:4].isna().all()
    np.testing.assert_allclose(result.iloc[4:].values, 4.0)


# --- True range / ATR -------------------------------------------------------

def test_true_range_uses_previous_close_gap():
    high = pd.Series([10.0, 15.0])
    low = pd.Series([9.0, 14.0])
    close = pd.Series([9.5, 14.5])
    tr = true_range(high, low, close)
    assert tr.iloc[0] == 1.0            # first bar: H - L
    assert tr.iloc[1] == 5.5            # |15 - 9.5|


def test_atr_positive():
    rng = np.random.default_rng(7)
    n = 50
    close = pd.Series(100.0 + rng.standard_normal(n).cumsum())
    high = close + rng.uniform(0.5, 2, n)
    low = close - rng.uniform(0.5, 2, n)
    result = atr(high, low, close, 14)
    # After warmup, ATR should be positive.
    assert (result.iloc[14:] > 0).all()


def test_atr_constant_range():
    s = pd.Series([100.0] * 20)
    result = atr(s + 1, s - 1, s, 14)
    assert len(result) == 20
    assert result.iloc[:13].isna().all()
    np.testing.assert_allclose(result.iloc[13:].values, 2.0)


# --- Rolling extremes / stdev ----------------------------------------------

def test_highest_lowest_inclusive_window():
    s = pd.Series([3.0, 1.0, 4.0, 1.0, 5.0])
    np.testing.assert_allclose(highest(s, 3).iloc[2:].values, [4.0, 4.0, 5.0])
    np.testing.assert_allclose(lowest(s, 3).iloc[2:].values, [1.0, 1.0, 1.0])


def test_stdev_is_population():
    s = pd.Series([1.0, 2.0, 3.0, 4.0])
    assert stdev(s, 4).iloc[3] == pytest.approx(np.sqrt(1.25))


def test_hl2_midpoint():
    assert hl2(pd.Series([10.0]), pd.Series([6.0])).iloc[0] == 8.0


# --- RSI -------------------------------------------------------------------

def test_rsi_bounded():
    result = rsi(_close_series(200), 14).dropna()
    assert ((result >= 0) & (result <= 100)).all()


def test_rsi_first_value_at_period():
    result = rsi(_close_series(40), 14)
    assert result.iloc[:14].isna().all()
    assert not np.isnan(result.iloc[14])


def test_rsi_rising_series_reads_100():
    s = pd.Series(np.arange(30, dtype=float))
    result = rsi(s, 14)
    np.testing.assert_allclose(result.iloc[14:].values, 100.0)


def test_rsi_flat_series_reads_50():
    s = pd.Series([7.0] * 30)
    np.testing.assert_allclose(rsi(s, 14).iloc[14:].values, 50.0)


# --- Validation ------------------------------------------------------------

@pytest.mark.parametrize("period", [0, -3, 2.5, True])
def test_invalid_period_rejected(period):
    with pytest.raises(ConfigurationError):
        sma(_close_series(10), period)
