"""Windowed statistical primitives used by the overlay engines.

Pure ``f(series, length) -> series`` functions over pandas.  Every function
returns NaN for the warm-up prefix (indices < length - 1) so the engines can
tell "not yet defined" apart from a real value:
  - EMA uses ewm(span=N, adjust=False), seeded with the first value
  - RMA (Wilder) uses ewm(alpha=1/N, adjust=False)
  - ATR is the RMA of the true range; TR[0] = High[0] - Low[0]
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from tacore.validation import ConfigurationError


def _check_period(period: int) -> None:
    if isinstance(period, bool) or not isinstance(period, (int, np.integer)) or period < 1:
        raise ConfigurationError(f"period must be a positive integer, got {period!r}")


def ema(series: pd.Series, period: int) -> pd.Series:
    """Exponential moving average.  Seed = first value, then recursive.

    multiplier = 2/(period+1), EMA[0]=series[0]; values before
    ``period - 1`` are masked as warm-up.
    """
    _check_period(period)
    return series.ewm(span=period, adjust=False, min_periods=period).mean()


def sma(series: pd.Series, period: int) -> pd.Series:
    """Simple moving average."""
    _check_period(period)
    return series.rolling(period).mean()


def rma(series: pd.Series, period: int) -> pd.Series:
    """Wilder's running moving average (alpha = 1/period)."""
    _check_period(period)
    return series.ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()


def wma(series: pd.Series, period: int) -> pd.Series:
    """Linearly weighted moving average, newest bar weighted ``period``."""
    _check_period(period)
    weights = np.arange(1, period + 1, dtype=float)
    return series.rolling(period).apply(
        lambda w: float(np.dot(w, weights) / weights.sum()), raw=True,
    )


def true_range(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
) -> pd.Series:
    """TR = max(H-L, |H-prevC|, |L-prevC|); first bar is H-L."""
    prev_close = close.shift(1)
    return pd.concat(
        [
            high - low,
            (high - prev_close).abs(),
            (low - prev_close).abs(),
        ],
        axis=1,
    ).max(axis=1)


def atr(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    period: int = 14,
) -> pd.Series:
    """Average True Range using Wilder smoothing.

    ATR = Wilder EMA of TR = ewm(alpha=1/period, adjust=False)
    """
    return rma(true_range(high, low, close), period)


def highest(series: pd.Series, period: int) -> pd.Series:
    """Rolling maximum over the last *period* bars (inclusive)."""
    _check_period(period)
    return series.rolling(period).max()


def lowest(series: pd.Series, period: int) -> pd.Series:
    """Rolling minimum over the last *period* bars (inclusive)."""
    _check_period(period)
    return series.rolling(period).min()


def stdev(series: pd.Series, period: int) -> pd.Series:
    """Population standard deviation (ddof=0), as charting packages use."""
    _check_period(period)
    return series.rolling(period).std(ddof=0)


def rsi(series: pd.Series, period: int = 14) -> pd.Series:
    """Relative Strength Index with Wilder-smoothed gains and losses.

    A window with no losses reads 100; flat windows read 50.
    """
    _check_period(period)
    delta = series.diff()
    gain = rma(delta.clip(lower=0.0), period)
    loss = rma((-delta).clip(lower=0.0), period)
    # First diff is NaN, so the first defined value lands on index ``period``.
    rs = gain / loss.replace(0, np.nan)
    out = 100.0 - 100.0 / (1.0 + rs)
    out = out.mask((loss == 0) & (gain > 0), 100.0)
    out = out.mask((loss == 0) & (gain == 0), 50.0)
    return out


def hl2(high: pd.Series, low: pd.Series) -> pd.Series:
    """Bar midpoint (High + Low) / 2."""
    return (high + low) / 2.0
