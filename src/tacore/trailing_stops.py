"""Trailing-stop overlays built on the shared band driver.

Every overlay here supplies a raw-band formula to ``bands.run_band_engine``;
none of them carries its own flip logic.  Each takes an OHLCV frame
(``Open/High/Low/Close``) and returns an ``OverlayResult`` whose frame holds
``stop, direction, long_stop, short_stop, lower, upper`` plus any
indicator-specific columns.

``volatility`` may be passed to reuse a precomputed ATR-like series; it must
be aligned with the frame.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from tacore.bands import (
    LONG,
    SHORT,
    BandFormula,
    BandState,
    OffsetFormula,
    run_band_engine,
)
from tacore.data_loader import require_ohlc
from tacore.indicators import atr, ema, highest, hl2, lowest, rsi, sma
from tacore.pivots import pivot_highs, pivot_lows, pivots_by_confirmation
from tacore.results import OverlayResult
from tacore.validation import (
    raise_if_errors,
    require_int,
    require_positive,
)


def _length_errors(name: str, value: int) -> List[str]:
    return require_int(name, value) or require_positive(name, value)


# ---------------------------------------------------------------------------
# Parameters (defaults follow the usual charting-platform inputs)
# ---------------------------------------------------------------------------

@dataclass
class SupertrendParams:
    atr_period: int = 10
    factor: float = 3.0

    def validate(self) -> List[str]:
        return _length_errors("atr_period", self.atr_period) + require_positive("factor", self.factor)


@dataclass
class AtrTrailingStopParams:
    atr_period: int = 5
    multiplier: float = 3.5

    def validate(self) -> List[str]:
        return _length_errors("atr_period", self.atr_period) + require_positive("multiplier", self.multiplier)


@dataclass
class ChandelierParams:
    """Chandelier Exit: extreme of the last ``atr_period`` bars -/+ ATR."""

    atr_period: int = 22
    multiplier: float = 3.0
    use_close: bool = True      # extremes from closes instead of highs/lows

    def validate(self) -> List[str]:
        return _length_errors("atr_period", self.atr_period) + require_positive("multiplier", self.multiplier)


@dataclass
class UTBotParams:
    key_value: float = 1.0      # sensitivity: ATR multiple of the trailing loss
    atr_period: int = 10

    def validate(self) -> List[str]:
        return require_positive("key_value", self.key_value) + _length_errors("atr_period", self.atr_period)


@dataclass
class TrendTraderParams:
    ma_length: int = 21
    atr_length: int = 21
    atr_mult: float = 3.0

    def validate(self) -> List[str]:
        return (
            _length_errors("ma_length", self.ma_length)
            + _length_errors("atr_length", self.atr_length)
            + require_positive("atr_mult", self.atr_mult)
        )


@dataclass
class QQEParams:
    rsi_length: int = 14
    smoothing: int = 5
    qqe_factor: float = 4.238

    def validate(self) -> List[str]:
        return (
            _length_errors("rsi_length", self.rsi_length)
            + _length_errors("smoothing", self.smoothing)
            + require_positive("qqe_factor", self.qqe_factor)
        )


@dataclass
class PivotSupertrendParams:
    pivot_length: int = 2
    atr_factor: float = 3.0
    atr_length: int = 10

    def validate(self) -> List[str]:
        return (
            _length_errors("pivot_length", self.pivot_length)
            + require_positive("atr_factor", self.atr_factor)
            + _length_errors("atr_length", self.atr_length)
        )


# ---------------------------------------------------------------------------
# Formulas that do not fit the plain reference +/- offset shape
# ---------------------------------------------------------------------------

class ChandelierFormula(BandFormula):
    """Long band hangs from the rolling high, short band from the rolling low."""

    def __init__(
        self,
        close: Sequence[float],
        highest_src: Sequence[float],
        lowest_src: Sequence[float],
        volatility: Sequence[float],
        multiplier: float,
        warmup: int = 0,
    ) -> None:
        super().__init__(close)
        self._hh = np.asarray(highest_src, dtype=float)
        self._ll = np.asarray(lowest_src, dtype=float)
        self._volatility = np.asarray(volatility, dtype=float)
        self.multiplier = multiplier
        self.warmup = warmup

    def reference(self, i: int) -> float:
        return self.source(i)

    def raw_bands(self, i: int) -> Optional[Tuple[float, float]]:
        vol = self._volatility[i]
        hh = self._hh[i]
        ll = self._ll[i]
        if np.isnan(vol) or vol == 0 or np.isnan(hh) or np.isnan(ll):
            return None
        offset = self.multiplier * vol
        return hh - offset, ll + offset


class TrendTraderFormula(OffsetFormula):
    """Close -/+ ATR offset; direction from close vs a moving average.

    Direction does not come from crossing the band, so the stop ratchets for
    as long as the direction holds and restarts from raw only on a flip.
    """

    reset_on_breach = False

    def __init__(
        self,
        close: Sequence[float],
        moving_average: Sequence[float],
        volatility: Sequence[float],
        multiplier: float,
        warmup: int = 0,
    ) -> None:
        super().__init__(close, close, volatility, multiplier, warmup)
        self._ma = np.asarray(moving_average, dtype=float)

    def direction(self, i: int, prev: BandState, lower: float, upper: float) -> int:
        ma = self._ma[i]
        if np.isnan(ma):
            return prev.direction
        close = self.source(i)
        if close > ma:
            return LONG
        if close < ma:
            return SHORT
        return prev.direction


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _volatility_array(df: pd.DataFrame, volatility, period: int) -> np.ndarray:
    if volatility is None:
        return atr(df["High"], df["Low"], df["Close"], period).values.astype(float)
    arr = np.asarray(volatility, dtype=float)
    if len(arr) != len(df):
        raise ValueError(
            f"volatility has {len(arr)} values but the frame has {len(df)} bars"
        )
    return arr


def _times(df: pd.DataFrame):
    return df["Date"].values if "Date" in df.columns else None


def _run(
    name: str,
    df: pd.DataFrame,
    formula: BandFormula,
    warmup: int,
    extra: Optional[dict] = None,
) -> OverlayResult:
    result = run_band_engine(formula)
    frame = result.to_frame(df.index, warmup)
    for col, values in (extra or {}).items():
        frame[col] = values
    events = result.flip_events(_times(df), warmup)
    return OverlayResult(name=name, frame=frame, events=events, warmup=warmup)


# ---------------------------------------------------------------------------
# Overlays
# ---------------------------------------------------------------------------

def supertrend(
    df: pd.DataFrame,
    params: SupertrendParams | None = None,
    volatility=None,
) -> OverlayResult:
    """ATR channel around hl2; the stop sits under price in an uptrend."""
    params = params or SupertrendParams()
    raise_if_errors("supertrend", params.validate())
    require_ohlc(df)

    vol = _volatility_array(df, volatility, params.atr_period)
    formula = OffsetFormula(
        source=df["Close"].values,
        reference=hl2(df["High"], df["Low"]).values,
        volatility=vol,
        multiplier=params.factor,
        warmup=params.atr_period - 1,
    )
    return _run("supertrend", df, formula, formula.warmup)


def atr_trailing_stop(
    df: pd.DataFrame,
    params: AtrTrailingStopParams | None = None,
    volatility=None,
) -> OverlayResult:
    """Close -/+ multiplier * ATR, ratcheted."""
    params = params or AtrTrailingStopParams()
    raise_if_errors("atr_trailing_stop", params.validate())
    require_ohlc(df)

    close = df["Close"].values
    formula = OffsetFormula(
        close, close,
        _volatility_array(df, volatility, params.atr_period),
        params.multiplier,
        warmup=params.atr_period,
    )
    return _run("atr_trailing_stop", df, formula, formula.warmup)


def chandelier_exit(
    df: pd.DataFrame,
    params: ChandelierParams | None = None,
    volatility=None,
) -> OverlayResult:
    params = params or ChandelierParams()
    raise_if_errors("chandelier_exit", params.validate())
    require_ohlc(df)

    n = params.atr_period
    if params.use_close:
        hh = highest(df["Close"], n)
        ll = lowest(df["Close"], n)
    else:
        hh = highest(df["High"], n)
        ll = lowest(df["Low"], n)
    formula = ChandelierFormula(
        df["Close"].values,
        hh.values,
        ll.values,
        _volatility_array(df, volatility, n),
        params.multiplier,
        warmup=n,
    )
    return _run("chandelier_exit", df, formula, formula.warmup)


def ut_bot(
    df: pd.DataFrame,
    params: UTBotParams | None = None,
    volatility=None,
) -> OverlayResult:
    """UT Bot alerts: close-anchored ATR trail, key value sets sensitivity."""
    params = params or UTBotParams()
    raise_if_errors("ut_bot", params.validate())
    require_ohlc(df)

    close = df["Close"].values
    formula = OffsetFormula(
        close, close,
        _volatility_array(df, volatility, params.atr_period),
        params.key_value,
        warmup=params.atr_period,
    )
    return _run("ut_bot", df, formula, formula.warmup)


def trend_trader(
    df: pd.DataFrame,
    params: TrendTraderParams | None = None,
    volatility=None,
) -> OverlayResult:
    params = params or TrendTraderParams()
    raise_if_errors("trend_trader", params.validate())
    require_ohlc(df)

    ma = sma(df["Close"], params.ma_length)
    warmup = max(params.ma_length, params.atr_length)
    formula = TrendTraderFormula(
        df["Close"].values,
        ma.values,
        _volatility_array(df, volatility, params.atr_length),
        params.atr_mult,
        warmup=warmup,
    )
    ma_plot = ma.where(np.arange(len(df)) >= warmup)
    return _run("trend_trader", df, formula, warmup, {"ma": ma_plot.values})


def qqe(
    df: pd.DataFrame,
    params: QQEParams | None = None,
    volatility=None,
) -> OverlayResult:
    """Quantitative Qualitative Estimation.

    Bands trail the smoothed RSI, so every price column in the frame is in
    RSI units (0-100).  Volatility defaults to the EMA of the absolute
    change of the smoothed RSI over ``2 * rsi_length - 1`` bars.
    """
    params = params or QQEParams()
    raise_if_errors("qqe", params.validate())
    require_ohlc(df)

    smoothed = ema(rsi(df["Close"], params.rsi_length), params.smoothing)
    wilders_length = params.rsi_length * 2 - 1
    if volatility is None:
        volatility = ema(smoothed.diff().abs(), wilders_length).values
    sr = smoothed.values.astype(float)
    # RSI, its smoothing and the EMA of its change each add a warm-up.
    warmup = params.rsi_length + params.smoothing + wilders_length - 1
    formula = OffsetFormula(
        sr, sr,
        _volatility_array(df, volatility, params.rsi_length),
        params.qqe_factor,
        warmup=warmup,
    )
    rsi_ma = smoothed.where(np.arange(len(df)) >= warmup)
    return _run("qqe", df, formula, warmup, {"rsi_ma": rsi_ma.values})


def _pivot_centre(df: pd.DataFrame, pivot_length: int) -> np.ndarray:
    """Midpoint of the last confirmed pivot high and low; close until both exist."""
    highs = pivots_by_confirmation(pivot_highs(df["High"].values, pivot_length))
    lows = pivots_by_confirmation(pivot_lows(df["Low"].values, pivot_length))
    closes = df["Close"].values.astype(float)
    centre = np.empty(len(df))
    last_ph = np.nan
    last_pl = np.nan
    for i in range(len(df)):
        for p in highs.get(i, []):
            last_ph = p.price
        for p in lows.get(i, []):
            last_pl = p.price
        if np.isnan(last_ph) or np.isnan(last_pl):
            centre[i] = closes[i]
        else:
            centre[i] = (last_ph + last_pl) / 2.0
    return centre


def pivot_point_supertrend(
    df: pd.DataFrame,
    params: PivotSupertrendParams | None = None,
    volatility=None,
) -> OverlayResult:
    """SuperTrend whose channel is centred on confirmed pivots, not hl2."""
    params = params or PivotSupertrendParams()
    raise_if_errors("pivot_point_supertrend", params.validate())
    require_ohlc(df)

    centre = _pivot_centre(df, params.pivot_length)
    warmup = max(params.atr_length, params.pivot_length * 2 + 1)
    formula = OffsetFormula(
        df["Close"].values,
        centre,
        _volatility_array(df, volatility, params.atr_length),
        params.atr_factor,
        warmup=warmup,
    )
    return _run("pivot_point_supertrend", df, formula, warmup, {"center": centre})
