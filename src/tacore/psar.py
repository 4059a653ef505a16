"""Parabolic SAR (stop and reverse).

The acceleration factor replaces the ATR offset of the band overlays:
  - af starts at ``start``, grows by ``increment`` on every new extreme,
    capped at ``max_value``, and resets to ``start`` on each flip
  - ep is the highest high (long) / lowest low (short) since the last flip
  - SAR[i] = SAR[i-1] + af * (ep - SAR[i-1]), then clamped so it never sits
    inside the previous ``clamp_lookback`` bars' lows (long) / highs (short)
  - flip when the bar's low trades below SAR (long) or high above (short);
    SAR jumps to the old ep

Some overlays clamp against one prior bar, others against two, so the
lookback is a parameter rather than a constant.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
import pandas as pd

from tacore.bands import LONG, SHORT, FlipEvent
from tacore.data_loader import require_ohlc
from tacore.results import OverlayResult
from tacore.validation import (
    raise_if_errors,
    require_choice,
    require_positive,
)


@dataclass
class SarParams:
    start: float = 0.02
    increment: float = 0.02
    max_value: float = 0.2
    clamp_lookback: int = 2

    def validate(self) -> List[str]:
        errors = (
            require_positive("start", self.start)
            + require_positive("increment", self.increment)
            + require_positive("max_value", self.max_value)
            + require_choice("clamp_lookback", self.clamp_lookback, (1, 2))
        )
        if not errors and self.max_value < self.start:
            errors.append(f"max_value ({self.max_value}) must be >= start ({self.start})")
        return errors


@dataclass(frozen=True)
class SarState:
    direction: int
    sar: float
    ep: float
    af: float


def seed_sar(highs: Sequence[float], lows: Sequence[float], params: SarParams) -> SarState:
    """Bar 0: long, SAR at the low, extreme at the high."""
    return SarState(LONG, float(lows[0]), float(highs[0]), params.start)


def step_sar(
    highs: Sequence[float],
    lows: Sequence[float],
    i: int,
    prev: SarState,
    params: SarParams,
) -> SarState:
    """Transition from bar ``i-1`` (*prev*) to bar *i*."""
    sar = prev.sar + prev.af * (prev.ep - prev.sar)
    first = max(0, i - params.clamp_lookback)

    if prev.direction == LONG:
        sar = min(sar, float(np.min(lows[first:i])))
        if lows[i] < sar:
            return SarState(SHORT, prev.ep, float(lows[i]), params.start)
        if highs[i] > prev.ep:
            return SarState(LONG, sar, float(highs[i]), min(prev.af + params.increment, params.max_value))
        return SarState(LONG, sar, prev.ep, prev.af)

    sar = max(sar, float(np.max(highs[first:i])))
    if highs[i] > sar:
        return SarState(LONG, prev.ep, float(highs[i]), params.start)
    if lows[i] < prev.ep:
        return SarState(SHORT, sar, float(lows[i]), min(prev.af + params.increment, params.max_value))
    return SarState(SHORT, sar, prev.ep, prev.af)


def parabolic_sar(
    df: pd.DataFrame,
    params: SarParams | None = None,
) -> OverlayResult:
    """Run the SAR recurrence over *df*.

    Returns
    -------
    OverlayResult with frame columns ``sar, direction, long_sar, short_sar,
    ep, af`` and one FlipEvent per reversal.  The first two bars are
    warm-up: ``sar`` is NaN and ``direction`` is 0 there.
    """
    params = params or SarParams()
    raise_if_errors("parabolic_sar", params.validate())
    require_ohlc(df)

    highs = df["High"].values.astype(float)
    lows = df["Low"].values.astype(float)
    n = len(df)
    sar = np.full(n, np.nan)
    direction = np.zeros(n, dtype=int)
    ep = np.full(n, np.nan)
    af = np.full(n, np.nan)
    flips: List[int] = []

    if n:
        state = seed_sar(highs, lows, params)
        for i in range(n):
            if i > 0:
                nxt = step_sar(highs, lows, i, state, params)
                if nxt.direction != state.direction:
                    flips.append(i)
                state = nxt
            sar[i] = state.sar
            direction[i] = state.direction
            ep[i] = state.ep
            af[i] = state.af

    # Bar 1 clamps against a single prior bar; plotting starts at bar 2.
    warmup = 2
    plot = sar.copy()
    plot[:warmup] = np.nan
    shown = direction.copy()
    shown[:warmup] = 0
    frame = pd.DataFrame(
        {
            "sar": plot,
            "direction": shown,
            "long_sar": np.where(shown == LONG, plot, np.nan),
            "short_sar": np.where(shown == SHORT, plot, np.nan),
            "ep": ep,
            "af": af,
        },
        index=df.index,
    )
    times = df["Date"].values if "Date" in df.columns else None
    events = [
        FlipEvent(
            index=i,
            time=None if times is None else pd.Timestamp(times[i]),
            direction=int(direction[i]),
            price=float(sar[i]),
        )
        for i in flips
        if i >= warmup
    ]
    return OverlayResult(name="parabolic_sar", frame=frame, events=events, warmup=warmup)
