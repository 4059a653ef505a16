"""Ratchet-and-flip driver shared by every trailing-band overlay.

One forward loop threads an explicit ``BandState`` from bar to bar.  The
indicator-specific part (how the raw long/short candidate levels are
derived) is injected as a ``BandFormula``.

Per bar:
  1. Raw bands from the formula.  A degenerate bar (NaN or zero volatility)
     returns None and the previous state is carried unchanged.
  2. Ratchet the active band: long -> lower = max(raw, prev lower),
     short -> upper = min(raw, prev upper), unless the previous source broke
     through the previous active band.  The inactive band is the raw value,
     so a flip always lands on the opposite raw band.
  3. Flip on a strict cross: long -> short iff source < lower,
     short -> long iff source > upper.  A break that happened on a carried
     bar was never tested, so it flips here.
  4. Stop = lower while long, upper while short.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

LONG = 1
SHORT = -1


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BandState:
    """Snapshot of the band engine after one bar.

    ``defined`` is False until the first non-degenerate bar; a seeded state
    is never ratcheted against.
    """

    direction: int
    stop: float
    lower: float
    upper: float
    defined: bool = True


@dataclass(frozen=True)
class FlipEvent:
    """Direction change marker."""

    index: int
    time: Optional[pd.Timestamp]
    direction: int
    price: float

    @property
    def label(self) -> str:
        return "Buy" if self.direction == LONG else "Sell"

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "time": None if self.time is None else pd.Timestamp(self.time).isoformat(),
            "direction": self.direction,
            "label": self.label,
            "price": self.price,
        }


# ---------------------------------------------------------------------------
# Formula strategy
# ---------------------------------------------------------------------------

class BandFormula(ABC):
    """Raw-band strategy plugged into :func:`run_band_engine`.

    Subclasses receive their input arrays up front and answer per-bar
    questions by index.  ``reset_on_breach`` disables the breach reset for
    formulas whose direction does not come from crossing the band.
    """

    warmup: int = 0
    reset_on_breach: bool = True

    def __init__(self, source: Sequence[float]) -> None:
        self._source = np.asarray(source, dtype=float)

    def __len__(self) -> int:
        return len(self._source)

    def source(self, i: int) -> float:
        """Value tested against the bands (close, or an oscillator)."""
        return float(self._source[i])

    @abstractmethod
    def reference(self, i: int) -> float:
        """Centre price used to seed a degenerate first bar."""

    @abstractmethod
    def raw_bands(self, i: int) -> Optional[Tuple[float, float]]:
        """(raw_lower, raw_upper) for bar *i*, or None when degenerate."""

    def direction(self, i: int, prev: BandState, lower: float, upper: float) -> int:
        src = self.source(i)
        if prev.direction == LONG and src < lower:
            return SHORT
        if prev.direction == SHORT and src > upper:
            return LONG
        return prev.direction


class OffsetFormula(BandFormula):
    """Reference price -/+ multiplier * volatility.

    Covers SuperTrend (reference hl2), ATR trailing stop, UT Bot and
    Trend Trader (reference close) and QQE (reference smoothed RSI).
    """

    def __init__(
        self,
        source: Sequence[float],
        reference: Sequence[float],
        volatility: Sequence[float],
        multiplier: float,
        warmup: int = 0,
    ) -> None:
        super().__init__(source)
        self._reference = np.asarray(reference, dtype=float)
        self._volatility = np.asarray(volatility, dtype=float)
        self.multiplier = multiplier
        self.warmup = warmup

    def reference(self, i: int) -> float:
        return float(self._reference[i])

    def raw_bands(self, i: int) -> Optional[Tuple[float, float]]:
        vol = self._volatility[i]
        ref = self._reference[i]
        if np.isnan(vol) or vol == 0 or np.isnan(ref):
            return None
        offset = self.multiplier * vol
        return ref - offset, ref + offset


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

def seed_state(formula: BandFormula, initial_direction: int = LONG) -> BandState:
    """State for bar 0 before any history exists."""
    raw = formula.raw_bands(0)
    if raw is None:
        ref = formula.reference(0)
        return BandState(initial_direction, ref, ref, ref, defined=False)
    lower, upper = raw
    stop = lower if initial_direction == LONG else upper
    return BandState(initial_direction, stop, lower, upper, defined=True)


def step_band(formula: BandFormula, i: int, prev: BandState) -> BandState:
    """Transition from bar ``i-1`` (*prev*) to bar *i*."""
    raw = formula.raw_bands(i)
    if raw is None:
        return prev
    raw_lower, raw_upper = raw

    if not prev.defined:
        lower, upper = raw_lower, raw_upper
        direction = prev.direction
    else:
        prev_src = formula.source(i - 1)
        if prev.direction == LONG:
            broke = formula.reset_on_breach and prev_src < prev.lower
            lower = raw_lower if broke else max(raw_lower, prev.lower)
            upper = raw_upper
        else:
            broke = formula.reset_on_breach and prev_src > prev.upper
            upper = raw_upper if broke else min(raw_upper, prev.upper)
            lower = raw_lower
        if broke:
            # Cross missed on a carried bar flips on the next valid one.
            direction = SHORT if prev.direction == LONG else LONG
        else:
            direction = formula.direction(i, prev, lower, upper)

    stop = lower if direction == LONG else upper
    return BandState(direction, stop, lower, upper, defined=True)


@dataclass
class BandResult:
    """Per-bar output of one engine run."""

    stop: np.ndarray
    direction: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    defined: np.ndarray
    flips: List[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.stop)

    def to_frame(self, index: Optional[pd.Index] = None, warmup: int = 0) -> pd.DataFrame:
        """DataFrame of the series with the warm-up prefix set to NaN."""
        n = len(self)
        mask = (np.arange(n) < warmup) | ~self.defined

        def _masked(arr: np.ndarray) -> np.ndarray:
            out = arr.astype(float).copy()
            out[mask] = np.nan
            return out

        stop = _masked(self.stop)
        # 0 = no direction yet
        direction = np.where(mask, 0, self.direction).astype(int)
        long_stop = np.where(direction == LONG, stop, np.nan)
        short_stop = np.where(direction == SHORT, stop, np.nan)
        return pd.DataFrame(
            {
                "stop": stop,
                "direction": direction,
                "long_stop": long_stop,
                "short_stop": short_stop,
                "lower": _masked(self.lower),
                "upper": _masked(self.upper),
            },
            index=index,
        )

    def flip_events(
        self,
        times: Optional[Sequence] = None,
        warmup: int = 0,
    ) -> List[FlipEvent]:
        """Flip markers after the warm-up window."""
        events: List[FlipEvent] = []
        for i in self.flips:
            if i <= warmup:
                continue
            events.append(
                FlipEvent(
                    index=i,
                    time=None if times is None else pd.Timestamp(times[i]),
                    direction=int(self.direction[i]),
                    price=float(self.stop[i]),
                )
            )
        return events


def run_band_engine(
    formula: BandFormula,
    initial_direction: int = LONG,
) -> BandResult:
    """Run *formula* over every bar, left to right.

    Each call owns its state; nothing is shared between runs.
    """
    if initial_direction not in (LONG, SHORT):
        raise ValueError(f"initial_direction must be {LONG} or {SHORT}, got {initial_direction!r}")

    n = len(formula)
    stop = np.full(n, np.nan)
    direction = np.zeros(n, dtype=int)
    lower = np.full(n, np.nan)
    upper = np.full(n, np.nan)
    defined = np.zeros(n, dtype=bool)
    flips: List[int] = []
    if n == 0:
        return BandResult(stop, direction, lower, upper, defined, flips)

    state = seed_state(formula, initial_direction)
    carried = 0
    for i in range(n):
        if i > 0:
            nxt = step_band(formula, i, state)
            if nxt is state and state.defined:
                carried += 1
            if nxt.direction != state.direction:
                flips.append(i)
            state = nxt
        stop[i] = state.stop
        direction[i] = state.direction
        lower[i] = state.lower
        upper[i] = state.upper
        defined[i] = state.defined

    if carried:
        logger.debug("%s: carried state over %d degenerate bars", type(formula).__name__, carried)
    return BandResult(stop, direction, lower, upper, defined, flips)


def band_states(result: BandResult) -> List[BandState]:
    """Rebuild the per-bar state snapshots from a result (for inspection)."""
    return [
        BandState(
            direction=int(result.direction[i]),
            stop=float(result.stop[i]),
            lower=float(result.lower[i]),
            upper=float(result.upper[i]),
            defined=bool(result.defined[i]),
        )
        for i in range(len(result))
    ]
