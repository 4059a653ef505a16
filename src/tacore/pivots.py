"""Pivot detection with confirmation lag.

A pivot at bar ``i`` is only knowable once ``right`` further bars have
printed, so every candidate carries the bar at which it becomes visible
(``confirmed_index``).  Consumers must key on that index, never on the
pivot's own, or they read the future.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Literal, Optional, Tuple

import numpy as np
import pandas as pd

from tacore.validation import (
    raise_if_errors,
    require_choice,
    require_int,
    require_non_negative,
    require_positive,
)

PivotKind = Literal["high", "low"]


@dataclass(frozen=True)
class PivotCandidate:
    """A confirmed local extremum."""

    index: int              # bar of the extremum itself
    price: float
    kind: PivotKind
    confirmed_index: int    # first bar at which the pivot may be used


def _validate_window(left: int, right: int, delay: int, kind: str) -> None:
    errors: List[str] = []
    errors += require_int("left", left) or require_positive("left", left)
    errors += require_int("right", right) or require_positive("right", right)
    errors += require_int("delay", delay) or require_non_negative("delay", delay)
    errors += require_choice("kind", kind, ("high", "low"))
    raise_if_errors("pivot window", errors)


def _is_pivot(values: np.ndarray, i: int, left: int, right: int, kind: PivotKind) -> bool:
    """Strict extremum test; ties and NaN disqualify."""
    centre = values[i]
    if np.isnan(centre):
        return False
    neighbours = np.concatenate([values[i - left:i], values[i + 1:i + right + 1]])
    if np.isnan(neighbours).any():
        return False
    if kind == "high":
        return bool((centre > neighbours).all())
    return bool((centre < neighbours).all())


def find_pivots(
    values,
    left: int,
    right: Optional[int] = None,
    kind: PivotKind = "high",
    delay: int = 0,
) -> List[PivotCandidate]:
    """Scan *values* for pivots, oldest first.

    Parameters
    ----------
    values : array-like
        Reference values (e.g. highs for pivot highs).
    left, right : int
        Bars that must be strictly lower (high) / higher (low) on each side.
        ``right`` defaults to ``left``.
    kind : {"high", "low"}
    delay : int
        Extra bars of confirmation on top of ``right``; 1 replicates the
        one-bar-delayed convention some overlays use.

    Returns
    -------
    List of PivotCandidate sorted by confirmation index.  Pivots whose
    confirmation bar lies beyond the data are not reported.
    """
    if right is None:
        right = left
    _validate_window(left, right, delay, kind)

    arr = np.asarray(values, dtype=float)
    n = len(arr)
    out: List[PivotCandidate] = []
    for i in range(left, n - right):
        confirmed = i + right + delay
        if confirmed >= n:
            break
        if _is_pivot(arr, i, left, right, kind):
            out.append(
                PivotCandidate(
                    index=i,
                    price=float(arr[i]),
                    kind=kind,
                    confirmed_index=confirmed,
                )
            )
    return out


def pivot_highs(high, left: int, right: Optional[int] = None, delay: int = 0) -> List[PivotCandidate]:
    return find_pivots(high, left, right, "high", delay)


def pivot_lows(low, left: int, right: Optional[int] = None, delay: int = 0) -> List[PivotCandidate]:
    return find_pivots(low, left, right, "low", delay)


def pivots_by_confirmation(
    candidates: List[PivotCandidate],
) -> Dict[int, List[PivotCandidate]]:
    """Group candidates by the bar at which they become visible."""
    grouped: Dict[int, List[PivotCandidate]] = {}
    for c in candidates:
        grouped.setdefault(c.confirmed_index, []).append(c)
    return grouped


def pivot_series(
    values: pd.Series,
    left: int,
    right: Optional[int] = None,
    kind: PivotKind = "high",
    delay: int = 0,
) -> pd.Series:
    """Pivot price placed on its confirmation bar, NaN elsewhere."""
    out = np.full(len(values), np.nan)
    for c in find_pivots(values, left, right, kind, delay):
        out[c.confirmed_index] = c.price
    return pd.Series(out, index=values.index, name=f"pivot_{kind}")


def fractal_pivots(values, depth: int, kind: PivotKind = "high") -> List[PivotCandidate]:
    """Swings promoted through *depth* levels of three-point fractals.

    Depth 1 is the plain three-bar fractal: the middle of three consecutive
    values is a swing when neither neighbour exceeds it (ties count).  Each
    deeper level runs the same test over the swings of the level below.  A
    swing is confirmed on the bar that completed its deepest triple.
    """
    errors = require_int("depth", depth) or require_positive("depth", depth)
    errors += require_choice("kind", kind, ("high", "low"))
    raise_if_errors("fractal pivots", errors)

    arr = np.asarray(values, dtype=float)
    # Newest first; appendleft past maxlen drops the oldest point.
    windows: List[Deque[Tuple[int, float]]] = [deque(maxlen=3) for _ in range(depth)]
    out: List[PivotCandidate] = []
    for i, value in enumerate(arr):
        windows[0].appendleft((i, float(value)))
        for d, window in enumerate(windows):
            if len(window) < 3:
                continue
            (_, newer), (mid_index, mid), (_, older) = window
            if kind == "high":
                dominant = mid >= newer and mid >= older
            else:
                dominant = mid <= newer and mid <= older
            if not dominant:
                continue
            if d < depth - 1:
                windows[d + 1].appendleft((mid_index, mid))
            else:
                out.append(
                    PivotCandidate(index=mid_index, price=mid, kind=kind, confirmed_index=i)
                )
            # Keep only the newest point; it opens the next triple.
            window.pop()
            window.pop()
    return out
