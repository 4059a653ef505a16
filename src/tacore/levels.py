"""Structural level tracking: support/resistance and liquidity pools.

Levels come from confirmed pivots (``tacore.pivots``) and live in a bounded
``LevelBook`` with two eviction policies:
  - capacity: adding past ``capacity`` drops the oldest active level of the
    same kind (FIFO by insertion)
  - breach: price trades through the level (grab, mitigation, break)

Scans always walk active levels oldest first.  An evicted level is never
reinstated; a later pivot at the same price is a new level.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Literal, Optional, Tuple

import numpy as np
import pandas as pd

from tacore.data_loader import require_ohlc
from tacore.indicators import ema
from tacore.pivots import fractal_pivots, pivot_highs, pivot_lows, pivots_by_confirmation
from tacore.results import LevelSpan, OverlayResult
from tacore.validation import (
    raise_if_errors,
    require_choice,
    require_int,
    require_non_negative,
    require_positive,
)

logger = logging.getLogger(__name__)

LevelKind = Literal["support", "resistance"]
Polarity = Literal["buyside", "sellside"]
EvictionReason = Literal["grab", "breach", "capacity", "expired"]

LEVEL_KINDS = ("support", "resistance")
TIER_LABELS = {1: "small", 2: "medium", 3: "large"}

# Stand-in body for doji bars so the wick/body ratio stays finite.
MIN_BODY = 0.0001


def _length_errors(name: str, value: int) -> List[str]:
    return require_int(name, value) or require_positive(name, value)


# ---------------------------------------------------------------------------
# Level book
# ---------------------------------------------------------------------------

@dataclass
class Level:
    """One tracked price level."""

    level_id: int
    kind: LevelKind
    price: float
    origin_index: int               # bar of the pivot, not of its confirmation
    active: bool = True
    evicted_index: Optional[int] = None
    eviction_reason: Optional[EvictionReason] = None
    swept: bool = False


class LevelBook:
    """Bounded, insertion-ordered collection of active levels per kind."""

    def __init__(self, capacity: int) -> None:
        raise_if_errors("LevelBook", _length_errors("capacity", capacity))
        self.capacity = capacity
        self._active: Dict[str, Deque[Level]] = {k: deque() for k in LEVEL_KINDS}
        self._history: List[Level] = []

    def __len__(self) -> int:
        return sum(len(d) for d in self._active.values())

    def count(self, kind: LevelKind) -> int:
        return len(self._active[kind])

    def active(self, kind: LevelKind) -> List[Level]:
        """Active levels of *kind*, oldest first (a snapshot copy)."""
        return list(self._active[kind])

    @property
    def history(self) -> List[Level]:
        """Every level ever added, in insertion order."""
        return list(self._history)

    def add(
        self,
        kind: LevelKind,
        price: float,
        origin_index: int,
        bar_index: int,
    ) -> Level:
        """Insert a level; on overflow the oldest level of *kind* is evicted."""
        if kind not in self._active:
            raise ValueError(f"Unknown level kind {kind!r}")
        level = Level(
            level_id=len(self._history),
            kind=kind,
            price=float(price),
            origin_index=int(origin_index),
        )
        queue = self._active[kind]
        queue.append(level)
        self._history.append(level)
        while len(queue) > self.capacity:
            self._retire(queue.popleft(), bar_index, "capacity")
        return level

    def evict(self, level: Level, bar_index: int, reason: EvictionReason) -> None:
        if not level.active:
            raise ValueError(f"Level {level.level_id} already evicted at bar {level.evicted_index}")
        self._active[level.kind].remove(level)
        self._retire(level, bar_index, reason)

    @staticmethod
    def _retire(level: Level, bar_index: int, reason: EvictionReason) -> None:
        level.active = False
        level.evicted_index = int(bar_index)
        level.eviction_reason = reason

    def spans(self, last_index: int) -> List[LevelSpan]:
        """Drawable lifetime of every level: origin to eviction (or last bar)."""
        return [
            LevelSpan(
                kind=lv.kind,
                price=lv.price,
                start_index=lv.origin_index,
                end_index=last_index if lv.active else lv.evicted_index,
                reason=lv.eviction_reason,
            )
            for lv in self._history
        ]


def _confirmed_levels(
    df: pd.DataFrame,
    pivot_length: int,
    delay: int = 0,
) -> Tuple[Dict[int, list], Dict[int, list]]:
    """Pivot highs (resistance) and lows (support) keyed by confirmation bar."""
    highs = pivots_by_confirmation(pivot_highs(df["High"].values, pivot_length, delay=delay))
    lows = pivots_by_confirmation(pivot_lows(df["Low"].values, pivot_length, delay=delay))
    return highs, lows


def _times(df: pd.DataFrame):
    return df["Date"].values if "Date" in df.columns else None


def _ts(times, i: int) -> Optional[pd.Timestamp]:
    return None if times is None else pd.Timestamp(times[i])


def _iso(t: Optional[pd.Timestamp]) -> Optional[str]:
    return None if t is None else t.isoformat()


# ---------------------------------------------------------------------------
# Liquidity grabs
# ---------------------------------------------------------------------------

@dataclass
class LiquidityGrabParams:
    pivot_length: int = 25
    wick_body_ratio: float = 0.5
    cooldown: int = 3
    zone_count: int = 5
    confirmation_delay: int = 0

    def validate(self) -> List[str]:
        return (
            _length_errors("pivot_length", self.pivot_length)
            + require_positive("wick_body_ratio", self.wick_body_ratio)
            + (require_int("cooldown", self.cooldown) or require_non_negative("cooldown", self.cooldown))
            + _length_errors("zone_count", self.zone_count)
            + require_choice("confirmation_delay", self.confirmation_delay, (0, 1))
        )


@dataclass(frozen=True)
class GrabEvent:
    """A wick through a level that closed back on the original side."""

    index: int
    time: Optional[pd.Timestamp]
    polarity: Polarity
    tier: int
    level_price: float
    extreme: float          # bar high (buyside) or low (sellside)
    wick_ratio: float
    origin_index: int

    @property
    def tier_label(self) -> str:
        return TIER_LABELS[self.tier]

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "time": _iso(self.time),
            "polarity": self.polarity,
            "tier": self.tier,
            "tier_label": self.tier_label,
            "level_price": self.level_price,
            "extreme": self.extreme,
            "wick_ratio": round(self.wick_ratio, 6),
            "origin_index": self.origin_index,
        }


def classify_grab(wick: float, body: float, ratio: float, max_tier: int = 3) -> int:
    """Tier = floor((wick / body) / ratio), capped at *max_tier*.

    0 means the wick was too small to count as a classified grab.
    """
    body = max(abs(body), MIN_BODY)
    return int(min(math.floor((wick / body) / ratio), max_tier))


def _scan_resistance(
    book: LevelBook,
    i: int,
    high: float,
    top_body: float,
) -> Optional[Tuple[Level, float]]:
    """Oldest-first scan; returns the grabbed level and its wick, if any."""
    for level in book.active("resistance"):
        if top_body > level.price:
            # Body already closed through: stale, never a grab.
            book.evict(level, i, "breach")
            continue
        if high > level.price and top_body < level.price:
            book.evict(level, i, "grab")
            return level, high - top_body
    return None


def _scan_support(
    book: LevelBook,
    i: int,
    low: float,
    bottom_body: float,
) -> Optional[Tuple[Level, float]]:
    for level in book.active("support"):
        if bottom_body < level.price:
            book.evict(level, i, "breach")
            continue
        if low < level.price and bottom_body > level.price:
            book.evict(level, i, "grab")
            return level, bottom_body - low
    return None


def detect_liquidity_grabs(
    df: pd.DataFrame,
    params: LiquidityGrabParams | None = None,
) -> OverlayResult:
    """Liquidity grabs at confirmed pivot levels.

    Pivot highs seed resistance (buyside liquidity), pivot lows seed support
    (sellside).  Per bar, each polarity is scanned oldest first and at most
    one level per polarity is grabbed.  Classified events of a polarity are
    suppressed for ``cooldown`` bars after one fires; the level is consumed
    regardless.

    Returns
    -------
    OverlayResult
        frame columns: ``buyside_grab, buyside_tier, sellside_grab,
        sellside_tier, active_resistance, active_support``; events:
        GrabEvent; levels: every level's span.
    """
    params = params or LiquidityGrabParams()
    raise_if_errors("liquidity_grabs", params.validate())
    require_ohlc(df)

    highs = df["High"].values.astype(float)
    lows = df["Low"].values.astype(float)
    opens = df["Open"].values.astype(float)
    closes = df["Close"].values.astype(float)
    times = _times(df)
    n = len(df)

    new_highs, new_lows = _confirmed_levels(df, params.pivot_length, params.confirmation_delay)
    book = LevelBook(params.zone_count)

    buy_price = np.full(n, np.nan)
    buy_tier = np.zeros(n, dtype=int)
    sell_price = np.full(n, np.nan)
    sell_tier = np.zeros(n, dtype=int)
    n_res = np.zeros(n, dtype=int)
    n_sup = np.zeros(n, dtype=int)
    events: List[GrabEvent] = []
    last_event = {"buyside": -params.cooldown - 1, "sellside": -params.cooldown - 1}
    suppressed = 0

    for i in range(n):
        for p in new_highs.get(i, []):
            book.add("resistance", p.price, p.index, i)
        for p in new_lows.get(i, []):
            book.add("support", p.price, p.index, i)

        top_body = max(opens[i], closes[i])
        bottom_body = min(opens[i], closes[i])
        body = abs(closes[i] - opens[i])

        hits = (
            ("buyside", _scan_resistance(book, i, highs[i], top_body), highs[i]),
            ("sellside", _scan_support(book, i, lows[i], bottom_body), lows[i]),
        )
        for polarity, hit, extreme in hits:
            if hit is None:
                continue
            level, wick = hit
            tier = classify_grab(wick, body, params.wick_body_ratio)
            if tier == 0:
                continue
            if i - last_event[polarity] <= params.cooldown:
                suppressed += 1
                continue
            last_event[polarity] = i
            events.append(
                GrabEvent(
                    index=i,
                    time=_ts(times, i),
                    polarity=polarity,
                    tier=tier,
                    level_price=level.price,
                    extreme=float(extreme),
                    wick_ratio=wick / max(body, MIN_BODY),
                    origin_index=level.origin_index,
                )
            )
            if polarity == "buyside":
                buy_price[i] = extreme
                buy_tier[i] = tier
            else:
                sell_price[i] = extreme
                sell_tier[i] = tier

        n_res[i] = book.count("resistance")
        n_sup[i] = book.count("support")

    if suppressed:
        logger.debug("liquidity_grabs: %d grabs inside cooldown", suppressed)

    frame = pd.DataFrame(
        {
            "buyside_grab": buy_price,
            "buyside_tier": buy_tier,
            "sellside_grab": sell_price,
            "sellside_tier": sell_tier,
            "active_resistance": n_res,
            "active_support": n_sup,
        },
        index=df.index,
    )
    return OverlayResult(
        name="liquidity_grabs",
        frame=frame,
        events=events,
        levels=book.spans(n - 1),
        warmup=params.pivot_length * 2,
    )


# ---------------------------------------------------------------------------
# Liquidity sweeps
# ---------------------------------------------------------------------------

# Swing depth behind each sweep detection term.
SWEEP_TERMS = {"short": 1, "intermediate": 2, "long": 3}


@dataclass
class LiquiditySweepParams:
    term: str = "long"
    max_age: int = 2000
    zone_count: int = 50

    @property
    def depth(self) -> int:
        return SWEEP_TERMS[self.term]

    def validate(self) -> List[str]:
        return (
            require_choice("term", self.term, tuple(SWEEP_TERMS))
            + _length_errors("max_age", self.max_age)
            + _length_errors("zone_count", self.zone_count)
        )


@dataclass(frozen=True)
class SweepEvent:
    """First wick through a level whose close stayed on the original side."""

    index: int
    time: Optional[pd.Timestamp]
    kind: LevelKind
    level_price: float
    extreme: float
    origin_index: int

    @property
    def bullish(self) -> bool:
        # Sweeping sell-side liquidity under support is the bullish case.
        return self.kind == "support"

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "time": _iso(self.time),
            "kind": self.kind,
            "bullish": self.bullish,
            "level_price": self.level_price,
            "extreme": self.extreme,
            "origin_index": self.origin_index,
        }


def detect_liquidity_sweeps(
    df: pd.DataFrame,
    params: LiquiditySweepParams | None = None,
) -> OverlayResult:
    """Sweeps of fractal swing levels that stay live until mitigated.

    Swing highs and lows come from :func:`fractal_pivots` at the depth of
    ``params.term``.  Unlike a grab, a swept level is not consumed: it is
    flagged (one sweep event per level) and stays active until a close
    through it mitigates it, or it is older than ``max_age`` bars.  A level
    is still tested on the bar it ages out.
    """
    params = params or LiquiditySweepParams()
    raise_if_errors("liquidity_sweeps", params.validate())
    require_ohlc(df)

    highs = df["High"].values.astype(float)
    lows = df["Low"].values.astype(float)
    closes = df["Close"].values.astype(float)
    times = _times(df)
    n = len(df)

    new_highs = pivots_by_confirmation(fractal_pivots(highs, params.depth, "high"))
    new_lows = pivots_by_confirmation(fractal_pivots(lows, params.depth, "low"))
    book = LevelBook(params.zone_count)
    bear_sweep = np.full(n, np.nan)
    bull_sweep = np.full(n, np.nan)
    events: List[SweepEvent] = []

    for i in range(n):
        for p in new_highs.get(i, []):
            book.add("resistance", p.price, p.index, i)
        for p in new_lows.get(i, []):
            book.add("support", p.price, p.index, i)

        for level in book.active("resistance"):
            if closes[i] > level.price:
                book.evict(level, i, "breach")
                continue
            if not level.swept and highs[i] > level.price and closes[i] < level.price:
                level.swept = True
                bear_sweep[i] = level.price
                events.append(SweepEvent(i, _ts(times, i), "resistance", level.price,
                                         float(highs[i]), level.origin_index))
            if i - level.origin_index > params.max_age:
                book.evict(level, i, "expired")

        for level in book.active("support"):
            if closes[i] < level.price:
                book.evict(level, i, "breach")
                continue
            if not level.swept and lows[i] < level.price and closes[i] > level.price:
                level.swept = True
                bull_sweep[i] = level.price
                events.append(SweepEvent(i, _ts(times, i), "support", level.price,
                                         float(lows[i]), level.origin_index))
            if i - level.origin_index > params.max_age:
                book.evict(level, i, "expired")

    frame = pd.DataFrame(
        {"bearish_sweep": bear_sweep, "bullish_sweep": bull_sweep},
        index=df.index,
    )
    return OverlayResult(
        name="liquidity_sweeps",
        frame=frame,
        events=events,
        levels=book.spans(n - 1),
        # Earliest bar a swing of this depth can be confirmed on.
        warmup=2 ** (params.depth + 1) - 2,
    )


# ---------------------------------------------------------------------------
# Support / resistance breaks
# ---------------------------------------------------------------------------

@dataclass
class SRBreakParams:
    pivot_length: int = 15
    volume_threshold: float = 20.0

    def validate(self) -> List[str]:
        return _length_errors("pivot_length", self.pivot_length)


@dataclass(frozen=True)
class BreakEvent:
    """Close through the current support or resistance on rising volume."""

    index: int
    time: Optional[pd.Timestamp]
    kind: LevelKind
    level_price: float
    wick: bool

    @property
    def label(self) -> str:
        if self.kind == "resistance":
            return "Bull Wick" if self.wick else "B"
        return "Bear Wick" if self.wick else "B"

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "time": _iso(self.time),
            "kind": self.kind,
            "level_price": self.level_price,
            "wick": self.wick,
            "label": self.label,
        }


def volume_oscillator(volume: pd.Series) -> pd.Series:
    """100 * (EMA5 - EMA10) / EMA10 of volume; missing volume reads as 0."""
    vol = volume.fillna(0.0)
    fast = ema(vol, 5)
    slow = ema(vol, 10)
    return (100.0 * (fast - slow) / slow.replace(0, np.nan)).fillna(0.0)


def track_sr_breaks(
    df: pd.DataFrame,
    params: SRBreakParams | None = None,
) -> OverlayResult:
    """Most recent confirmed pivot high/low as resistance/support.

    A newer pivot replaces the previous level of its kind (capacity 1).  A
    close through the level removes it; the break is reported only past the
    warm-up and when the volume oscillator exceeds ``volume_threshold``.
    """
    params = params or SRBreakParams()
    raise_if_errors("sr_breaks", params.validate())
    require_ohlc(df)

    opens = df["Open"].values.astype(float)
    highs = df["High"].values.astype(float)
    lows = df["Low"].values.astype(float)
    closes = df["Close"].values.astype(float)
    volume = df["Volume"] if "Volume" in df.columns else pd.Series(np.nan, index=df.index)
    vol_osc = volume_oscillator(volume.astype(float)).values
    times = _times(df)
    n = len(df)
    warmup = params.pivot_length * 2

    new_highs, new_lows = _confirmed_levels(df, params.pivot_length)
    book = LevelBook(1)
    resistance = np.full(n, np.nan)
    support = np.full(n, np.nan)
    events: List[BreakEvent] = []

    for i in range(n):
        if i >= warmup:
            for p in new_highs.get(i, []):
                book.add("resistance", p.price, p.index, i)
            for p in new_lows.get(i, []):
                book.add("support", p.price, p.index, i)

        volume_ok = vol_osc[i] > params.volume_threshold
        for level in book.active("resistance"):
            if closes[i] > level.price:
                book.evict(level, i, "breach")
                if volume_ok:
                    wick = (opens[i] - lows[i]) > (closes[i] - opens[i])
                    events.append(BreakEvent(i, _ts(times, i), "resistance", level.price, bool(wick)))
        for level in book.active("support"):
            if closes[i] < level.price:
                book.evict(level, i, "breach")
                if volume_ok:
                    wick = (opens[i] - closes[i]) < (highs[i] - opens[i])
                    events.append(BreakEvent(i, _ts(times, i), "support", level.price, bool(wick)))

        active_res = book.active("resistance")
        active_sup = book.active("support")
        resistance[i] = active_res[0].price if active_res else np.nan
        support[i] = active_sup[0].price if active_sup else np.nan

    frame = pd.DataFrame({"resistance": resistance, "support": support}, index=df.index)
    return OverlayResult(
        name="sr_breaks",
        frame=frame,
        events=events,
        levels=book.spans(n - 1),
        warmup=warmup,
    )
