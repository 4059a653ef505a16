"""Indicator registry and batch runner.

Each overlay is a pure function of (bars, params).  ``compute_overlays``
runs a list of them over the same frame independently; no state crosses
indicator invocations, so the order of the list never changes a result.

Usage
-----
>>> from tacore.overlays import build_params, compute_overlay
>>> result = compute_overlay(df, "supertrend", build_params("supertrend", {"factor": 2.0}))
>>> result.frame["stop"].iloc[-1]
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, Callable, Dict, List, Optional, Sequence

import pandas as pd

from tacore.data_loader import validate_bars
from tacore.levels import (
    LiquidityGrabParams,
    LiquiditySweepParams,
    SRBreakParams,
    detect_liquidity_grabs,
    detect_liquidity_sweeps,
    track_sr_breaks,
)
from tacore.psar import SarParams, parabolic_sar
from tacore.results import OverlayResult
from tacore.trailing_stops import (
    AtrTrailingStopParams,
    ChandelierParams,
    PivotSupertrendParams,
    QQEParams,
    SupertrendParams,
    TrendTraderParams,
    UTBotParams,
    atr_trailing_stop,
    chandelier_exit,
    pivot_point_supertrend,
    qqe,
    supertrend,
    trend_trader,
    ut_bot,
)
from tacore.validation import ConfigurationError, raise_if_errors

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndicatorEntry:
    """Registry record: parameter dataclass, compute function, pane."""

    params_cls: type
    compute: Callable[..., OverlayResult]
    title: str
    overlay: bool = True        # False -> drawn in its own pane


INDICATORS: Dict[str, IndicatorEntry] = {
    "supertrend": IndicatorEntry(SupertrendParams, supertrend, "Supertrend"),
    "atr_trailing_stop": IndicatorEntry(AtrTrailingStopParams, atr_trailing_stop, "ATR Trailing Stop"),
    "chandelier_exit": IndicatorEntry(ChandelierParams, chandelier_exit, "Chandelier Exit"),
    "ut_bot": IndicatorEntry(UTBotParams, ut_bot, "UT Bot Alerts"),
    "trend_trader": IndicatorEntry(TrendTraderParams, trend_trader, "Trend Trader"),
    "qqe": IndicatorEntry(QQEParams, qqe, "QQE", overlay=False),
    "pivot_point_supertrend": IndicatorEntry(
        PivotSupertrendParams, pivot_point_supertrend, "Pivot Point SuperTrend",
    ),
    "parabolic_sar": IndicatorEntry(SarParams, parabolic_sar, "Parabolic SAR"),
    "liquidity_grabs": IndicatorEntry(LiquidityGrabParams, detect_liquidity_grabs, "Liquidity Grabs"),
    "liquidity_sweeps": IndicatorEntry(LiquiditySweepParams, detect_liquidity_sweeps, "Liquidity Sweeps"),
    "sr_breaks": IndicatorEntry(SRBreakParams, track_sr_breaks, "Support/Resistance Breaks"),
}


@dataclass(frozen=True)
class IndicatorSpec:
    """One configured indicator: registry name, parameters, optional label."""

    name: str
    params: Any
    label: str = ""

    @property
    def key(self) -> str:
        return self.label or self.name

    def to_dict(self) -> dict:
        return {"name": self.name, "label": self.label, "params": asdict(self.params)}


def get_entry(name: str) -> IndicatorEntry:
    try:
        return INDICATORS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown indicator {name!r}. Known: {sorted(INDICATORS)}"
        ) from None


def build_params(name: str, overrides: Optional[Dict[str, Any]] = None) -> Any:
    """Instantiate and validate the params dataclass of indicator *name*.

    Raises
    ------
    ConfigurationError
        Unknown indicator, unknown parameter names, or invalid values.
    """
    entry = get_entry(name)
    overrides = dict(overrides or {})
    allowed = {f.name for f in fields(entry.params_cls)}
    unknown = set(overrides) - allowed
    if unknown:
        raise ConfigurationError(
            f"{name}: unknown parameters {sorted(unknown)} (allowed: {sorted(allowed)})"
        )
    params = entry.params_cls(**overrides)
    raise_if_errors(name, params.validate())
    return params


def compute_overlay(
    df: pd.DataFrame,
    name: str,
    params: Any = None,
) -> OverlayResult:
    """Run a single registered indicator."""
    entry = get_entry(name)
    if params is None:
        params = entry.params_cls()
    elif not isinstance(params, entry.params_cls):
        raise ConfigurationError(
            f"{name}: expected {entry.params_cls.__name__}, got {type(params).__name__}"
        )
    return entry.compute(df, params)


def compute_overlays(
    df: pd.DataFrame,
    specs: Sequence[IndicatorSpec],
) -> Dict[str, OverlayResult]:
    """Run every spec over *df*; results keyed by ``spec.key``.

    Raises
    ------
    ValueError
        If *df* fails bar validation.
    ConfigurationError
        If two specs share a key.
    """
    problems = validate_bars(df)
    if problems:
        raise ValueError(f"Invalid bar frame: {'; '.join(problems)}")

    keys = [s.key for s in specs]
    dupes = sorted({k for k in keys if keys.count(k) > 1})
    if dupes:
        raise ConfigurationError(f"Duplicate indicator keys: {dupes}; set a label")

    results: Dict[str, OverlayResult] = {}
    for spec in specs:
        result = compute_overlay(df, spec.name, spec.params)
        results[spec.key] = result
        logger.info(
            "%s: %d bars, %d events, %d levels",
            spec.key, len(result.frame), len(result.events), len(result.levels),
        )
    return results


def default_specs() -> List[IndicatorSpec]:
    """Every registered indicator at its default parameters."""
    return [IndicatorSpec(name, entry.params_cls()) for name, entry in INDICATORS.items()]


def summarize(results: Dict[str, OverlayResult]) -> Dict[str, Any]:
    """JSON-serialisable digest of a batch run."""
    out: Dict[str, Any] = {}
    for key, res in results.items():
        item: Dict[str, Any] = {
            "indicator": res.name,
            "bars": len(res.frame),
            "warmup": res.warmup,
            "events": len(res.events),
            "last_event": res.events[-1].to_dict() if res.events else None,
        }
        for col in ("stop", "sar"):
            if col in res.frame.columns:
                item["last_" + col] = res.last_value(col)
        if "direction" in res.frame.columns and len(res.frame):
            item["direction"] = int(res.frame["direction"].iloc[-1])
        if res.levels:
            item["levels_total"] = len(res.levels)
            item["levels_active"] = sum(1 for lv in res.levels if lv.reason is None)
        out[key] = item
    return out
