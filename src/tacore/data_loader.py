"""OHLCV bar ingestion and the ``Bar`` record.

Loaded data is normalised into one DataFrame schema (``OHLCV_COLS``) that
every engine in the package consumes.  Bars are time-ordered, one row per
period, and never mutated after ingestion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

# Canonical column order after normalisation.
OHLCV_COLS = ["Date", "Open", "High", "Low", "Close", "Volume"]
PRICE_COLS = ("Open", "High", "Low", "Close")

# Common CSV column aliases (charting exports, exchange dumps).
_COL_MAP = {
    "date": "Date",
    "time": "Date",
    "timestamp": "Date",
    "datetime": "Date",
    "open": "Open",
    "o": "Open",
    "high": "High",
    "h": "High",
    "low": "Low",
    "l": "Low",
    "close": "Close",
    "c": "Close",
    "vol": "Volume",
    "volume": "Volume",
    "v": "Volume",
}


@dataclass(frozen=True)
class Bar:
    """One OHLCV period."""

    time: pd.Timestamp
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None


# ---------------------------------------------------------------------------
# CSV loader
# ---------------------------------------------------------------------------


def load_ohlcv_csv(path: Path) -> pd.DataFrame:
    """Load an OHLCV CSV export into a normalised DataFrame.

    Parameters
    ----------
    path : Path
        CSV file with a date/time column plus open/high/low/close and an
        optional volume column (header names are matched case-insensitively).

    Returns
    -------
    pd.DataFrame
        Columns: Date (datetime64), Open, High, Low, Close, Volume (float64).
        Sorted by Date ascending, duplicates removed.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Bar file not found: {path}")
    df = pd.read_csv(path)

    # Normalise column names.
    df.columns = [c.strip().lower() for c in df.columns]
    df = df.rename(columns=_COL_MAP)
    df = df.loc[:, ~df.columns.duplicated()]

    if "Date" not in df.columns:
        raise ValueError(f"No date column found in {path}. Got: {list(df.columns)}")
    missing = [c for c in PRICE_COLS if c not in df.columns]
    if missing:
        raise ValueError(f"Missing price columns {missing} in {path}")

    df = normalise_frame(df)
    logger.info("Loaded %d bars from %s", len(df), path.name)
    return df


def normalise_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Coerce types, sort by date and drop duplicate periods.

    Returns a new DataFrame with exactly ``OHLCV_COLS``.  A missing Volume
    column is filled with NaN (volume is optional).
    """
    df = df.copy()
    if np.issubdtype(df["Date"].dtype, np.number):
        # Epoch seconds, as most charting feeds send them.
        df["Date"] = pd.to_datetime(df["Date"], unit="s")
    else:
        df["Date"] = pd.to_datetime(df["Date"])

    for col in ("Open", "High", "Low", "Close", "Volume"):
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce").astype(float)

    if "Volume" not in df.columns:
        df["Volume"] = np.nan

    before = len(df)
    df = df[OHLCV_COLS].sort_values("Date").drop_duplicates(subset=["Date"])
    dropped = before - len(df)
    if dropped:
        logger.warning("Dropped %d duplicate bars", dropped)
    return df.reset_index(drop=True)


def validate_bars(df: pd.DataFrame) -> List[str]:
    """Return a list of problems that make *df* unusable for the engines.

    Empty list means the frame is valid.
    """
    errors: List[str] = []
    missing = [c for c in ("Date",) + PRICE_COLS if c not in df.columns]
    if missing:
        errors.append(f"missing columns: {missing}")
        return errors

    prices = df[list(PRICE_COLS)]
    nan_rows = int(prices.isna().any(axis=1).sum())
    if nan_rows:
        errors.append(f"{nan_rows} bars with NaN prices")

    bad_range = int((df["High"] < df["Low"]).sum())
    if bad_range:
        errors.append(f"{bad_range} bars with High < Low")

    outside = int(
        (
            (df["Open"] > df["High"]) | (df["Open"] < df["Low"])
            | (df["Close"] > df["High"]) | (df["Close"] < df["Low"])
        ).sum()
    )
    if outside:
        errors.append(f"{outside} bars with Open/Close outside High-Low")

    if not df["Date"].is_monotonic_increasing:
        errors.append("Date is not sorted ascending")
    return errors


def require_ohlc(df: pd.DataFrame) -> None:
    """Raise ``ValueError`` if *df* lacks the price columns engines read."""
    missing = [c for c in PRICE_COLS if c not in df.columns]
    if missing:
        raise ValueError(f"Bar frame is missing columns {missing}. Got: {list(df.columns)}")


# ---------------------------------------------------------------------------
# Record conversion
# ---------------------------------------------------------------------------


def frame_to_bars(df: pd.DataFrame) -> List[Bar]:
    """Convert a normalised frame into immutable ``Bar`` records."""
    volumes = df["Volume"] if "Volume" in df.columns else pd.Series(np.nan, index=df.index)
    return [
        Bar(
            time=pd.Timestamp(t),
            open=float(o),
            high=float(h),
            low=float(lo),
            close=float(c),
            volume=None if pd.isna(v) else float(v),
        )
        for t, o, h, lo, c, v in zip(
            df["Date"], df["Open"], df["High"], df["Low"], df["Close"], volumes,
        )
    ]


def bars_to_frame(bars: Sequence[Bar]) -> pd.DataFrame:
    """Inverse of :func:`frame_to_bars`."""
    df = pd.DataFrame(
        {
            "Date": [b.time for b in bars],
            "Open": [b.open for b in bars],
            "High": [b.high for b in bars],
            "Low": [b.low for b in bars],
            "Close": [b.close for b in bars],
            "Volume": [np.nan if b.volume is None else b.volume for b in bars],
        }
    )
    df["Date"] = pd.to_datetime(df["Date"])
    return df[OHLCV_COLS]
