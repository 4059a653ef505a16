"""Output records shared by the overlay engines.

Everything here is an in-process structure consumed by the chart layer;
``to_dict`` helpers keep the payloads JSON-serialisable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class LevelSpan:
    """Drawable lifetime of one level: [start_index, end_index]."""

    kind: str
    price: float
    start_index: int
    end_index: int
    reason: Optional[str] = None    # None while still active at the last bar

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "price": self.price,
            "start_index": self.start_index,
            "end_index": self.end_index,
            "reason": self.reason,
        }


@dataclass
class OverlayResult:
    """Per-bar frame plus discrete events and level lines for one indicator."""

    name: str
    frame: pd.DataFrame
    events: List[Any] = field(default_factory=list)
    levels: List[LevelSpan] = field(default_factory=list)
    warmup: int = 0

    def last_value(self, column: str) -> Optional[float]:
        """Last defined value of *column*, or None."""
        if column not in self.frame.columns:
            return None
        valid = self.frame[column].dropna()
        if valid.empty:
            return None
        value = valid.iloc[-1]
        return float(value) if isinstance(value, (float, np.floating, int, np.integer)) else value

    def events_as_dicts(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.events]

    def levels_as_dicts(self) -> List[Dict[str, Any]]:
        return [lv.to_dict() for lv in self.levels]
