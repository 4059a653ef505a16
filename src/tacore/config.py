"""Overlay profile loader.

An overlay profile is a YAML file naming the indicators to run and their
parameters.  Everything is validated at load time, so a bad profile never
reaches the engines.

Usage
-----
>>> from tacore.config import load_overlay_profile
>>> profile = load_overlay_profile("configs/overlays_default.yaml")
>>> [spec.key for spec in profile.indicators]
['supertrend', 'chandelier_exit', ...]

Example file::

    profile_id: swing_v1
    indicators:
      - name: supertrend
        params: {atr_period: 10, factor: 3.0}
      - name: supertrend
        label: supertrend_fast
        params: {atr_period: 7, factor: 2.0}
      - name: liquidity_grabs
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from tacore.overlays import IndicatorSpec, build_params
from tacore.validation import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverlayProfile:
    """Validated overlay profile."""

    profile_id: str
    indicators: List[IndicatorSpec] = field(default_factory=list)
    description: str = ""

    def to_dict(self) -> dict:
        return {
            "profile_id": self.profile_id,
            "description": self.description,
            "indicators": [s.to_dict() for s in self.indicators],
        }


_REQUIRED_TOP_KEYS = {"profile_id", "indicators"}
_SPEC_KEYS = {"name", "label", "params"}


def _parse_spec(pos: int, raw: Any) -> IndicatorSpec:
    if isinstance(raw, str):
        raw = {"name": raw}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"indicators[{pos}] must be a mapping or a name")
    extra = set(raw) - _SPEC_KEYS
    if extra:
        raise ConfigurationError(f"indicators[{pos}] has unknown keys {sorted(extra)}")
    if "name" not in raw:
        raise ConfigurationError(f"indicators[{pos}] is missing 'name'")

    params = raw.get("params") or {}
    if not isinstance(params, dict):
        raise ConfigurationError(f"indicators[{pos}].params must be a mapping")
    try:
        built = build_params(str(raw["name"]), params)
    except TypeError as exc:
        raise ConfigurationError(f"indicators[{pos}]: {exc}") from exc
    return IndicatorSpec(name=str(raw["name"]), params=built, label=str(raw.get("label", "") or ""))


def parse_overlay_profile(data: Dict[str, Any]) -> OverlayProfile:
    """Build an :class:`OverlayProfile` from an already-parsed mapping.

    Raises
    ------
    ConfigurationError
        Missing keys, unknown indicators/parameters, invalid values or
        duplicate indicator keys.
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Overlay profile must be a mapping")
    missing = _REQUIRED_TOP_KEYS - set(data.keys())
    if missing:
        raise ConfigurationError(f"Missing required keys in profile: {sorted(missing)}")

    raw_specs = data["indicators"]
    if not isinstance(raw_specs, list) or not raw_specs:
        raise ConfigurationError("indicators must be a non-empty list")

    specs = [_parse_spec(pos, raw) for pos, raw in enumerate(raw_specs)]
    keys = [s.key for s in specs]
    dupes = sorted({k for k in keys if keys.count(k) > 1})
    if dupes:
        raise ConfigurationError(f"Duplicate indicator keys {dupes}; give each a distinct label")

    return OverlayProfile(
        profile_id=str(data["profile_id"]),
        indicators=specs,
        description=str(data.get("description", "")),
    )


def load_overlay_profile(path: Path) -> OverlayProfile:
    """Parse an overlay profile YAML file.

    Parameters
    ----------
    path : Path
        Path to the YAML configuration file.

    Returns
    -------
    OverlayProfile
    """
    path = Path(path)
    with open(path) as f:
        data = yaml.safe_load(f)
    profile = parse_overlay_profile(data)
    logger.info(
        "Loaded overlay profile %s with %d indicators from %s",
        profile.profile_id, len(profile.indicators), path.name,
    )
    return profile
