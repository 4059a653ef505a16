"""Parameter validation shared by every engine.

Each parameter dataclass collects its problems via ``validate()`` and the
public entry points raise :class:`ConfigurationError` before any bar is
processed.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence


class ConfigurationError(ValueError):
    """Invalid indicator parameters (non-positive lengths, bad choices)."""


def require_positive(name: str, value: float) -> List[str]:
    if value is None or not value > 0:
        return [f"{name} must be > 0, got {value!r}"]
    return []


def require_non_negative(name: str, value: float) -> List[str]:
    if value is None or not value >= 0:
        return [f"{name} must be >= 0, got {value!r}"]
    return []


def require_int(name: str, value: object) -> List[str]:
    if isinstance(value, bool) or not isinstance(value, int):
        return [f"{name} must be an integer, got {value!r}"]
    return []


def require_choice(name: str, value: object, choices: Sequence) -> List[str]:
    if value not in choices:
        return [f"{name} must be one of {tuple(choices)}, got {value!r}"]
    return []


def raise_if_errors(owner: str, errors: Iterable[str]) -> None:
    """Raise a single :class:`ConfigurationError` listing every problem."""
    errors = list(errors)
    if errors:
        raise ConfigurationError(f"{owner}: " + "; ".join(errors))
