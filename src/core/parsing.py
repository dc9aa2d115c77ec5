"""Tolerant coercion helpers for generated JSON.

Oracle replies are loosely shaped: keys go missing, numbers arrive as
strings, lists arrive as null. These helpers turn such values into the
neutral default for the expected type instead of raising, so dataclass
``from_dict`` constructors stay short.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, TypeVar

E = TypeVar("E", bound=Enum)


def as_str(value: object, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, bool)):
        return str(value)
    return default


def as_bool(value: object, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    return default


def as_int(value: object, default: int = 0) -> int:
    """Coerce to int, rounding floats and parsing numeric strings."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return round(value)
    if isinstance(value, str):
        try:
            return round(float(value.strip().rstrip("%")))
        except ValueError:
            return default
    return default


def as_float(value: object, default: float | None = None) -> float | None:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return default
    return default


def as_list(value: object) -> list[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    return []


def as_dict(value: object) -> dict[str, Any]:
    if isinstance(value, dict):
        return {str(k): v for k, v in value.items()}
    return {}


def as_str_list(value: object) -> list[str]:
    """Coerce to a list of non-empty strings; a bare string becomes one item."""
    if isinstance(value, str):
        return [value] if value else []
    return [s for s in (as_str(item) for item in as_list(value)) if s]


def as_dict_list(value: object) -> list[dict[str, Any]]:
    return [as_dict(item) for item in as_list(value) if isinstance(item, dict)]


def as_enum(enum_cls: type[E], value: object, default: E) -> E:
    """Look up an enum member by value, case-insensitively for strings."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        for member in enum_cls:
            if str(member.value).lower() == value.strip().lower():
                return member
    return default


def as_choice(value: object, choices: tuple[str, ...], default: str) -> str:
    """Return ``value`` if it is one of ``choices`` (case-insensitive)."""
    text = as_str(value).strip().lower()
    for choice in choices:
        if choice.lower() == text:
            return choice
    return default
