"""Validation helpers for the frozen dataclass models.

Private module. ``__post_init__`` methods call these so invalid rows are
rejected before they reach PostgreSQL.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any


_MAX_STATE_DEPTH: int = 16


def validate_timestamp(value: Any, name: str) -> None:
    """Raise if *value* is not a non-negative ``int`` (``bool`` excluded)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative")


def validate_str_not_empty(value: Any, name: str) -> None:
    """Raise if *value* is not a non-empty ``str`` without null bytes."""
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a str, got {type(value).__name__}")
    if not value:
        raise ValueError(f"{name} must not be empty")
    if "\x00" in value:
        raise ValueError(f"{name} contains null bytes")


def normalize_state(value: Any, name: str) -> dict[str, Any]:
    """Return a key-sorted copy of a JSONB state mapping.

    ``None`` entries are dropped so absent and null fields serialize the
    same way. Everything else must already be JSON-compatible.

    Raises:
        TypeError: If *value* is not a mapping, a key is not a ``str``, or a
            value has a type JSONB cannot hold.
        ValueError: On null bytes, non-finite floats, or nesting deeper
            than the allowed depth.
    """
    if not isinstance(value, Mapping):
        raise TypeError(f"{name} must be a Mapping, got {type(value).__name__}")
    return _normalize_mapping(value, name, 0)


def _normalize_mapping(value: Mapping[Any, Any], name: str, depth: int) -> dict[str, Any]:
    if depth > _MAX_STATE_DEPTH:
        raise ValueError(f"{name} is nested too deeply")
    result: dict[str, Any] = {}
    for key in value:
        if not isinstance(key, str):
            raise TypeError(f"{name} keys must be str, got {type(key).__name__}")
        if "\x00" in key:
            raise ValueError(f"{name} key contains null bytes")
    for key in sorted(value):
        item = value[key]
        if item is not None:
            result[key] = _normalize_value(item, name, depth + 1)
    return result


def _normalize_value(value: Any, name: str, depth: int) -> Any:
    if isinstance(value, bool | int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{name} contains a non-finite float")
        return value
    if isinstance(value, str):
        if "\x00" in value:
            raise ValueError(f"{name} contains null bytes")
        return value
    if isinstance(value, Mapping):
        return _normalize_mapping(value, name, depth)
    if isinstance(value, list):
        return [_normalize_value(v, name, depth + 1) for v in value if v is not None]
    raise TypeError(f"{name} contains unsupported {type(value).__name__}")


def deep_freeze(obj: Any) -> Any:
    """Recursively wrap dicts in ``MappingProxyType`` and lists in tuples."""
    if isinstance(obj, dict):
        return MappingProxyType({k: deep_freeze(v) for k, v in obj.items()})
    if isinstance(obj, list):
        return tuple(deep_freeze(item) for item in obj)
    return obj
