"""Dotted field path helpers for nested API payloads.

Only mappings are descended into. Lists are leaves, so ``creativeIds`` is a
single path whose value is the whole list; a segment such as ``"0"`` is an
ordinary mapping key, never a list index.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, MutableMapping, Optional


def flatten(structured: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Convert ``{"a": {"b": 1}}`` into ``{"a.b": 1}``."""

    flat: Dict[str, Any] = {}
    for key, value in structured.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping) and value:
            flat.update(flatten(value, path))
        else:
            flat[path] = value
    return flat


def get_path(structured: Optional[Mapping[str, Any]], dotted_path: str) -> Any:
    """Return the value at ``dotted_path`` or ``None`` if any segment is missing."""

    current: Any = structured
    for segment in dotted_path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(segment)
        if current is None:
            return None
    return current


def set_path(structured: MutableMapping[str, Any], dotted_path: str, value: Any) -> None:
    """Assign ``value`` at ``dotted_path``, creating intermediate dictionaries."""

    segments = dotted_path.split(".")
    current = structured
    for segment in segments[:-1]:
        child = current.get(segment)
        if not isinstance(child, MutableMapping):
            child = {}
            current[segment] = child
        current = child
    current[segments[-1]] = value


__all__ = ["flatten", "get_path", "set_path"]
