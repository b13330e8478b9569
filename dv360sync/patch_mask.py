"""Update mask computation for PATCH requests."""
from __future__ import annotations

from typing import Any, List, Mapping, Optional, Union

from dv360sync.entities import UPDATE_TIME_FIELD, Resource

Structured = Union[Resource, Mapping[str, Any]]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def values_equal(left: Any, right: Any) -> bool:
    """Structural equality tolerant of number/string representations.

    Sheet cells carry ``"12"`` where the API returns ``12`` (and the other way
    round for int64 identifiers), so a number equals its decimal text and a
    boolean equals ``"true"`` or ``"false"``.
    """

    if isinstance(left, Mapping) and isinstance(right, Mapping):
        if set(left) != set(right):
            return False
        return all(values_equal(left[key], right[key]) for key in left)
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        if len(left) != len(right):
            return False
        return all(values_equal(a, b) for a, b in zip(left, right))
    if isinstance(left, bool) or isinstance(right, bool):
        if isinstance(left, str) or isinstance(right, str):
            return str(left).strip().lower() == str(right).strip().lower()
        return left is right
    if left == right:
        return True
    if (_is_number(left) and isinstance(right, str)) or (_is_number(right) and isinstance(left, str)):
        return str(left) == str(right)
    return False


def changed_fields(
    original: Structured,
    modified: Structured,
    primary_id_field: Optional[str] = None,
) -> List[str]:
    """Return the top-level fields of ``modified`` that differ from ``original``."""

    if primary_id_field is None and isinstance(modified, Resource):
        primary_id_field = modified.PRIMARY_ID_FIELD
    excluded = {UPDATE_TIME_FIELD}
    if primary_id_field:
        excluded.add(primary_id_field)

    changed: List[str] = []
    for field in list(modified):
        if field in excluded:
            continue
        if not values_equal(modified.get(field), original.get(field)):
            changed.append(field)
    return changed


def compute_mask(
    original: Structured,
    modified: Structured,
    primary_id_field: Optional[str] = None,
) -> str:
    """Return the comma separated update mask, or ``""`` when nothing changed."""

    return ",".join(changed_fields(original, modified, primary_id_field))


__all__ = ["changed_fields", "compute_mask", "values_equal"]
