"""Cell translators converting entity fields into display values and back."""
from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, Dict, Mapping

from dv360sync.entities import ResourceKind


class TranslationError(ValueError):
    """Raised when a cell cannot be converted into an entity field."""


class CellTranslator:
    """Strategy pair applied to one field path of an entity."""

    def to_display(self, value: Any) -> str:
        raise NotImplementedError

    def to_entity(self, cell: str) -> Any:
        raise NotImplementedError


class DateTranslator(CellTranslator):
    """Maps ``{"year": 2024, "month": 1, "day": 5}`` to ``2024-01-05``."""

    def to_display(self, value: Any) -> str:
        if value in (None, ""):
            return ""
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return value
        if not isinstance(value, Mapping):
            return str(value)
        try:
            parsed = date(int(value["year"]), int(value["month"]), int(value["day"]))
        except (KeyError, TypeError, ValueError):
            return json.dumps(value, separators=(",", ":"))
        return parsed.isoformat()

    def to_entity(self, cell: str) -> Any:
        text = str(cell).strip()
        try:
            parsed = date.fromisoformat(text[:10])
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00")).date()
            except ValueError as exc:
                raise TranslationError(f"Cannot parse date value {cell!r}") from exc
        return {"year": parsed.year, "month": parsed.month, "day": parsed.day}


DATE_TRANSLATOR = DateTranslator()

DEFAULT_TRANSLATORS: Dict[ResourceKind, Dict[str, CellTranslator]] = {
    ResourceKind.CAMPAIGN: {
        "campaignFlight.plannedDates.startDate": DATE_TRANSLATOR,
        "campaignFlight.plannedDates.endDate": DATE_TRANSLATOR,
    },
    ResourceKind.LINE_ITEM: {
        "flight.dateRange.startDate": DATE_TRANSLATOR,
        "flight.dateRange.endDate": DATE_TRANSLATOR,
    },
}


def translators_for(kind: ResourceKind) -> Dict[str, CellTranslator]:
    return dict(DEFAULT_TRANSLATORS.get(kind, {}))


__all__ = [
    "CellTranslator",
    "DATE_TRANSLATOR",
    "DEFAULT_TRANSLATORS",
    "DateTranslator",
    "TranslationError",
    "translators_for",
]
