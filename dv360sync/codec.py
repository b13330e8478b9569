"""Conversion between sheet rows and typed DV360 resources.

A row is a list of cell strings aligned to the sheet's header row. Headers
name dotted field paths (``flight.dateRange.startDate``) or one of the
reserved bookkeeping columns:

``API_DATA``
    Compact JSON of the entity as last returned by the API, or the literal
    ``DELETE`` marker requesting removal.
``LOGS``
    Outcome of the last sync for the row.
``ACTION``
    Optional explicit action: ``CREATE``, ``MODIFY`` or ``DELETE``.
``TARGETING_OPTIONS``
    JSON array of assigned targeting options (line items only).
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from dv360sync import field_paths
from dv360sync.entities import AssignedTargetingOption, Resource, ResourceKind, resource_from_dict, resource_type
from dv360sync.translators import CellTranslator, TranslationError, translators_for

logger = logging.getLogger(__name__)

RAW_DATA_FIELD = "API_DATA"
LOGS_FIELD = "LOGS"
ACTION_FIELD = "ACTION"
TARGETING_OPTIONS_FIELD = "TARGETING_OPTIONS"
RESERVED_FIELDS = (RAW_DATA_FIELD, LOGS_FIELD, ACTION_FIELD, TARGETING_OPTIONS_FIELD)

DELETE_MARKER = "DELETE"


class CodecError(ValueError):
    """Raised when a row cannot be converted into an entity."""


_JSON_LITERALS = {"true": True, "false": False}


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def parse_cell(value: Any) -> Any:
    """Read cell content as JSON when it looks structured, else verbatim.

    The literals ``true`` and ``false`` written for boolean fields read back
    as booleans. Malformed JSON is returned as the original text rather than
    failing the row.
    """

    if value is None:
        return ""
    if not isinstance(value, str):
        return str(value)
    stripped = value.strip()
    if stripped in _JSON_LITERALS:
        return _JSON_LITERALS[stripped]
    if not stripped or stripped[0] not in "{[":
        return value
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        return value


def format_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return _dumps(value)


def default_headers(kind: ResourceKind) -> List[str]:
    """Return the header layout used for sheets without a header row."""

    cls = resource_type(kind)
    headers = [RAW_DATA_FIELD, LOGS_FIELD, ACTION_FIELD]
    headers.extend(cls.FIELDS)
    if cls.SUPPORTS_TARGETING:
        headers.append(TARGETING_OPTIONS_FIELD)
    return headers


def cell_value(values: Sequence[Any], headers: Sequence[str], field: str) -> str:
    """Return the stripped text of ``field`` in a row, or ``""``."""

    try:
        index = list(headers).index(field)
    except ValueError:
        return ""
    if index >= len(values) or values[index] is None:
        return ""
    return str(values[index]).strip()


def _like_recorded(value: Any, raw: Any, recorded: Any) -> Any:
    """Give a scalar cell the JSON type of the value recorded for its field."""

    if recorded is None or isinstance(value, (dict, list)):
        return value
    text = str(raw).strip()
    if isinstance(recorded, bool):
        lowered = text.lower()
        return _JSON_LITERALS[lowered] if lowered in _JSON_LITERALS else value
    if isinstance(recorded, str):
        return raw if isinstance(value, bool) else value
    if isinstance(recorded, (int, float)) and isinstance(value, str):
        try:
            return type(recorded)(text)
        except ValueError:
            return value
    return value


class EntityCodec:
    """Two-way mapping between rows and resources of a single kind."""

    def __init__(
        self,
        kind: ResourceKind,
        translators: Optional[Mapping[str, CellTranslator]] = None,
    ) -> None:
        self.kind = kind
        self.translators: Dict[str, CellTranslator] = (
            dict(translators) if translators is not None else translators_for(kind)
        )

    def row_to_entity(
        self,
        values: Sequence[Any],
        headers: Sequence[str],
        base: Optional[Resource] = None,
    ) -> Resource:
        """Build the entity described by a row.

        When ``base`` is given the row is laid over a copy of it, so fields and
        nested sub-fields without a column keep their recorded values.
        """

        payload: Dict[str, Any] = base.to_dict() if base is not None else {}
        recorded = field_paths.flatten(payload)
        for index, header in enumerate(headers):
            header = (header or "").strip()
            if not header or header in RESERVED_FIELDS:
                continue
            raw = values[index] if index < len(values) else ""
            if raw is None or (isinstance(raw, str) and raw == ""):
                continue
            translator = self.translators.get(header)
            if translator is not None:
                try:
                    value = translator.to_entity(str(raw))
                except TranslationError as exc:
                    raise CodecError(f"{header}: {exc}") from exc
            else:
                value = _like_recorded(parse_cell(raw), raw, recorded.get(header))
            field_paths.set_path(payload, header, value)
        return resource_from_dict(self.kind, payload)

    def entity_to_row(self, entity: Resource, headers: Sequence[str]) -> List[str]:
        row: List[str] = []
        for header in headers:
            header = (header or "").strip()
            if header == RAW_DATA_FIELD:
                row.append(_dumps(entity.to_dict()))
                continue
            if not header or header in RESERVED_FIELDS:
                row.append("")
                continue
            value = field_paths.get_path(entity.to_dict(), header)
            translator = self.translators.get(header)
            if translator is not None and value is not None:
                row.append(translator.to_display(value))
            else:
                row.append(format_cell(value))
        return row

    def raw_entity(self, values: Sequence[Any], headers: Sequence[str]) -> Optional[Resource]:
        """Return the entity recorded in the ``API_DATA`` column, if usable."""

        raw = cell_value(values, headers, RAW_DATA_FIELD)
        if not raw or raw == DELETE_MARKER:
            return None
        parsed = parse_cell(raw)
        if not isinstance(parsed, dict):
            logger.debug("Ignoring unparseable %s cell", RAW_DATA_FIELD)
            return None
        return resource_from_dict(self.kind, parsed)


def parse_targeting_options(cell: str) -> List[AssignedTargetingOption]:
    """Parse the ``TARGETING_OPTIONS`` cell into assigned targeting options."""

    parsed = parse_cell(cell)
    if not isinstance(parsed, list) or not all(isinstance(item, dict) for item in parsed):
        raise CodecError(f"{TARGETING_OPTIONS_FIELD} must be a JSON array of objects")
    return [AssignedTargetingOption(item) for item in parsed]


def format_targeting_options(options: Sequence[Resource]) -> str:
    return _dumps([option.to_dict() for option in options])


__all__ = [
    "ACTION_FIELD",
    "DELETE_MARKER",
    "LOGS_FIELD",
    "RAW_DATA_FIELD",
    "RESERVED_FIELDS",
    "TARGETING_OPTIONS_FIELD",
    "CodecError",
    "EntityCodec",
    "cell_value",
    "default_headers",
    "format_cell",
    "format_targeting_options",
    "parse_cell",
    "parse_targeting_options",
]
