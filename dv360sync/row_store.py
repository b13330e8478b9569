"""Row storage backed by the Google Sheets values API.

The orchestrator only talks to the :class:`RowStore` protocol. The concrete
:class:`SheetsRowStore` maps it onto the Sheets v4 API:

* every range is written in A1 notation with a quoted worksheet title so that
  titles containing spaces (``'Line Items'!A5:Z``) parse correctly;
* values are read and written ``RAW`` so JSON and identifiers stay text;
* row removal uses a single ``batchUpdate`` with ``deleteDimension``
  requests ordered from the bottom of the sheet upwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, MutableSequence, Optional, Protocol, Sequence

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from dv360sync.settings import SheetConfig

logger = logging.getLogger(__name__)

VALUE_INPUT_OPTION = "RAW"
# Column bound for open-ended ranges (column ZZ).
MAX_COLUMNS = 702


class RowStoreError(RuntimeError):
    """Raised when the spreadsheet cannot be read or written."""


@dataclass
class Row:
    """Cell values of one sheet row and its absolute 1-based row number."""

    index: int
    values: List[str] = field(default_factory=list)

    def is_blank(self) -> bool:
        return not any(str(value).strip() for value in self.values)


class RowStore(Protocol):
    def read_header(self, config: SheetConfig) -> List[str]: ...

    def read_rows(self, config: SheetConfig) -> List[Row]: ...

    def write_row(self, config: SheetConfig, row_index: int, col_index: int, values: Sequence[str]) -> None: ...

    def append_rows(self, config: SheetConfig, rows: Sequence[Sequence[str]]) -> None: ...

    def delete_rows(self, config: SheetConfig, row_indexes: Sequence[int]) -> None: ...

    def clear(self, config: SheetConfig) -> None: ...

    def get_input_parameters(self, config: SheetConfig) -> Dict[str, str]: ...


def quote_title(title: str) -> str:
    """Return a worksheet title quoted according to A1 notation rules."""

    safe = (title or "").strip()
    if not safe:
        raise RowStoreError("Worksheet title must not be empty.")
    safe = safe.replace("'", "''")
    return f"'{safe}'"


def column_letter(index: int) -> str:
    if index < 1:
        raise ValueError("Column index must be >= 1")
    letters: MutableSequence[str] = []
    while index:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


def a1_cell(title: str, row_index: int, col_index: int) -> str:
    if row_index < 1:
        raise ValueError("Row index must be >= 1")
    return f"{quote_title(title)}!{column_letter(col_index)}{row_index}"


def a1_row_range(title: str, row_index: int, first_col: int, columns: int) -> str:
    """Return the range of ``columns`` cells of one row starting at ``first_col``."""

    last_col = first_col + max(1, columns) - 1
    return f"{a1_cell(title, row_index, first_col)}:{column_letter(last_col)}{row_index}"


def a1_open_range(title: str, first_row: int, first_col: int, last_col: int = MAX_COLUMNS) -> str:
    """Return a range from ``first_row`` down to the end of the sheet."""

    return f"{a1_cell(title, first_row, first_col)}:{column_letter(last_col)}"


def _as_text(value: object) -> str:
    return "" if value is None else str(value)


def _pad(values: Sequence[object], width: int) -> List[str]:
    row = [_as_text(value) for value in values]
    if len(row) < width:
        row.extend([""] * (width - len(row)))
    return row


def build_sheets_service(credentials):
    """Return a Sheets v4 service object for ``credentials``."""

    return build("sheets", "v4", credentials=credentials, cache_discovery=False)


class SheetsRowStore:
    """:class:`RowStore` backed by one Google spreadsheet."""

    def __init__(self, service, spreadsheet_id: str) -> None:
        if not spreadsheet_id:
            raise RowStoreError("A spreadsheet id is required.")
        self._service = service
        self._spreadsheet_id = spreadsheet_id
        self._sheet_ids: Dict[str, int] = {}

    @property
    def spreadsheet_id(self) -> str:
        return self._spreadsheet_id

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_input_parameters(self, config: SheetConfig) -> Dict[str, str]:
        """Return the values of the sheet's input cells; empty cells are omitted."""

        names = list(config.input_cells)
        if not names:
            return {}
        ranges = [f"{quote_title(config.name)}!{config.input_cells[name]}" for name in names]
        try:
            response = (
                self._service.spreadsheets()
                .values()
                .batchGet(spreadsheetId=self._spreadsheet_id, ranges=ranges, majorDimension="ROWS")
                .execute()
            )
        except HttpError as exc:
            raise RowStoreError(f"Unable to read input cells of {config.name}: {exc}") from exc

        params: Dict[str, str] = {}
        for name, value_range in zip(names, response.get("valueRanges", [])):
            values = value_range.get("values") or [[]]
            cell = _as_text(values[0][0]).strip() if values and values[0] else ""
            if cell:
                params[name] = cell
        return params

    def read_header(self, config: SheetConfig) -> List[str]:
        values = self._get_values(a1_open_range(config.name, config.header_row, config.range_start_col), config)
        if not values:
            return []
        header = [_as_text(cell).strip() for cell in values[0]]
        while header and not header[-1]:
            header.pop()
        return header

    def read_rows(self, config: SheetConfig) -> List[Row]:
        """Return every data row; trailing blank cells are padded to the header width."""

        width = len(self.read_header(config))
        values = self._get_values(a1_open_range(config.name, config.range_start_row, config.range_start_col), config)
        return [
            Row(index=config.range_start_row + offset, values=_pad(cells, width))
            for offset, cells in enumerate(values)
        ]

    def _get_values(self, a1_range: str, config: SheetConfig) -> List[List[object]]:
        try:
            response = (
                self._service.spreadsheets()
                .values()
                .get(spreadsheetId=self._spreadsheet_id, range=a1_range, majorDimension="ROWS")
                .execute()
            )
        except HttpError as exc:
            raise RowStoreError(f"Unable to read {config.name}: {exc}") from exc
        return list(response.get("values", []))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def write_row(self, config: SheetConfig, row_index: int, col_index: int, values: Sequence[str]) -> None:
        body = {"majorDimension": "ROWS", "values": [[_as_text(value) for value in values]]}
        try:
            (
                self._service.spreadsheets()
                .values()
                .update(
                    spreadsheetId=self._spreadsheet_id,
                    range=a1_row_range(config.name, row_index, col_index, len(values)),
                    valueInputOption=VALUE_INPUT_OPTION,
                    body=body,
                )
                .execute()
            )
        except HttpError as exc:
            raise RowStoreError(f"Unable to write row {row_index} of {config.name}: {exc}") from exc

    def append_rows(self, config: SheetConfig, rows: Sequence[Sequence[str]]) -> None:
        if not rows:
            return
        body = {"majorDimension": "ROWS", "values": [[_as_text(value) for value in row] for row in rows]}
        try:
            (
                self._service.spreadsheets()
                .values()
                .append(
                    spreadsheetId=self._spreadsheet_id,
                    range=a1_open_range(config.name, config.range_start_row, config.range_start_col),
                    valueInputOption=VALUE_INPUT_OPTION,
                    insertDataOption="INSERT_ROWS",
                    body=body,
                )
                .execute()
            )
        except HttpError as exc:
            raise RowStoreError(f"Unable to append rows to {config.name}: {exc}") from exc
        logger.info("Appended %s rows to %s", len(rows), config.name)

    def clear(self, config: SheetConfig) -> None:
        """Clear the data range below the header; input cells are untouched."""

        try:
            (
                self._service.spreadsheets()
                .values()
                .clear(
                    spreadsheetId=self._spreadsheet_id,
                    range=a1_open_range(config.name, config.range_start_row, config.range_start_col),
                    body={},
                )
                .execute()
            )
        except HttpError as exc:
            raise RowStoreError(f"Unable to clear {config.name}: {exc}") from exc

    def delete_rows(self, config: SheetConfig, row_indexes: Sequence[int]) -> None:
        """Physically remove rows, bottom first so earlier indexes stay valid."""

        ordered = sorted(set(row_indexes), reverse=True)
        if not ordered:
            return
        sheet_id = self._sheet_id(config.name)
        requests = [
            {
                "deleteDimension": {
                    "range": {
                        "sheetId": sheet_id,
                        "dimension": "ROWS",
                        "startIndex": index - 1,
                        "endIndex": index,
                    }
                }
            }
            for index in ordered
        ]
        try:
            (
                self._service.spreadsheets()
                .batchUpdate(spreadsheetId=self._spreadsheet_id, body={"requests": requests})
                .execute()
            )
        except HttpError as exc:
            raise RowStoreError(f"Unable to delete rows from {config.name}: {exc}") from exc
        logger.info("Deleted rows %s from %s", ordered, config.name)

    def _sheet_id(self, title: str) -> int:
        cached = self._sheet_ids.get(title)
        if cached is not None:
            return cached
        try:
            response = (
                self._service.spreadsheets()
                .get(spreadsheetId=self._spreadsheet_id, fields="sheets.properties")
                .execute()
            )
        except HttpError as exc:
            raise RowStoreError(f"Unable to read spreadsheet metadata: {exc}") from exc
        for sheet in response.get("sheets", []):
            properties = sheet.get("properties", {})
            self._sheet_ids[properties.get("title", "")] = int(properties.get("sheetId", 0))
        sheet_id: Optional[int] = self._sheet_ids.get(title)
        if sheet_id is None:
            raise RowStoreError(f"Worksheet {title!r} not found in spreadsheet")
        return sheet_id


__all__ = [
    "Row",
    "RowStore",
    "RowStoreError",
    "SheetsRowStore",
    "a1_cell",
    "a1_open_range",
    "a1_row_range",
    "build_sheets_service",
    "column_letter",
    "quote_title",
]
