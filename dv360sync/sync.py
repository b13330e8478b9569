"""Two-way synchronisation between a worksheet and DV360.

A sync pass reads every data row of one worksheet, decides per row whether
it describes a new entity, an edit or a deletion, and drives the matching
:class:`~dv360sync.resources.ResourceClient` call. The outcome of each row is
written back into the row itself: the API's view of the entity, the
``API_DATA`` snapshot used to detect the next edit, and a status in ``LOGS``.

Row classification::

    API_DATA == "DELETE" or ACTION == "DELETE"   -> DELETE
    no API_DATA and no identifier                -> CREATE
    otherwise                                    -> MODIFY (skipped when unchanged)

Rows are handled in that order of groups: creates, updates, deletes. Deleted
rows are removed from the sheet only after every other row was written, from
the bottom up, so row numbers stay valid throughout the pass.

A failure in one row is recorded in that row's ``LOGS`` cell and the pass
moves on. Failures of the row store itself end the pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from dv360sync.codec import (
    ACTION_FIELD,
    DELETE_MARKER,
    LOGS_FIELD,
    RAW_DATA_FIELD,
    TARGETING_OPTIONS_FIELD,
    EntityCodec,
    cell_value,
    default_headers,
    format_targeting_options,
    parse_targeting_options,
)
from dv360sync.credentials import load_credentials
from dv360sync.entities import AssignedTargetingOption, Resource, resource_type
from dv360sync.logging_config import configure_logging
from dv360sync.patch_mask import compute_mask
from dv360sync.resources import ClientRegistry, ResourceClient, build_registry
from dv360sync.row_store import Row, RowStore, RowStoreError, SheetsRowStore, build_sheets_service
from dv360sync.settings import SheetConfig, SyncSettings, load_sync_settings, sheet_config
from dv360sync.targeting import TargetingOptionReconciler
from dv360sync.transport import BackoffController, HttpTransport

logger = logging.getLogger(__name__)

STATUS_OK = "OK"
STATUS_DELETED = "DELETED"
STATUS_UNCHANGED = "UNCHANGED"

LogCallback = Callable[[str], None]


class ClassificationError(ValueError):
    """Raised when a row's cells do not describe exactly one action."""


class RowAction(Enum):
    CREATE = "CREATE"
    MODIFY = "MODIFY"
    DELETE = "DELETE"


def classify_row(raw_data: str, action: str, identifier: str) -> RowAction:
    """Return the action for a row from its ``API_DATA``, ``ACTION`` and id cells."""

    explicit: Optional[RowAction] = None
    if action:
        try:
            explicit = RowAction(action.strip().upper())
        except ValueError:
            raise ClassificationError(f"Unknown {ACTION_FIELD} {action!r}") from None

    if raw_data == DELETE_MARKER or explicit is RowAction.DELETE:
        if explicit is not None and explicit is not RowAction.DELETE:
            raise ClassificationError(f"{RAW_DATA_FIELD} requests DELETE but {ACTION_FIELD} is {explicit.value}")
        if not identifier:
            raise ClassificationError("DELETE requires an identifier")
        return RowAction.DELETE

    if not raw_data and not identifier:
        if explicit is RowAction.MODIFY:
            raise ClassificationError("MODIFY requires an identifier")
        return RowAction.CREATE

    if explicit is RowAction.CREATE:
        raise ClassificationError("CREATE requested for a row that is already synced")
    if not identifier:
        raise ClassificationError("MODIFY requires an identifier")
    return RowAction.MODIFY


@dataclass
class SyncResult:
    sheet: str
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    errors: Dict[int, str] = field(default_factory=dict)

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def ok(self) -> bool:
        return not self.errors

    def summary(self) -> str:
        return (
            f"{self.sheet}: {self.created} created, {self.updated} updated, "
            f"{self.unchanged} unchanged, {self.deleted} deleted, {self.failed} failed"
        )


@dataclass
class _PendingRow:
    row: Row
    action: RowAction
    identifier: str


@dataclass
class _SheetPass:
    """State shared by the row handlers of one sync pass."""

    config: SheetConfig
    client: ResourceClient
    codec: EntityCodec
    headers: List[str]
    params: Dict[str, str]
    result: SyncResult

    def cell(self, row: Row, field_name: str) -> str:
        return cell_value(row.values, self.headers, field_name)


class SyncOrchestrator:
    """Drive one sync or download pass per worksheet."""

    def __init__(
        self,
        store: RowStore,
        registry: ClientRegistry,
        *,
        reconciler: Optional[TargetingOptionReconciler] = None,
        log_callback: Optional[LogCallback] = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._reconciler = reconciler or TargetingOptionReconciler(registry.line_item_targeting)
        self._log_callback = log_callback

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def sync(self, config: SheetConfig) -> SyncResult:
        config.validate()
        state = _SheetPass(
            config=config,
            client=self._registry.for_kind(config.kind).for_sheet(config),
            codec=EntityCodec(config.kind),
            params=self._store.get_input_parameters(config),
            headers=self._store.read_header(config),
            result=SyncResult(sheet=config.name),
        )
        rows = [row for row in self._store.read_rows(config) if not row.is_blank()]
        self._log("Syncing %s rows of %s", len(rows), config.name)

        groups: Dict[RowAction, List[_PendingRow]] = {action: [] for action in RowAction}
        for row in rows:
            try:
                pending = self._classify(state, row)
            except ClassificationError as exc:
                self._fail(state, row, exc)
                continue
            groups[pending.action].append(pending)

        for pending in groups[RowAction.CREATE]:
            self._run_row(state, pending, self._create)
        for pending in groups[RowAction.MODIFY]:
            self._run_row(state, pending, self._modify)

        removals = [
            pending.row.index
            for pending in groups[RowAction.DELETE]
            if self._run_row(state, pending, self._delete)
        ]
        if removals:
            self._store.delete_rows(config, sorted(removals, reverse=True))

        self._log("%s", state.result.summary())
        return state.result

    def download(self, config: SheetConfig) -> int:
        """Replace the sheet's data rows with the entities listed from the API."""

        config.validate()
        client = self._registry.for_kind(config.kind).for_sheet(config)
        codec = EntityCodec(config.kind)
        params = self._store.get_input_parameters(config)
        headers = self._store.read_header(config)
        if not headers:
            headers = default_headers(config.kind)
            self._store.write_row(config, config.header_row, config.range_start_col, headers)

        entities = client.list(params)
        with_targeting = resource_type(config.kind).SUPPORTS_TARGETING and TARGETING_OPTIONS_FIELD in headers
        output: List[List[str]] = []
        for entity in entities:
            values = codec.entity_to_row(entity, headers)
            if with_targeting:
                options = self._reconciler.current_options(entity)
                if options:
                    values[headers.index(TARGETING_OPTIONS_FIELD)] = format_targeting_options(options)
            output.append(values)

        self._store.clear(config)
        self._store.append_rows(config, output)
        self._log("Downloaded %s entities into %s", len(output), config.name)
        return len(output)

    # ------------------------------------------------------------------
    # Row handlers
    # ------------------------------------------------------------------
    def _classify(self, state: _SheetPass, row: Row) -> _PendingRow:
        identifier = self._identifier(state, row)
        action = classify_row(state.cell(row, RAW_DATA_FIELD), state.cell(row, ACTION_FIELD), identifier)
        return _PendingRow(row=row, action=action, identifier=identifier)

    def _identifier(self, state: _SheetPass, row: Row) -> str:
        """Return the row's primary id from its column, else from ``API_DATA``.

        Sheets without a header for the id fall back to ``primary_id_col``.
        """

        id_field = state.client.primary_id_field
        if id_field in state.headers:
            identifier = state.cell(row, id_field)
        else:
            offset = state.config.primary_id_col - state.config.range_start_col
            identifier = str(row.values[offset]).strip() if 0 <= offset < len(row.values) else ""
        if identifier:
            return identifier
        recorded = state.codec.raw_entity(row.values, state.headers)
        if recorded is not None and recorded.primary_id:
            return recorded.primary_id
        return ""

    def _entity_for(self, state: _SheetPass, pending: _PendingRow) -> Tuple[Optional[Resource], Resource]:
        """Return the recorded snapshot and the row laid over it."""

        recorded = state.codec.raw_entity(pending.row.values, state.headers)
        entity = state.codec.row_to_entity(pending.row.values, state.headers, base=recorded)
        entity[state.client.primary_id_field] = pending.identifier
        _fill_parameters(entity, state.params)
        return recorded, entity

    def _create(self, state: _SheetPass, pending: _PendingRow) -> None:
        desired = self._desired_targeting(state, pending.row)
        entity = state.codec.row_to_entity(pending.row.values, state.headers)
        _fill_parameters(entity, state.params)
        created = state.client.create(entity)
        self._log("Created %s %s", state.config.kind.value, created.primary_id)
        self._write_back(state, pending.row, created)
        state.result.created += 1
        self._apply_targeting(state, pending.row, created, desired)

    def _modify(self, state: _SheetPass, pending: _PendingRow) -> None:
        desired = self._desired_targeting(state, pending.row)
        recorded, entity = self._entity_for(state, pending)
        explicit = state.cell(pending.row, ACTION_FIELD).upper() == RowAction.MODIFY.value
        if (
            recorded is not None
            and not explicit
            and desired is None
            and not compute_mask(recorded, entity, state.client.primary_id_field)
        ):
            self._set_status(state, pending.row, STATUS_UNCHANGED)
            state.result.unchanged += 1
            return

        updated = state.client.update(entity)
        self._log("Updated %s %s", state.config.kind.value, updated.primary_id)
        self._write_back(state, pending.row, updated)
        state.result.updated += 1
        self._apply_targeting(state, pending.row, updated, desired)

    def _delete(self, state: _SheetPass, pending: _PendingRow) -> None:
        _, entity = self._entity_for(state, pending)
        state.client.delete(entity)
        self._log("Deleted %s %s", state.config.kind.value, pending.identifier)
        self._set_status(state, pending.row, STATUS_DELETED)
        state.result.deleted += 1

    def _desired_targeting(self, state: _SheetPass, row: Row) -> Optional[List[AssignedTargetingOption]]:
        """Parse the row's targeting options; ``None`` leaves targeting untouched."""

        if not resource_type(state.config.kind).SUPPORTS_TARGETING:
            return None
        cell = state.cell(row, TARGETING_OPTIONS_FIELD)
        if not cell:
            return None
        return parse_targeting_options(cell)

    def _apply_targeting(
        self,
        state: _SheetPass,
        row: Row,
        entity: Resource,
        desired: Optional[List[AssignedTargetingOption]],
    ) -> None:
        """Reconcile targeting of an entity already written back to its row.

        A failure is recorded in ``LOGS`` without undoing the row's write-back.
        """

        if desired is None:
            return
        try:
            options = self._reconciler.synchronize(entity, desired)
        except RowStoreError:
            raise
        except Exception as exc:  # the entity itself is saved
            self._fail(state, row, exc, prefix="Targeting failed: ")
            return
        column = state.config.range_start_col + state.headers.index(TARGETING_OPTIONS_FIELD)
        self._store.write_row(state.config, row.index, column, [format_targeting_options(options)])

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _run_row(
        self,
        state: _SheetPass,
        pending: _PendingRow,
        handler: Callable[[_SheetPass, _PendingRow], None],
    ) -> bool:
        try:
            handler(state, pending)
        except RowStoreError:
            raise
        except Exception as exc:  # recorded in the row's LOGS cell
            self._fail(state, pending.row, exc)
            return False
        return True

    def _fail(self, state: _SheetPass, row: Row, exc: Exception, prefix: str = "") -> None:
        message = prefix + (str(exc) or type(exc).__name__)
        logger.warning("Row %s of %s failed: %s", row.index, state.config.name, message)
        self._notify(f"Row {row.index}: {message}")
        state.result.errors[row.index] = message
        self._set_status(state, row, message)

    def _write_back(self, state: _SheetPass, row: Row, entity: Resource) -> None:
        """Write the API's view of ``entity`` over the row, keeping its targeting cell."""

        headers = state.headers
        values = state.codec.entity_to_row(entity, headers)
        if TARGETING_OPTIONS_FIELD in headers:
            values[headers.index(TARGETING_OPTIONS_FIELD)] = state.cell(row, TARGETING_OPTIONS_FIELD)
        if LOGS_FIELD in headers:
            values[headers.index(LOGS_FIELD)] = STATUS_OK
        self._store.write_row(state.config, row.index, state.config.range_start_col, values)

    def _set_status(self, state: _SheetPass, row: Row, status: str) -> None:
        if LOGS_FIELD not in state.headers:
            return
        column = state.config.range_start_col + state.headers.index(LOGS_FIELD)
        self._store.write_row(state.config, row.index, column, [status])

    def _log(self, message: str, *args: object) -> None:
        logger.info(message, *args)
        self._notify(message % args if args else message)

    def _notify(self, message: str) -> None:
        if self._log_callback is None:
            return
        try:
            self._log_callback(message)
        except Exception:  # pragma: no cover - UI callback failure
            logger.exception("Sync log callback failed")


def _fill_parameters(entity: Resource, params: Mapping[str, str]) -> None:
    """Copy sheet-level parameters into fields the entity declares but lacks."""

    for name, value in params.items():
        if name in entity.FIELDS and entity.get(name) in (None, ""):
            entity[name] = value


def build_orchestrator(
    settings: Optional[SyncSettings] = None,
    *,
    log_callback: Optional[LogCallback] = None,
) -> SyncOrchestrator:
    """Wire credentials, transport, row store and clients from ``settings``."""

    configure_logging()
    settings = settings or load_sync_settings()
    credentials = load_credentials(settings.credential_path, token_path=settings.token_path)
    transport = HttpTransport(
        credentials,
        api_endpoint=settings.api_endpoint,
        api_version=settings.api_version,
        max_pages=settings.max_pages,
        timeout=settings.request_timeout,
        backoff=BackoffController(attempts=settings.retry_attempts),
    )
    store = SheetsRowStore(build_sheets_service(credentials), settings.spreadsheet_id)
    return SyncOrchestrator(store, build_registry(transport), log_callback=log_callback)


def run_sync(sheet: str, settings: Optional[SyncSettings] = None) -> SyncResult:
    """Sync the worksheet named ``sheet`` (key such as ``LINE_ITEMS`` or title)."""

    return build_orchestrator(settings).sync(sheet_config(sheet))


def run_download(sheet: str, settings: Optional[SyncSettings] = None) -> int:
    return build_orchestrator(settings).download(sheet_config(sheet))


def run_all(settings: Optional[SyncSettings] = None) -> Tuple[SyncResult, ...]:
    settings = settings or load_sync_settings()
    orchestrator = build_orchestrator(settings)
    return tuple(orchestrator.sync(config) for config in settings.sheet_configs())


__all__ = [
    "ClassificationError",
    "RowAction",
    "STATUS_DELETED",
    "STATUS_OK",
    "STATUS_UNCHANGED",
    "SyncOrchestrator",
    "SyncResult",
    "build_orchestrator",
    "classify_row",
    "run_all",
    "run_download",
    "run_sync",
]
