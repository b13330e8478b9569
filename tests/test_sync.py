from __future__ import annotations

import copy
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from dv360sync.codec import ACTION_FIELD, LOGS_FIELD, RAW_DATA_FIELD, TARGETING_OPTIONS_FIELD, default_headers
from dv360sync.entities import ENTITY_STATUS_ARCHIVED, ResourceKind
from dv360sync.resources import build_registry
from dv360sync.row_store import Row
from dv360sync.settings import SHEET_CONFIGS, ConfigurationError, SheetConfig
from dv360sync.sync import ClassificationError, RowAction, SyncOrchestrator, classify_row
from dv360sync.transport import ApiResponseError

CAMPAIGNS = SHEET_CONFIGS["CAMPAIGNS"]
LINE_ITEMS = SHEET_CONFIGS["LINE_ITEMS"]
CAMPAIGN_HEADERS = [RAW_DATA_FIELD, LOGS_FIELD, ACTION_FIELD, "campaignId", "advertiserId", "displayName"]


class _MemoryStore:
    def __init__(self, headers: Sequence[str], rows: Dict[int, List[str]], params: Dict[str, str]) -> None:
        self.headers = list(headers)
        self.rows = {index: list(values) for index, values in rows.items()}
        self.params = dict(params)
        self.writes: List[Tuple[int, int, List[str]]] = []
        self.deleted: List[List[int]] = []
        self.appended: List[List[str]] = []
        self.cleared = 0

    def get_input_parameters(self, config: SheetConfig) -> Dict[str, str]:
        return dict(self.params)

    def read_header(self, config: SheetConfig) -> List[str]:
        return list(self.headers)

    def read_rows(self, config: SheetConfig) -> List[Row]:
        width = len(self.headers)
        return [
            Row(index, list(values) + [""] * (width - len(values)))
            for index, values in sorted(self.rows.items())
        ]

    def write_row(self, config: SheetConfig, row_index: int, col_index: int, values: Sequence[str]) -> None:
        self.writes.append((row_index, col_index, list(values)))
        if row_index == config.header_row:
            self.headers = list(values)
            return
        row = self.rows.setdefault(row_index, [])
        end = col_index - 1 + len(values)
        row.extend([""] * (end - len(row)))
        row[col_index - 1 : end] = list(values)

    def append_rows(self, config: SheetConfig, rows: Sequence[Sequence[str]]) -> None:
        self.appended.extend(list(row) for row in rows)

    def delete_rows(self, config: SheetConfig, row_indexes: Sequence[int]) -> None:
        self.deleted.append(list(row_indexes))
        for index in row_indexes:
            del self.rows[index]

    def clear(self, config: SheetConfig) -> None:
        self.cleared += 1
        self.rows.clear()

    def cell(self, row_index: int, header: str) -> str:
        return self.rows[row_index][self.headers.index(header)]


class _FakeTransport:
    """Answers from a ``(method, uri)`` table; PATCH echoes its body by default."""

    def __init__(self, responses: Dict[Tuple[str, str], Any] | None = None) -> None:
        self.responses = dict(responses or {})
        self.calls: List[Tuple[str, str, Any]] = []

    def _answer(self, method: str, uri: str, payload: Any = None) -> Any:
        self.calls.append((method, uri, copy.deepcopy(payload)))
        if (method, uri) not in self.responses:
            return copy.deepcopy(payload) if method == "PATCH" else {}
        answer = self.responses[(method, uri)]
        if callable(answer):
            return answer(payload)
        return copy.deepcopy(answer)

    def get_pages(self, uri: str):
        for page in self._answer("PAGES", uri) or []:
            yield page

    def get(self, uri: str):
        return self._answer("GET", uri)

    def post(self, uri: str, payload):
        return self._answer("POST", uri, payload)

    def patch(self, uri: str, payload):
        return self._answer("PATCH", uri, payload)

    def delete(self, uri: str):
        return self._answer("DELETE", uri)

    def methods(self) -> List[Tuple[str, str]]:
        return [(method, uri) for method, uri, _ in self.calls]


def _orchestrator(store: _MemoryStore, transport: _FakeTransport, messages: List[str] | None = None) -> SyncOrchestrator:
    callback = messages.append if messages is not None else None
    return SyncOrchestrator(store, build_registry(transport), log_callback=callback)


def test_classify_row_states() -> None:
    assert classify_row("", "", "") is RowAction.CREATE
    assert classify_row("", "CREATE", "") is RowAction.CREATE
    assert classify_row('{"campaignId":"1"}', "", "1") is RowAction.MODIFY
    assert classify_row('{"campaignId":"1"}', "modify", "1") is RowAction.MODIFY
    assert classify_row("DELETE", "", "1") is RowAction.DELETE
    assert classify_row('{"campaignId":"1"}', "DELETE", "1") is RowAction.DELETE


@pytest.mark.parametrize(
    "raw_data, action, identifier",
    [
        ("DELETE", "MODIFY", "1"),
        ('{"campaignId":"1"}', "CREATE", "1"),
        ("", "MODIFY", ""),
        ("DELETE", "", ""),
        ('{"displayName":"x"}', "", ""),
        ("", "ARCHIVE", ""),
    ],
)
def test_classify_row_rejects_ambiguous_rows(raw_data: str, action: str, identifier: str) -> None:
    with pytest.raises(ClassificationError):
        classify_row(raw_data, action, identifier)


def test_new_row_is_created_and_written_back() -> None:
    store = _MemoryStore(CAMPAIGN_HEADERS, {5: ["", "", "", "", "", "Brand"]}, {"advertiserId": "1"})
    created = {"advertiserId": "1", "campaignId": "99", "displayName": "Brand"}
    transport = _FakeTransport({("POST", "advertisers/1/campaigns"): created})
    messages: List[str] = []

    result = _orchestrator(store, transport, messages).sync(CAMPAIGNS)

    assert result.created == 1 and result.ok
    assert transport.calls == [("POST", "advertisers/1/campaigns", {"displayName": "Brand", "advertiserId": "1"})]
    assert store.rows[5] == [json.dumps(created, separators=(",", ":")), "OK", "", "99", "1", "Brand"]
    assert any("Created campaign 99" in message for message in messages)


def test_unchanged_row_makes_no_requests() -> None:
    raw = {"advertiserId": "1", "campaignId": "4", "displayName": "Same"}
    store = _MemoryStore(CAMPAIGN_HEADERS, {5: [json.dumps(raw), "OK", "", "4", "1", "Same"]}, {"advertiserId": "1"})
    transport = _FakeTransport()

    result = _orchestrator(store, transport).sync(CAMPAIGNS)

    assert result.unchanged == 1
    assert transport.calls == []
    assert store.cell(5, LOGS_FIELD) == "UNCHANGED"


def test_edited_row_is_patched_with_recorded_fields_kept() -> None:
    raw = {"advertiserId": "1", "campaignId": "4", "displayName": "Old", "entityStatus": "ENTITY_STATUS_ACTIVE"}
    store = _MemoryStore(CAMPAIGN_HEADERS, {5: [json.dumps(raw), "", "", "4", "1", "New"]}, {"advertiserId": "1"})
    transport = _FakeTransport({("GET", "advertisers/1/campaigns/4"): raw})

    result = _orchestrator(store, transport).sync(CAMPAIGNS)

    assert result.updated == 1
    method, uri, body = transport.calls[-1]
    assert (method, uri) == ("PATCH", "advertisers/1/campaigns/4?updateMask=displayName")
    assert body == dict(raw, displayName="New")
    assert store.cell(5, LOGS_FIELD) == "OK"
    assert json.loads(store.cell(5, RAW_DATA_FIELD))["displayName"] == "New"


def test_deleted_rows_are_removed_last_in_descending_order() -> None:
    active = {"advertiserId": "1", "entityStatus": "ENTITY_STATUS_ACTIVE"}
    unchanged = {"advertiserId": "1", "campaignId": "4", "displayName": "Keep"}
    store = _MemoryStore(
        CAMPAIGN_HEADERS,
        {
            5: ["DELETE", "", "", "2", "", "Gone"],
            6: [json.dumps(unchanged), "", "", "4", "1", "Keep"],
            7: [json.dumps({"advertiserId": "1", "campaignId": "3"}), "", "DELETE", "3", "1", ""],
        },
        {"advertiserId": "1"},
    )
    transport = _FakeTransport(
        {
            ("GET", "advertisers/1/campaigns/2"): dict(active, campaignId="2", displayName="Gone"),
            ("GET", "advertisers/1/campaigns/3"): dict(active, campaignId="3"),
        }
    )

    result = _orchestrator(store, transport).sync(CAMPAIGNS)

    assert result.deleted == 2 and result.unchanged == 1
    assert store.deleted == [[7, 5]]
    assert list(store.rows) == [6]
    assert transport.methods() == [
        ("GET", "advertisers/1/campaigns/2"),
        ("PATCH", "advertisers/1/campaigns/2?updateMask=entityStatus"),
        ("DELETE", "advertisers/1/campaigns/2"),
        ("GET", "advertisers/1/campaigns/3"),
        ("PATCH", "advertisers/1/campaigns/3?updateMask=entityStatus"),
        ("DELETE", "advertisers/1/campaigns/3"),
    ]
    assert all(body["entityStatus"] == ENTITY_STATUS_ARCHIVED for method, _, body in transport.calls if method == "PATCH")
    assert (5, 2, ["DELETED"]) in store.writes


def test_failing_rows_are_logged_and_others_continue() -> None:
    def create(payload):
        if payload["displayName"] == "Bad":
            raise ApiResponseError(400, '{"error":{"message":"invalid"}}')
        return dict(payload, campaignId="77")

    store = _MemoryStore(
        CAMPAIGN_HEADERS,
        {
            5: ["", "", "", "", "", "Bad"],
            6: [json.dumps({"campaignId": "1"}), "", "CREATE", "1", "1", "Ambiguous"],
            7: ["", "", "", "", "", "Good"],
            8: ["", "", "", "", "", ""],
        },
        {"advertiserId": "1"},
    )
    transport = _FakeTransport({("POST", "advertisers/1/campaigns"): create})

    result = _orchestrator(store, transport).sync(CAMPAIGNS)

    assert result.created == 1
    assert set(result.errors) == {5, 6}
    assert store.cell(5, LOGS_FIELD) == '{"error":{"message":"invalid"}}'
    assert "already synced" in store.cell(6, LOGS_FIELD)
    assert store.cell(7, "campaignId") == "77"
    assert store.rows[8] == ["", "", "", "", "", ""]


def test_line_item_targeting_options_are_reconciled_after_create() -> None:
    headers = [RAW_DATA_FIELD, LOGS_FIELD, ACTION_FIELD, "lineItemId", "displayName", TARGETING_OPTIONS_FIELD]
    desired = [{"targetingType": "TARGETING_TYPE_BROWSER", "browserDetails": {"targetingOptionId": "500"}}]
    created_option = dict(desired[0], assignedTargetingOptionId="500", name="x/500")
    store = _MemoryStore(
        headers,
        {5: ["", "", "", "", "LI", json.dumps(desired)]},
        {"advertiserId": "1", "campaignId": "2", "insertionOrderId": "3"},
    )
    transport = _FakeTransport(
        {
            ("POST", "advertisers/1/lineItems"): lambda body: dict(body, lineItemId="50"),
            ("PAGES", "advertisers/1/lineItems/50:bulkListLineItemAssignedTargetingOptions"): [{}],
            ("POST", "advertisers/1/lineItems/50:bulkEditLineItemAssignedTargetingOptions"): {
                "createdAssignedTargetingOptions": [created_option]
            },
        }
    )

    result = _orchestrator(store, transport).sync(LINE_ITEMS)

    assert result.created == 1 and result.ok
    create_body = transport.calls[0][2]
    assert create_body == {"displayName": "LI", "advertiserId": "1", "campaignId": "2", "insertionOrderId": "3"}
    edit_body = transport.calls[-1][2]
    assert edit_body == {
        "deleteRequests": [],
        "createRequests": [{"targetingType": "TARGETING_TYPE_BROWSER", "assignedTargetingOptions": desired}],
    }
    assert json.loads(store.cell(5, TARGETING_OPTIONS_FIELD)) == [created_option]
    assert store.cell(5, "lineItemId") == "50"


def test_download_replaces_rows_with_listed_entities() -> None:
    store = _MemoryStore(CAMPAIGN_HEADERS, {5: ["stale"]}, {"advertiserId": "1"})
    transport = _FakeTransport(
        {
            ("PAGES", "advertisers/1/campaigns"): [
                {"campaigns": [{"advertiserId": "1", "campaignId": "2", "displayName": "A"}], "nextPageToken": "x"},
                {"campaigns": [{"advertiserId": "1", "campaignId": "3", "displayName": "B"}]},
            ]
        }
    )

    count = _orchestrator(store, transport).download(CAMPAIGNS)

    assert count == 2
    assert store.cleared == 1
    assert [row[3:] for row in store.appended] == [["2", "1", "A"], ["3", "1", "B"]]


def test_download_writes_default_headers_for_empty_sheet() -> None:
    store = _MemoryStore([], {}, {"advertiserId": "1", "campaignId": "2", "insertionOrderId": "3"})
    line_item = {"advertiserId": "1", "lineItemId": "50", "displayName": "LI"}
    option = {"assignedTargetingOptionId": "9", "targetingType": "TARGETING_TYPE_BROWSER"}
    transport = _FakeTransport(
        {
            ("PAGES", "advertisers/1/lineItems?filter=campaignId%3D2%20AND%20insertionOrderId%3D3"): [
                {"lineItems": [line_item]}
            ],
            ("PAGES", "advertisers/1/lineItems/50:bulkListLineItemAssignedTargetingOptions"): [
                {"assignedTargetingOptions": [option]}
            ],
        }
    )

    _orchestrator(store, transport).download(LINE_ITEMS)

    assert store.headers == default_headers(ResourceKind.LINE_ITEM)
    row = store.appended[0]
    assert json.loads(row[store.headers.index(TARGETING_OPTIONS_FIELD)]) == [option]
    assert row[store.headers.index("lineItemId")] == "50"


def test_invalid_config_stops_the_pass() -> None:
    store = _MemoryStore(CAMPAIGN_HEADERS, {}, {})
    broken = SheetConfig("Broken", ResourceKind.CAMPAIGN, "", "campaigns", {"advertiserId": "C1"})

    with pytest.raises(ConfigurationError):
        _orchestrator(store, _FakeTransport()).sync(broken)


def test_created_line_item_is_written_back_when_targeting_fails() -> None:
    headers = [RAW_DATA_FIELD, LOGS_FIELD, ACTION_FIELD, "lineItemId", "displayName", TARGETING_OPTIONS_FIELD]
    desired = [{"targetingType": "TARGETING_TYPE_BROWSER", "browserDetails": {"targetingOptionId": "500"}}]

    def rejected_edit(body):
        raise ApiResponseError(400, "bad targeting")

    store = _MemoryStore(
        headers,
        {5: ["", "", "", "", "LI", json.dumps(desired)]},
        {"advertiserId": "1", "campaignId": "2", "insertionOrderId": "3"},
    )
    transport = _FakeTransport(
        {
            ("POST", "advertisers/1/lineItems"): lambda body: dict(body, lineItemId="50"),
            ("PAGES", "advertisers/1/lineItems/50:bulkListLineItemAssignedTargetingOptions"): [{}],
            ("POST", "advertisers/1/lineItems/50:bulkEditLineItemAssignedTargetingOptions"): rejected_edit,
        }
    )
    orchestrator = _orchestrator(store, transport)

    result = orchestrator.sync(LINE_ITEMS)

    assert result.created == 1
    assert result.errors == {5: "Targeting failed: bad targeting"}
    assert store.cell(5, "lineItemId") == "50"
    assert json.loads(store.cell(5, RAW_DATA_FIELD))["lineItemId"] == "50"
    assert store.cell(5, LOGS_FIELD) == "Targeting failed: bad targeting"
    assert json.loads(store.cell(5, TARGETING_OPTIONS_FIELD)) == desired

    orchestrator.sync(LINE_ITEMS)

    creates = [call for call in transport.methods() if call == ("POST", "advertisers/1/lineItems")]
    assert len(creates) == 1


def test_malformed_targeting_cell_fails_before_any_request() -> None:
    headers = [RAW_DATA_FIELD, LOGS_FIELD, ACTION_FIELD, "lineItemId", "displayName", TARGETING_OPTIONS_FIELD]
    store = _MemoryStore(
        headers,
        {5: ["", "", "", "", "LI", '{"not": "a list"}']},
        {"advertiserId": "1", "campaignId": "2", "insertionOrderId": "3"},
    )
    transport = _FakeTransport()

    result = _orchestrator(store, transport).sync(LINE_ITEMS)

    assert result.created == 0
    assert TARGETING_OPTIONS_FIELD in result.errors[5]
    assert transport.calls == []


def test_downloaded_boolean_fields_sync_as_unchanged() -> None:
    creatives = SHEET_CONFIGS["CREATIVES"]
    headers = [RAW_DATA_FIELD, LOGS_FIELD, ACTION_FIELD, "creativeId", "displayName", "requireHtml5", "skipOffset"]
    creative = {
        "advertiserId": "1",
        "creativeId": "7",
        "displayName": "Banner",
        "requireHtml5": True,
        "skipOffset": {"percentage": "10"},
    }
    listing = _FakeTransport(
        {("PAGES", "advertisers/1/creatives?filter=campaignId%3D2"): [{"creatives": [creative]}]}
    )
    downloaded = _MemoryStore(headers, {}, {"advertiserId": "1", "campaignId": "2"})
    _orchestrator(downloaded, listing).download(creatives)

    row = downloaded.appended[0]
    assert row[headers.index("requireHtml5")] == "true"
    store = _MemoryStore(headers, {5: row}, {"advertiserId": "1", "campaignId": "2"})
    transport = _FakeTransport()

    result = _orchestrator(store, transport).sync(creatives)

    assert result.unchanged == 1 and result.updated == 0
    assert transport.calls == []


def test_edited_boolean_cell_is_sent_as_boolean() -> None:
    creatives = SHEET_CONFIGS["CREATIVES"]
    headers = [RAW_DATA_FIELD, LOGS_FIELD, ACTION_FIELD, "creativeId", "requireHtml5"]
    recorded = {"advertiserId": "1", "creativeId": "7", "requireHtml5": True}
    store = _MemoryStore(headers, {5: [json.dumps(recorded), "", "", "7", "FALSE"]}, {"advertiserId": "1"})
    transport = _FakeTransport({("GET", "advertisers/1/creatives/7"): recorded})

    _orchestrator(store, transport).sync(creatives)

    method, uri, body = transport.calls[-1]
    assert (method, uri) == ("PATCH", "advertisers/1/creatives/7?updateMask=requireHtml5")
    assert body["requireHtml5"] is False


def test_sheet_config_uri_and_list_field_reach_the_transport() -> None:
    custom = SheetConfig(
        "Custom Campaigns",
        ResourceKind.CAMPAIGN,
        "partners/${advertiserId}/customCampaigns?view=full",
        "items",
        {"advertiserId": "C1"},
        "entityStatus=ENTITY_STATUS_ACTIVE",
    )
    store = _MemoryStore(CAMPAIGN_HEADERS, {}, {"advertiserId": "1"})
    transport = _FakeTransport(
        {
            ("PAGES", "partners/1/customCampaigns?view=full&filter=entityStatus%3DENTITY_STATUS_ACTIVE"): [
                {"items": [{"advertiserId": "1", "campaignId": "2", "displayName": "A"}]}
            ],
            ("POST", "partners/1/customCampaigns"): {"advertiserId": "1", "campaignId": "3", "displayName": "B"},
        }
    )
    orchestrator = _orchestrator(store, transport)

    assert orchestrator.download(custom) == 1
    store.rows[5] = ["", "", "", "", "", "B"]
    orchestrator.sync(custom)

    assert ("POST", "partners/1/customCampaigns") in transport.methods()
    assert store.cell(5, "campaignId") == "3"
