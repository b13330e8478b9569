"""Configuration for DV360 Sync: sheet layouts and the sync settings file."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from dv360sync import app_paths
from dv360sync.entities import ResourceKind
from dv360sync.transport import DEFAULT_API_ENDPOINT, DEFAULT_API_VERSION, DEFAULT_TIMEOUT


logger = logging.getLogger(__name__)


SYNC_SETTINGS_PATH = str(app_paths.APP_DIR / "sync_settings.json")
DEFAULT_SPREADSHEET_ID = os.getenv("DV360SYNC_SPREADSHEET_ID", "")
DEFAULT_CREDENTIALS_PATH = os.getenv(
    "DV360SYNC_CREDENTIALS_PATH",
    str(app_paths.CREDENTIALS_DIR / "service_account.json"),
)
DEFAULT_TOKEN_PATH = str(app_paths.CREDENTIALS_DIR / "token.json")
DEFAULT_RETRY_ATTEMPTS = 5


class ConfigurationError(ValueError):
    """Raised when a sheet configuration or settings file is unusable."""


@dataclass
class SheetConfig:
    """Layout of one worksheet and the entities it holds.

    ``input_cells`` maps parameter names (``advertiserId``) to the A1 cell
    holding their value. ``filter`` narrows list requests; its placeholders
    are resolved from the same parameters. Row and column numbers are 1-based.
    """

    name: str
    kind: ResourceKind
    uri: str
    api_field_name: str
    input_cells: Dict[str, str]
    filter: str = ""
    header_row: int = 4
    range_start_row: int = 5
    range_start_col: int = 1
    primary_id_col: int = 2

    def validate(self) -> "SheetConfig":
        missing = [
            label
            for label, value in (
                ("name", self.name),
                ("uri", self.uri),
                ("api_field_name", self.api_field_name),
                ("input_cells", self.input_cells),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Incorrect sheet config, missing: {', '.join(missing)}")
        if not isinstance(self.kind, ResourceKind):
            raise ConfigurationError(f"Sheet {self.name!r} has no resource kind")
        if self.header_row < 1 or self.range_start_col < 1 or self.primary_id_col < 1:
            raise ConfigurationError(f"Sheet {self.name!r} uses row/column numbers below 1")
        if self.range_start_row <= self.header_row:
            raise ConfigurationError(f"Sheet {self.name!r} data range must start below the header row")
        return self


SHEET_CONFIGS: Dict[str, SheetConfig] = {
    "ADVERTISERS": SheetConfig(
        "Advertisers",
        ResourceKind.ADVERTISER,
        "advertisers?partnerId=${partnerId}",
        "advertisers",
        {"partnerId": "B1"},
    ),
    "CAMPAIGNS": SheetConfig(
        "Campaigns",
        ResourceKind.CAMPAIGN,
        "advertisers/${advertiserId}/campaigns",
        "campaigns",
        {"advertiserId": "C1"},
    ),
    "INSERTION_ORDERS": SheetConfig(
        "Insertion Orders",
        ResourceKind.INSERTION_ORDER,
        "advertisers/${advertiserId}/insertionOrders",
        "insertionOrders",
        {"advertiserId": "C1", "campaignId": "C2"},
        "campaignId=${campaignId}",
    ),
    "LINE_ITEMS": SheetConfig(
        "Line Items",
        ResourceKind.LINE_ITEM,
        "advertisers/${advertiserId}/lineItems",
        "lineItems",
        {"advertiserId": "C1", "campaignId": "C2", "insertionOrderId": "C3"},
        "campaignId=${campaignId} AND insertionOrderId=${insertionOrderId}",
    ),
    "CREATIVES": SheetConfig(
        "Creatives",
        ResourceKind.CREATIVE,
        "advertisers/${advertiserId}/creatives",
        "creatives",
        {"advertiserId": "C1", "campaignId": "C2"},
        "campaignId=${campaignId}",
    ),
}


def sheet_config(name: str) -> SheetConfig:
    """Look up a sheet config by key (``LINE_ITEMS``) or sheet title."""

    if name in SHEET_CONFIGS:
        return SHEET_CONFIGS[name]
    for config in SHEET_CONFIGS.values():
        if config.name == name:
            return config
    raise ConfigurationError(f"No sheet config named {name!r}")


@dataclass
class SyncSettings:
    spreadsheet_id: str = DEFAULT_SPREADSHEET_ID
    credential_path: str = DEFAULT_CREDENTIALS_PATH
    token_path: str = DEFAULT_TOKEN_PATH
    api_endpoint: str = DEFAULT_API_ENDPOINT
    api_version: str = DEFAULT_API_VERSION
    max_pages: Optional[int] = None
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    request_timeout: int = DEFAULT_TIMEOUT
    sheets: List[str] = field(default_factory=lambda: list(SHEET_CONFIGS))

    def sheet_configs(self) -> List[SheetConfig]:
        return [sheet_config(name) for name in self.sheets]

    def to_json(self) -> Dict[str, object]:
        return {
            "spreadsheet_id": self.spreadsheet_id,
            "credential_path": self.credential_path,
            "token_path": self.token_path,
            "api_endpoint": self.api_endpoint,
            "api_version": self.api_version,
            "max_pages": self.max_pages,
            "retry_attempts": self.retry_attempts,
            "request_timeout": self.request_timeout,
            "sheets": list(self.sheets),
        }


def _clamped_int(value: object, default: int, low: int, high: int) -> int:
    try:
        return max(low, min(high, int(value)))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _read_settings_file(path: str) -> Dict[str, object]:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Settings file {path} is not valid JSON: {exc.msg}") from exc
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Settings file {path} must contain a JSON object")
    return dict(data)


def load_sync_settings(path: str = SYNC_SETTINGS_PATH) -> SyncSettings:
    """Read the settings file, filling gaps with defaults.

    ``DV360SYNC_SPREADSHEET_ID`` and ``DV360SYNC_CREDENTIALS_PATH`` take
    precedence over the file. Numeric values are clamped to sane ranges.
    """

    data = _read_settings_file(path)
    settings = SyncSettings()

    for key in ("spreadsheet_id", "credential_path", "token_path", "api_endpoint", "api_version"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            setattr(settings, key, value.strip())

    max_pages = data.get("max_pages")
    if max_pages is not None:
        settings.max_pages = _clamped_int(max_pages, 0, 1, 10000) or None
    settings.retry_attempts = _clamped_int(data.get("retry_attempts", DEFAULT_RETRY_ATTEMPTS), DEFAULT_RETRY_ATTEMPTS, 1, 10)
    settings.request_timeout = _clamped_int(data.get("request_timeout", DEFAULT_TIMEOUT), DEFAULT_TIMEOUT, 5, 600)

    sheets = data.get("sheets")
    if isinstance(sheets, list):
        known = [name for name in sheets if isinstance(name, str) and name in SHEET_CONFIGS]
        unknown = [name for name in sheets if name not in known]
        if unknown:
            logger.warning("Ignoring unknown sheets in %s: %s", path, unknown)
        settings.sheets = known

    env_spreadsheet = os.getenv("DV360SYNC_SPREADSHEET_ID")
    if env_spreadsheet:
        settings.spreadsheet_id = env_spreadsheet
    env_credentials = os.getenv("DV360SYNC_CREDENTIALS_PATH")
    if env_credentials:
        settings.credential_path = env_credentials
    return settings


def save_sync_settings(settings: SyncSettings, path: str = SYNC_SETTINGS_PATH) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(path, "w", encoding="utf-8") as handle:
        json.dump(settings.to_json(), handle, indent=2)


__all__ = [
    "ConfigurationError",
    "DEFAULT_CREDENTIALS_PATH",
    "DEFAULT_SPREADSHEET_ID",
    "SHEET_CONFIGS",
    "SYNC_SETTINGS_PATH",
    "SheetConfig",
    "SyncSettings",
    "load_sync_settings",
    "save_sync_settings",
    "sheet_config",
]
