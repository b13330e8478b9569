"""Typed DV360 resources.

Every concrete resource declares the fields of its API model and the field
holding its primary identifier. Instances wrap the JSON payload returned by
the API; undeclared fields are kept untouched so that nothing the API sends is
lost on the way to the sheet and back.
"""
from __future__ import annotations

import copy
from enum import Enum
from typing import Any, ClassVar, Dict, Iterator, List, Mapping, Optional, Tuple, Type

from dv360sync.hashing import canonical_json, content_sha256

ENTITY_STATUS_ARCHIVED = "ENTITY_STATUS_ARCHIVED"
UPDATE_TIME_FIELD = "updateTime"


class ResourceKind(Enum):
    ADVERTISER = "advertiser"
    CAMPAIGN = "campaign"
    INSERTION_ORDER = "insertionOrder"
    LINE_ITEM = "lineItem"
    CREATIVE = "creative"
    TARGETING_OPTION = "targetingOption"
    ASSIGNED_TARGETING_OPTION = "assignedTargetingOption"


class Resource:
    """Base class for a single remote entity instance."""

    KIND: ClassVar[ResourceKind]
    FIELDS: ClassVar[Tuple[str, ...]] = ()
    PRIMARY_ID_FIELD: ClassVar[str] = ""
    SUPPORTS_TARGETING: ClassVar[bool] = False

    def __init__(self, data: Optional[Mapping[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = copy.deepcopy(dict(data or {}))

    # ------------------------------------------------------------------
    # Mapping-like access
    # ------------------------------------------------------------------
    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def fields(self) -> List[str]:
        """Return the top-level field names present on this instance."""

        return list(self._data)

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)

    def copy(self) -> "Resource":
        return type(self)(self._data)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------
    @property
    def primary_id(self) -> Optional[str]:
        value = self._data.get(self.PRIMARY_ID_FIELD)
        if value in (None, ""):
            return None
        return str(value)

    def without_primary_id(self) -> "Resource":
        payload = self.to_dict()
        payload.pop(self.PRIMARY_ID_FIELD, None)
        return type(self)(payload)

    def content_hash(self) -> str:
        return content_sha256(self._data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Resource):
            return NotImplemented
        return type(self) is type(other) and canonical_json(self._data) == canonical_json(other._data)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._data!r})"


class Advertiser(Resource):
    KIND = ResourceKind.ADVERTISER
    PRIMARY_ID_FIELD = "advertiserId"
    FIELDS = (
        "name",
        "advertiserId",
        "partnerId",
        "displayName",
        "entityStatus",
        "updateTime",
        "generalConfig",
        "adServerConfig",
        "creativeConfig",
        "dataAccessConfig",
        "integrationDetails",
        "servingConfig",
    )


class Campaign(Resource):
    KIND = ResourceKind.CAMPAIGN
    PRIMARY_ID_FIELD = "campaignId"
    FIELDS = (
        "name",
        "advertiserId",
        "campaignId",
        "displayName",
        "entityStatus",
        "updateTime",
        "campaignGoal",
        "campaignFlight",
        "frequencyCap",
    )


class InsertionOrder(Resource):
    KIND = ResourceKind.INSERTION_ORDER
    PRIMARY_ID_FIELD = "insertionOrderId"
    FIELDS = (
        "name",
        "advertiserId",
        "campaignId",
        "insertionOrderId",
        "displayName",
        "insertionOrderType",
        "entityStatus",
        "updateTime",
        "partnerCosts",
        "pacing",
        "frequencyCap",
        "integrationDetails",
        "performanceGoal",
        "budget",
        "bidStrategy",
    )


class LineItem(Resource):
    KIND = ResourceKind.LINE_ITEM
    PRIMARY_ID_FIELD = "lineItemId"
    SUPPORTS_TARGETING = True
    FIELDS = (
        "name",
        "advertiserId",
        "campaignId",
        "insertionOrderId",
        "lineItemId",
        "displayName",
        "lineItemType",
        "entityStatus",
        "updateTime",
        "partnerCosts",
        "flight",
        "budget",
        "pacing",
        "frequencyCap",
        "partnerRevenueModel",
        "conversionCounting",
        "creativeIds",
        "bidStrategy",
        "integrationDetails",
        "inventorySourceIds",
        "targetingExpansion",
        "warningMessages",
        "mobileApp",
    )


class Creative(Resource):
    KIND = ResourceKind.CREATIVE
    PRIMARY_ID_FIELD = "creativeId"
    FIELDS = (
        "name",
        "advertiserId",
        "creativeId",
        "cmPlacementId",
        "displayName",
        "entityStatus",
        "updateTime",
        "createTime",
        "creativeType",
        "hostingSource",
        "dynamic",
        "dimensions",
        "additionalDimensions",
        "mediaDuration",
        "creativeAttributes",
        "reviewStatus",
        "assets",
        "exitEvents",
        "timerEvents",
        "counterEvents",
        "appendedTag",
        "integrationCode",
        "notes",
        "iasCampaignMonitoring",
        "companionCreativeIds",
        "skippable",
        "skipOffset",
        "progressOffset",
        "universalAdId",
        "thirdPartyUrls",
        "transcodes",
        "trackerUrls",
        "jsTrackerUrl",
        "cmTrackingAd",
        "obaIcon",
        "thirdPartyTag",
        "requireMraid",
        "requireHtml5",
        "requirePingForAttribution",
        "expandingDirection",
        "expandOnHover",
        "vastTagUrl",
        "vpaid",
        "html5Video",
        "lineItemIds",
        "mp3Audio",
        "oggAudio",
    )


class AssignedTargetingOption(Resource):
    KIND = ResourceKind.ASSIGNED_TARGETING_OPTION
    PRIMARY_ID_FIELD = "assignedTargetingOptionId"
    FIELDS = ("name", "assignedTargetingOptionId", "targetingType", "inheritance")

    @property
    def targeting_type(self) -> Optional[str]:
        return self._data.get("targetingType")


class TargetingOption(Resource):
    KIND = ResourceKind.TARGETING_OPTION
    PRIMARY_ID_FIELD = "targetingOptionId"
    FIELDS = ("name", "targetingOptionId", "targetingType")


RESOURCE_TYPES: Dict[ResourceKind, Type[Resource]] = {
    cls.KIND: cls
    for cls in (
        Advertiser,
        Campaign,
        InsertionOrder,
        LineItem,
        Creative,
        AssignedTargetingOption,
        TargetingOption,
    )
}


def resource_type(kind: ResourceKind) -> Type[Resource]:
    return RESOURCE_TYPES[kind]


def resource_from_dict(kind: ResourceKind, payload: Optional[Mapping[str, Any]]) -> Resource:
    """Build the typed resource for ``kind`` from a raw JSON object."""

    return RESOURCE_TYPES[kind](payload or {})


__all__ = [
    "ENTITY_STATUS_ARCHIVED",
    "RESOURCE_TYPES",
    "UPDATE_TIME_FIELD",
    "Advertiser",
    "AssignedTargetingOption",
    "Campaign",
    "Creative",
    "InsertionOrder",
    "LineItem",
    "Resource",
    "ResourceKind",
    "TargetingOption",
    "resource_from_dict",
    "resource_type",
]
