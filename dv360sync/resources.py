"""Resource clients for the DV360 API.

One :class:`ResourceClient` exists per entity kind. Clients hold no state
between calls: every request rebuilds its URI from templates and from the
fields of the entity or parameter mapping it is given.

URI shapes::

    list    <collection>[?<listQuery>][&filter=<expr>]
    single  <collection>/<primaryId>[?updateMask=<fields>]
    create  <collection>
"""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from urllib.parse import quote

from dv360sync import templates
from dv360sync.entities import (
    ENTITY_STATUS_ARCHIVED,
    AssignedTargetingOption,
    Resource,
    ResourceKind,
    resource_from_dict,
    resource_type,
)
from dv360sync.patch_mask import compute_mask
from dv360sync.settings import SheetConfig
from dv360sync.transport import HttpTransport

logger = logging.getLogger(__name__)

Params = Union[Resource, Mapping[str, Any]]


class ResourceClientError(ValueError):
    """Raised when a request URI cannot be built for an entity."""


def _as_params(params: Params) -> Dict[str, Any]:
    if isinstance(params, Resource):
        return params.to_dict()
    return dict(params or {})


class ResourceClient:
    """List/get/create/update/delete for one DV360 entity kind."""

    def __init__(
        self,
        transport: HttpTransport,
        kind: ResourceKind,
        collection: str,
        api_field_name: str,
        *,
        list_query: str = "",
        filter: str = "",
        primary_id_field: Optional[str] = None,
    ) -> None:
        self._transport = transport
        self.kind = kind
        self.collection = collection
        self.api_field_name = api_field_name
        self.list_query = list_query
        self.filter = filter
        self.primary_id_field = primary_id_field or resource_type(kind).PRIMARY_ID_FIELD

    # ------------------------------------------------------------------
    # URI construction
    # ------------------------------------------------------------------
    def list_uri(self, params: Params, filter: Optional[str] = None) -> str:
        values = _as_params(params)
        expression = self.filter if filter is None else filter
        uri = self.collection
        if self.list_query:
            uri = f"{uri}{templates.query_param_separator(uri)}{self.list_query}"
        uri = templates.resolve(uri, values)
        if expression:
            expression = templates.resolve(expression, values)
            self._warn_unresolved(expression)
            uri = templates.append_query(uri, "filter", quote(expression, safe=""))
        self._warn_unresolved(uri)
        return uri

    def collection_uri(self, params: Params) -> str:
        uri = templates.resolve(self.collection, _as_params(params))
        self._warn_unresolved(uri)
        return uri

    def single_entity_uri(self, params: Params) -> str:
        values = _as_params(params)
        primary_id = values.get(self.primary_id_field)
        if primary_id in (None, ""):
            raise ResourceClientError(f"{self.primary_id_field} is required to address a single {self.kind.value}")
        uri = templates.resolve(f"{self.collection}/{primary_id}", values)
        self._warn_unresolved(uri)
        return uri

    def _warn_unresolved(self, uri: str) -> None:
        missing = templates.unresolved_placeholders(uri)
        if missing:
            logger.warning("Unresolved parameters %s in %s", ", ".join(missing), uri)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def list(self, params: Params, filter: Optional[str] = None) -> List[Resource]:
        """Return every entity matching ``params`` across all result pages.

        ``filter`` replaces the client's default filter expression when given.
        """

        results: List[Resource] = []
        for page in self._transport.get_pages(self.list_uri(params, filter)):
            if not page:
                continue
            results.extend(self.to_entity(item) for item in page.get(self.api_field_name, []))
        logger.info("Listed %s %s entities", len(results), self.kind.value)
        return results

    def get(self, params: Params) -> Resource:
        return self.to_entity(self._transport.get(self.single_entity_uri(params)))

    def update(self, entity: Resource) -> Resource:
        original = self.get(entity)
        mask = compute_mask(original, entity, self.primary_id_field)
        if not mask:
            logger.info("No changes for %s %s; skipping PATCH", self.kind.value, entity.get(self.primary_id_field))
            return original
        uri = templates.append_query(self.single_entity_uri(original), "updateMask", mask)
        return self.to_entity(self._transport.patch(uri, entity.to_dict()))

    def create(self, entity: Resource) -> Resource:
        payload = entity.without_primary_id().to_dict()
        payload.pop(self.primary_id_field, None)
        return self.to_entity(self._transport.post(self.collection_uri(entity), payload))

    def delete(self, entity: Resource) -> None:
        """Archive ``entity`` and then remove it.

        The API refuses to delete entities that are not archived. The two
        requests are not atomic: an archived but undeleted entity is left in
        place when the DELETE fails.
        """

        archived = entity.copy()
        archived["entityStatus"] = ENTITY_STATUS_ARCHIVED
        self.update(archived)
        self._transport.delete(self.single_entity_uri(entity))

    def to_entity(self, payload: Optional[Mapping[str, Any]]) -> Resource:
        return resource_from_dict(self.kind, payload)

    def for_sheet(self, config: SheetConfig) -> "ResourceClient":
        """Return a copy of this client addressing the URI and list field of ``config``."""

        collection, _, list_query = config.uri.partition("?")
        client = copy.copy(self)
        client.collection = collection
        client.list_query = list_query
        client.api_field_name = config.api_field_name
        client.filter = config.filter
        return client


class Advertisers(ResourceClient):
    def __init__(self, transport: HttpTransport) -> None:
        super().__init__(
            transport,
            ResourceKind.ADVERTISER,
            "advertisers",
            "advertisers",
            list_query="partnerId=${partnerId}",
        )


class Campaigns(ResourceClient):
    def __init__(self, transport: HttpTransport) -> None:
        super().__init__(transport, ResourceKind.CAMPAIGN, "advertisers/${advertiserId}/campaigns", "campaigns")


class InsertionOrders(ResourceClient):
    def __init__(self, transport: HttpTransport) -> None:
        super().__init__(
            transport,
            ResourceKind.INSERTION_ORDER,
            "advertisers/${advertiserId}/insertionOrders",
            "insertionOrders",
            filter="campaignId=${campaignId}",
        )


class LineItems(ResourceClient):
    def __init__(self, transport: HttpTransport) -> None:
        super().__init__(
            transport,
            ResourceKind.LINE_ITEM,
            "advertisers/${advertiserId}/lineItems",
            "lineItems",
            filter="campaignId=${campaignId} AND insertionOrderId=${insertionOrderId}",
        )


class Creatives(ResourceClient):
    def __init__(self, transport: HttpTransport) -> None:
        super().__init__(
            transport,
            ResourceKind.CREATIVE,
            "advertisers/${advertiserId}/creatives",
            "creatives",
            filter="lineItemIds:${lineItemId}",
        )


class LineItemTargetingOptions(ResourceClient):
    """Assigned targeting options of a line item, read and edited in bulk."""

    LIST_TEMPLATE = "advertisers/${advertiserId}/lineItems/${lineItemId}:bulkListLineItemAssignedTargetingOptions"
    EDIT_TEMPLATE = "advertisers/${advertiserId}/lineItems/${lineItemId}:bulkEditLineItemAssignedTargetingOptions"

    def __init__(self, transport: HttpTransport) -> None:
        super().__init__(
            transport,
            ResourceKind.ASSIGNED_TARGETING_OPTION,
            "advertisers/${advertiserId}/lineItems/${lineItemId}/targetingTypes/${targetingType}/assignedTargetingOptions",
            "assignedTargetingOptions",
        )

    def list_uri(self, params: Params, filter: Optional[str] = None) -> str:
        uri = templates.resolve(self.LIST_TEMPLATE, _as_params(params))
        self._warn_unresolved(uri)
        return uri

    def list_for(self, line_item: Resource) -> List[AssignedTargetingOption]:
        return [option for option in self.list(line_item) if isinstance(option, AssignedTargetingOption)]

    def bulk_edit(self, line_item: Resource, payload: Mapping[str, Any]) -> List[AssignedTargetingOption]:
        uri = templates.resolve(self.EDIT_TEMPLATE, line_item.to_dict())
        self._warn_unresolved(uri)
        response = self._transport.post(uri, payload)
        created = response.get("createdAssignedTargetingOptions") or []
        return [AssignedTargetingOption(item) for item in created]


class TargetingOptionSearch(ResourceClient):
    """Catalog of targeting options available to an advertiser."""

    def __init__(self, transport: HttpTransport) -> None:
        super().__init__(
            transport,
            ResourceKind.TARGETING_OPTION,
            "targetingTypes/${targetingType}/targetingOptions",
            "targetingOptions",
            list_query="advertiserId=${advertiserId}",
        )


@dataclass
class ClientRegistry:
    """Explicit set of clients handed to the sync orchestrator."""

    advertisers: ResourceClient
    campaigns: ResourceClient
    insertion_orders: ResourceClient
    line_items: ResourceClient
    creatives: ResourceClient
    line_item_targeting: LineItemTargetingOptions
    targeting_options: ResourceClient

    def clients(self) -> Iterable[ResourceClient]:
        return (
            self.advertisers,
            self.campaigns,
            self.insertion_orders,
            self.line_items,
            self.creatives,
            self.line_item_targeting,
            self.targeting_options,
        )

    def for_kind(self, kind: ResourceKind) -> ResourceClient:
        for client in self.clients():
            if client.kind is kind:
                return client
        raise KeyError(kind)


def build_registry(transport: HttpTransport) -> ClientRegistry:
    return ClientRegistry(
        advertisers=Advertisers(transport),
        campaigns=Campaigns(transport),
        insertion_orders=InsertionOrders(transport),
        line_items=LineItems(transport),
        creatives=Creatives(transport),
        line_item_targeting=LineItemTargetingOptions(transport),
        targeting_options=TargetingOptionSearch(transport),
    )


__all__ = [
    "Advertisers",
    "Campaigns",
    "ClientRegistry",
    "Creatives",
    "InsertionOrders",
    "LineItemTargetingOptions",
    "LineItems",
    "ResourceClient",
    "ResourceClientError",
    "TargetingOptionSearch",
    "build_registry",
]
