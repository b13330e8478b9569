"""Reconcile the assigned targeting options of a line item."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

from dv360sync.entities import AssignedTargetingOption, Resource
from dv360sync.resources import LineItemTargetingOptions

logger = logging.getLogger(__name__)


def difference(left: Sequence[Resource], right: Sequence[Resource]) -> List[Resource]:
    """Return members of ``left`` whose content is absent from ``right``."""

    present = {option.content_hash() for option in right}
    return [option for option in left if option.content_hash() not in present]


def group_by_type(options: Sequence[Resource]) -> Dict[str, List[Resource]]:
    groups: Dict[str, List[Resource]] = {}
    for option in options:
        groups.setdefault(option.get("targetingType"), []).append(option)
    return groups


def build_edit_payload(
    current: Sequence[Resource],
    desired: Sequence[Resource],
) -> Dict[str, List[Dict[str, Any]]]:
    """Return the bulk edit body turning ``current`` into ``desired``.

    Options are compared by content, so an option whose fields changed is
    deleted and created again. Groups keep the order in which each targeting
    type is first seen.
    """

    delete_requests = [
        {
            "targetingType": targeting_type,
            "assignedTargetingOptionIds": [option.get("assignedTargetingOptionId") for option in options],
        }
        for targeting_type, options in group_by_type(difference(current, desired)).items()
    ]
    create_requests = [
        {
            "targetingType": targeting_type,
            "assignedTargetingOptions": [option.to_dict() for option in options],
        }
        for targeting_type, options in group_by_type(difference(desired, current)).items()
    ]
    return {"deleteRequests": delete_requests, "createRequests": create_requests}


class TargetingOptionReconciler:
    def __init__(self, client: LineItemTargetingOptions) -> None:
        self._client = client

    def current_options(self, line_item: Resource) -> List[AssignedTargetingOption]:
        return self._client.list_for(line_item)

    def reconcile(
        self,
        line_item: Resource,
        desired: Sequence[Resource],
    ) -> List[AssignedTargetingOption]:
        """Apply ``desired`` to ``line_item`` and return the created options."""

        return self._apply(line_item, self.current_options(line_item), desired)

    def synchronize(
        self,
        line_item: Resource,
        desired: Sequence[Resource],
    ) -> List[Resource]:
        """Apply ``desired`` and return the full resulting option set.

        The result is the unchanged current options followed by the options the
        API created, which is what the sheet shows after the edit.
        """

        current = self.current_options(line_item)
        created = self._apply(line_item, current, desired)
        removed = {option.content_hash() for option in difference(current, desired)}
        kept: List[Resource] = [option for option in current if option.content_hash() not in removed]
        return kept + list(created)

    def _apply(
        self,
        line_item: Resource,
        current: Sequence[Resource],
        desired: Sequence[Resource],
    ) -> List[AssignedTargetingOption]:
        payload = build_edit_payload(current, desired)
        if not payload["deleteRequests"] and not payload["createRequests"]:
            logger.info("Targeting options of line item %s already up to date", line_item.primary_id)
            return []
        logger.info(
            "Editing targeting options of line item %s: %s delete group(s), %s create group(s)",
            line_item.primary_id,
            len(payload["deleteRequests"]),
            len(payload["createRequests"]),
        )
        return self._client.bulk_edit(line_item, payload)


__all__ = ["TargetingOptionReconciler", "build_edit_payload", "difference", "group_by_type"]
