"""Normalisation of upstream location / coverage-area records.

The dashboard backend is not consistent about field names: ids arrive as
``_id`` or ``id``, parents as a plain id, a nested object or ``parentId``,
coverage-area units as ids or populated objects. Everything is folded into
the canonical schemas here so the engine never sees the variants.
"""

import logging
from typing import Any, Dict, List, Optional

from coverage_engine.schemas.coverage_area import (
    CoverageArea,
    CoverageAreaCreate,
    CoverageAreaUpdate,
    UserCoverageAssignment,
)
from coverage_engine.schemas.location import LocationCreate, LocationNode, LocationUpdate

logger = logging.getLogger(__name__)


def extract_id(value: Any) -> Optional[str]:
    """Return the id of a reference given either as an id or as an embedded object."""
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        for key in ("_id", "id"):
            if value.get(key):
                return str(value[key])
        return None
    return str(value)


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def normalize_location(raw: Dict[str, Any], parent_id: Optional[str] = None) -> LocationNode:
    """
    Convert an upstream location record to a LocationNode.

    Args:
        raw: Record as returned by the backend
        parent_id: Parent to assume when the record carries none (nested trees)

    Returns:
        Canonical LocationNode
    """
    metadata = dict(raw.get("metadata") or {})
    record = {
        "id": extract_id(_first(raw, "_id", "id")),
        "name": raw.get("name") or "",
        "type": str(raw.get("type") or "custom").lower(),
        "code": raw.get("code"),
        "administrativeCode": _first(raw, "administrativeCode", "administrative_code"),
        "parentId": extract_id(_first(raw, "parentId", "parent_id", "parent")) or parent_id,
        "isActive": raw.get("isActive", raw.get("is_active", True)),
        "metadata": {
            "isCity": metadata.get("isCity", False),
            "isCombined": metadata.get("isCombined", False),
            "operationalGroup": metadata.get("operationalGroup"),
            "custom": metadata.get("custom") or {},
        },
        "createdAt": raw.get("createdAt"),
        "updatedAt": raw.get("updatedAt"),
    }
    return LocationNode.model_validate(record)


def flatten_location_payload(payload: Any) -> List[LocationNode]:
    """
    Flatten a location payload that may be a flat list, a single node, or a
    nested tree with ``children`` arrays.
    """
    if payload is None:
        return []
    roots = payload if isinstance(payload, list) else [payload]
    result: List[LocationNode] = []
    stack = [(raw, None) for raw in reversed(roots)]
    while stack:
        raw, parent_id = stack.pop()
        node = normalize_location(raw, parent_id=parent_id)
        result.append(node)
        children = raw.get("children") or []
        stack.extend((child, node.id) for child in reversed(children) if isinstance(child, dict))
    logger.debug(f"Flattened location payload into {len(result)} records")
    return result


def normalize_coverage_area(raw: Dict[str, Any]) -> CoverageArea:
    metadata = dict(raw.get("metadata") or {})
    units = _first(raw, "geographicUnitIds", "geographicUnits", "geographic_unit_ids") or []
    record = {
        "id": extract_id(_first(raw, "_id", "id")),
        "name": raw.get("name") or "",
        "code": raw.get("code"),
        "description": raw.get("description"),
        "geographicUnitIds": [unit_id for unit_id in (extract_id(unit) for unit in units) if unit_id],
        "organizationId": extract_id(_first(raw, "organizationId", "organization_id", "organization")),
        "isActive": raw.get("isActive", raw.get("is_active", True)),
        "metadata": {
            "isDefault": metadata.get("isDefault", False),
            "tags": metadata.get("tags") or [],
            "custom": metadata.get("custom") or {},
        },
        "createdAt": raw.get("createdAt"),
        "updatedAt": raw.get("updatedAt"),
    }
    return CoverageArea.model_validate(record)


def normalize_coverage_area_list(payload: Any) -> List[CoverageArea]:
    if payload is None:
        return []
    if isinstance(payload, dict):
        payload = payload.get("coverageAreas") or payload.get("items") or []
    return [normalize_coverage_area(raw) for raw in payload]


def normalize_assignment(raw: Dict[str, Any]) -> UserCoverageAssignment:
    record = {
        "id": extract_id(_first(raw, "_id", "id")),
        "userId": extract_id(_first(raw, "userId", "user_id", "user")),
        "coverageAreaId": extract_id(_first(raw, "coverageAreaId", "coverage_area_id", "coverageArea")),
        "isPrimary": raw.get("isPrimary", False),
        "isActive": raw.get("isActive", True),
        "assignedAt": raw.get("assignedAt"),
        "expiresAt": raw.get("expiresAt"),
    }
    return UserCoverageAssignment.model_validate(record)


def location_create_payload(payload: LocationCreate) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "name": payload.name,
        "type": payload.type.value,
        "isActive": payload.is_active,
        "metadata": payload.metadata.model_dump(by_alias=True),
    }
    if payload.parent_id:
        body["parentId"] = payload.parent_id
    if payload.code:
        body["code"] = payload.code
    if payload.administrative_code:
        body["administrativeCode"] = payload.administrative_code
    return body


def location_update_payload(payload: LocationUpdate) -> Dict[str, Any]:
    # exclude_unset keeps an explicit parentId of None, which moves the node to the root
    return payload.model_dump(by_alias=True, exclude_unset=True, mode="json")


def coverage_area_payload(payload: Any) -> Dict[str, Any]:
    """Request body for create/update; units are sent under the backend's ``geographicUnits`` key."""
    exclude_unset = isinstance(payload, CoverageAreaUpdate)
    body = payload.model_dump(by_alias=True, exclude_unset=exclude_unset, mode="json")
    units = body.pop("geographicUnitIds", None)
    if units is not None:
        body["geographicUnits"] = units
    if isinstance(payload, CoverageAreaCreate) and not body.get("organizationId"):
        body.pop("organizationId", None)
    return body
