from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional

from coverage_engine.api.deps import get_engine, http_error
from coverage_engine.core.errors import LocationEngineError
from coverage_engine.schemas.location import (
    LocationCreate,
    LocationFilter,
    LocationNode,
    LocationType,
    LocationUpdate,
    ReparentRequest,
)
from coverage_engine.schemas.session import IntegrityCheckResult, LocationTreeRead
from coverage_engine.services.hierarchy.engine import GeoHierarchyEngine
from coverage_engine.services.hierarchy.tree_builder import TreeNode, filter_tree

router = APIRouter(prefix="/locations", tags=["Locations"])


def _to_read(tree_node: TreeNode) -> LocationTreeRead:
    return LocationTreeRead(
        **tree_node.node.model_dump(),
        children=[_to_read(child) for child in tree_node.children],
    )


@router.get("", response_model=List[LocationNode])
async def list_locations(
    type: Optional[LocationType] = Query(None, description="Filter by location type"),
    is_active: Optional[bool] = Query(None, alias="isActive", description="Filter by active flag"),
    search: Optional[str] = Query(None, description="Name or code contains"),
    engine: GeoHierarchyEngine = Depends(get_engine),
):
    """List locations"""
    try:
        return await engine.list_locations(LocationFilter(type=type, is_active=is_active, search=search))
    except LocationEngineError as exc:
        raise http_error(exc)


@router.get("/tree", response_model=List[LocationTreeRead])
async def get_location_tree(
    include_inactive: bool = Query(False, alias="includeInactive"),
    search: Optional[str] = Query(None, description="Keep matches and their ancestors"),
    engine: GeoHierarchyEngine = Depends(get_engine),
):
    """Full location hierarchy, siblings sorted by name"""
    try:
        forest = await engine.load_full_tree(include_inactive=include_inactive)
    except LocationEngineError as exc:
        raise http_error(exc)

    if search:
        forest = filter_tree(forest, search)
    return [_to_read(root) for root in forest]


@router.get("/{location_id}", response_model=LocationNode)
async def get_location(location_id: str, engine: GeoHierarchyEngine = Depends(get_engine)):
    """Get a specific location by ID"""
    try:
        return await engine.get_location(location_id)
    except LocationEngineError as exc:
        raise http_error(exc)


@router.get("/{location_id}/ancestors", response_model=List[LocationNode])
async def get_location_ancestors(
    location_id: str,
    include_self: bool = Query(False, alias="includeSelf"),
    engine: GeoHierarchyEngine = Depends(get_engine),
):
    """Parents of a location up to the root, nearest first"""
    try:
        return await engine.ancestors(location_id, include_self=include_self)
    except LocationEngineError as exc:
        raise http_error(exc)


@router.get("/{location_id}/descendants", response_model=List[LocationNode])
async def get_location_descendants(
    location_id: str,
    include_self: bool = Query(False, alias="includeSelf"),
    engine: GeoHierarchyEngine = Depends(get_engine),
):
    """Every location below a location, nearest level first"""
    try:
        return await engine.descendants(location_id, include_self=include_self)
    except LocationEngineError as exc:
        raise http_error(exc)


@router.post("", response_model=LocationNode, status_code=status.HTTP_201_CREATED)
async def create_location(payload: LocationCreate, engine: GeoHierarchyEngine = Depends(get_engine)):
    """Create a location; the parent type is checked against the hierarchy rules"""
    try:
        return await engine.create_location(payload)
    except LocationEngineError as exc:
        raise http_error(exc)


@router.patch("/{location_id}", response_model=LocationNode)
async def update_location(
    location_id: str,
    payload: LocationUpdate,
    engine: GeoHierarchyEngine = Depends(get_engine),
):
    """Update a location"""
    try:
        return await engine.update_location(location_id, payload)
    except LocationEngineError as exc:
        raise http_error(exc)


@router.patch("/{location_id}/parent", response_model=LocationNode)
async def reparent_location(
    location_id: str,
    payload: ReparentRequest,
    engine: GeoHierarchyEngine = Depends(get_engine),
):
    """Move a location under a new parent (or to the root level)"""
    try:
        return await engine.reparent(location_id, payload.parent_id)
    except LocationEngineError as exc:
        raise http_error(exc)


@router.get("/{location_id}/can-delete", response_model=IntegrityCheckResult)
async def can_delete_location(location_id: str, engine: GeoHierarchyEngine = Depends(get_engine)):
    """Check whether a location has children or active coverage-area references"""
    try:
        return await engine.can_delete_location(location_id)
    except LocationEngineError as exc:
        raise http_error(exc)


@router.delete("/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_location(location_id: str, engine: GeoHierarchyEngine = Depends(get_engine)):
    """Delete a location that nothing depends on"""
    try:
        await engine.delete_location(location_id)
    except LocationEngineError as exc:
        raise http_error(exc)

    return None
