from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional

from coverage_engine.api.deps import get_engine, http_error
from coverage_engine.core.errors import LocationEngineError
from coverage_engine.schemas.coverage_area import (
    CoverageArea,
    CoverageAreaCreate,
    CoverageAreaFilter,
    CoverageAreaUpdate,
    CoverageMatchRequest,
)
from coverage_engine.schemas.location import LocationNode
from coverage_engine.schemas.session import IntegrityCheckResult
from coverage_engine.services.hierarchy.engine import GeoHierarchyEngine

router = APIRouter(prefix="/coverage-areas", tags=["Coverage Areas"])


@router.get("", response_model=List[CoverageArea])
async def list_coverage_areas(
    geographic_unit_id: Optional[str] = Query(None, alias="geographicUnitId"),
    organization_id: Optional[str] = Query(None, alias="organizationId"),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    engine: GeoHierarchyEngine = Depends(get_engine),
):
    """List coverage areas, optionally only those containing a geographic unit"""
    filters = CoverageAreaFilter(
        geographic_unit_id=geographic_unit_id,
        organization_id=organization_id,
        is_active=is_active,
    )
    try:
        return await engine.list_coverage_areas(filters)
    except LocationEngineError as exc:
        raise http_error(exc)


@router.post("/match", response_model=Optional[CoverageArea])
async def match_coverage_area(payload: CoverageMatchRequest, engine: GeoHierarchyEngine = Depends(get_engine)):
    """
    Find the smallest active coverage area containing all given locations.

    Returns null when no existing area covers the selection.
    """
    try:
        return await engine.match(payload.location_ids)
    except LocationEngineError as exc:
        raise http_error(exc)


@router.get("/{coverage_area_id}", response_model=CoverageArea)
async def get_coverage_area(coverage_area_id: str, engine: GeoHierarchyEngine = Depends(get_engine)):
    """Get a specific coverage area by ID"""
    try:
        return await engine.get_coverage_area(coverage_area_id)
    except LocationEngineError as exc:
        raise http_error(exc)


@router.get("/{coverage_area_id}/geographic-units", response_model=List[LocationNode])
async def get_coverage_area_units(coverage_area_id: str, engine: GeoHierarchyEngine = Depends(get_engine)):
    """Locations that make up a coverage area"""
    try:
        return await engine.coverage_area_units(coverage_area_id)
    except LocationEngineError as exc:
        raise http_error(exc)


@router.post("", response_model=CoverageArea, status_code=status.HTTP_201_CREATED)
async def create_coverage_area(payload: CoverageAreaCreate, engine: GeoHierarchyEngine = Depends(get_engine)):
    """Create a coverage area"""
    try:
        return await engine.create_coverage_area(payload)
    except LocationEngineError as exc:
        raise http_error(exc)


@router.patch("/{coverage_area_id}", response_model=CoverageArea)
async def update_coverage_area(
    coverage_area_id: str,
    payload: CoverageAreaUpdate,
    engine: GeoHierarchyEngine = Depends(get_engine),
):
    """Update a coverage area"""
    try:
        return await engine.update_coverage_area(coverage_area_id, payload)
    except (LocationEngineError, ValueError) as exc:
        raise http_error(exc)


@router.get("/{coverage_area_id}/can-delete", response_model=IntegrityCheckResult)
async def can_delete_coverage_area(coverage_area_id: str, engine: GeoHierarchyEngine = Depends(get_engine)):
    """Check whether users are still assigned to a coverage area"""
    try:
        return await engine.can_delete_coverage_area(coverage_area_id)
    except LocationEngineError as exc:
        raise http_error(exc)


@router.delete("/{coverage_area_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_coverage_area(
    coverage_area_id: str,
    force: bool = Query(False, description="Delete even if users are still assigned"),
    engine: GeoHierarchyEngine = Depends(get_engine),
):
    """Delete a coverage area (soft delete on the backend)"""
    try:
        await engine.delete_coverage_area(coverage_area_id, force=force)
    except LocationEngineError as exc:
        raise http_error(exc)

    return None
