from fastapi import Depends, HTTPException, status

from coverage_engine.core.config import get_settings
from coverage_engine.core.errors import (
    CycleDetectedError,
    FetchFailedError,
    IntegrityViolationError,
    InvalidParentTypeError,
    NotFoundError,
)
from coverage_engine.services.cache.coverage_cache import CoverageAreaCache, get_coverage_cache
from coverage_engine.services.datasource import LocationDataSource, get_data_source
from coverage_engine.services.hierarchy.engine import GeoHierarchyEngine
from coverage_engine.services.sessions import SessionRegistry, get_session_registry


def get_registry() -> SessionRegistry:
    return get_session_registry()


def get_engine(
    data_source: LocationDataSource = Depends(get_data_source),
    coverage_cache: CoverageAreaCache = Depends(get_coverage_cache),
    registry: SessionRegistry = Depends(get_registry),
) -> GeoHierarchyEngine:
    """Request-scoped engine for the CRUD endpoints."""
    settings = get_settings()
    return GeoHierarchyEngine(
        data_source,
        hidden_types=settings.hidden_location_types,
        coverage_cache=coverage_cache,
        default_expand_mode=settings.default_expand_mode,
        on_coverage_change=registry.invalidate_coverage_candidates,
    )


def http_error(exc: Exception) -> HTTPException:
    """Translate an engine error into the matching HTTP error."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, IntegrityViolationError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.to_dict())
    if isinstance(exc, InvalidParentTypeError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_dict())
    if isinstance(exc, CycleDetectedError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "node_ids": exc.node_ids},
        )
    if isinstance(exc, FetchFailedError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
