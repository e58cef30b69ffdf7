from fastapi import APIRouter, Depends

from coverage_engine.services.cache.coverage_cache import CoverageAreaCache, get_coverage_cache
from coverage_engine.services.datasource import LocationDataSource, get_data_source

router = APIRouter(prefix="/health", tags=["Health"])


@router.get(
    "",
    summary="Service health check",
    description="Reports the configured data source and whether the coverage cache is reachable",
    response_description="Service and cache status"
)
def health_check(
    data_source: LocationDataSource = Depends(get_data_source),
    coverage_cache: CoverageAreaCache = Depends(get_coverage_cache),
):
    """
    Service health check endpoint.

    The cache is optional; a disabled cache does not make the service unhealthy.
    """
    return {
        "status": "ok",
        "data_source": data_source.name,
        "cache": "ok" if coverage_cache.is_enabled() else "disabled",
    }
