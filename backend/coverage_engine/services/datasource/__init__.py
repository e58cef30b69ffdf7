"""Location / coverage-area data sources."""

import logging
from typing import Optional

from coverage_engine.core.config import Settings, get_settings
from coverage_engine.services.datasource.base import LocationDataSource
from coverage_engine.services.datasource.memory import InMemoryLocationDataSource
from coverage_engine.services.datasource.rest_client import RestLocationDataSource

logger = logging.getLogger(__name__)

__all__ = [
    "LocationDataSource",
    "InMemoryLocationDataSource",
    "RestLocationDataSource",
    "build_data_source",
    "get_data_source",
]


def build_data_source(settings: Settings) -> LocationDataSource:
    """Create the data source selected in settings."""
    if settings.data_source == "memory":
        logger.info("Using in-memory location data source")
        return InMemoryLocationDataSource()

    logger.info(f"Using REST location data source at {settings.locations_api_url}")
    return RestLocationDataSource(
        base_url=settings.locations_api_url,
        token=settings.locations_api_token,
        timeout=settings.locations_api_timeout,
        max_retries=settings.locations_api_max_retries,
        retry_backoff=settings.locations_api_retry_backoff,
    )


# Singleton instance
_data_source: Optional[LocationDataSource] = None


def get_data_source() -> LocationDataSource:
    """
    Get the singleton data source instance.

    Returns:
        LocationDataSource configured from settings
    """
    global _data_source
    if _data_source is None:
        _data_source = build_data_source(get_settings())
    return _data_source
