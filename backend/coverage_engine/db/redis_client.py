"""Shared Redis connection for the coverage-area candidate cache."""

from typing import Optional

import redis
from coverage_engine.core.config import get_settings

_redis_client: Optional[redis.Redis] = None


def get_redis() -> Optional[redis.Redis]:
    """
    Get the shared Redis client.

    Returns:
        Redis client, or None when the coverage cache is disabled in settings
    """
    global _redis_client
    settings = get_settings()
    if not settings.coverage_cache_enabled:
        return None
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
    return _redis_client
