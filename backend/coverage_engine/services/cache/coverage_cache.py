"""Redis cache of coverage-area candidates per geographic unit."""

import json
import logging
from typing import List, Optional

import redis
from coverage_engine.core.config import get_settings
from coverage_engine.db.redis_client import get_redis
from coverage_engine.schemas.coverage_area import CoverageArea

logger = logging.getLogger(__name__)

KEY_PREFIX = "coverage_candidates"


class CoverageAreaCache:
    """
    Shares the active coverage areas containing a unit across sessions and
    processes. If Redis is unreachable at startup the cache stays disabled
    and callers go to the data source directly; later read/write errors are
    logged and treated as misses.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, ttl_seconds: Optional[int] = None):
        """
        Initialize the coverage-area cache.

        Args:
            redis_client: Optional Redis client (uses the shared client if not provided)
            ttl_seconds: Entry TTL (defaults to the configured value)
        """
        settings = get_settings()
        self.ttl_seconds = ttl_seconds or settings.coverage_cache_ttl_seconds
        self.redis_client = redis_client
        self._cache_enabled = True

        if self.redis_client is None:
            try:
                self.redis_client = get_redis()
                if self.redis_client is None:
                    self._cache_enabled = False
                    return
                # Test connection
                self.redis_client.ping()
                logger.info("Coverage-area cache initialized successfully")
            except Exception as e:
                logger.warning(f"Coverage-area cache initialization failed: {str(e)}")
                logger.warning("Continuing without cache (graceful degradation)")
                self._cache_enabled = False
                self.redis_client = None

    @staticmethod
    def _key(unit_id: str) -> str:
        return f"{KEY_PREFIX}:{unit_id}"

    def is_enabled(self) -> bool:
        return self._cache_enabled and self.redis_client is not None

    def get_candidates(self, unit_id: str) -> Optional[List[CoverageArea]]:
        """
        Get cached coverage areas containing a unit.

        Returns:
            Cached list, or None on a miss or when the cache is unavailable
        """
        if not self.is_enabled():
            return None

        try:
            cached = self.redis_client.get(self._key(unit_id))
        except Exception as e:
            logger.error(f"Error reading coverage candidates for {unit_id}: {str(e)}")
            return None

        if not cached:
            logger.debug(f"Cache miss for unit {unit_id}")
            return None
        logger.debug(f"Cache hit for unit {unit_id}")
        return [CoverageArea.model_validate(raw) for raw in json.loads(cached)]

    def set_candidates(self, unit_id: str, candidates: List[CoverageArea]) -> None:
        if not self.is_enabled():
            return

        payload = json.dumps([area.model_dump(by_alias=True, mode="json") for area in candidates])
        try:
            self.redis_client.setex(self._key(unit_id), self.ttl_seconds, payload)
        except Exception as e:
            logger.error(f"Error caching coverage candidates for {unit_id}: {str(e)}")

    def invalidate_all(self) -> None:
        """Drop every cached candidate list (after any coverage-area mutation)."""
        if not self.is_enabled():
            return

        try:
            keys = list(self.redis_client.scan_iter(match=f"{KEY_PREFIX}:*"))
            if keys:
                self.redis_client.delete(*keys)
                logger.info(f"Invalidated {len(keys)} coverage cache entries")
        except Exception as e:
            logger.error(f"Error invalidating coverage cache: {str(e)}")


# Singleton instance
_cache: Optional[CoverageAreaCache] = None


def get_coverage_cache() -> CoverageAreaCache:
    """
    Get the singleton coverage-area cache instance.

    Returns:
        CoverageAreaCache instance
    """
    global _cache
    if _cache is None:
        _cache = CoverageAreaCache()
    return _cache
