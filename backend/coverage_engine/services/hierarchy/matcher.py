"""Finds an existing coverage area that already covers a selection."""

import asyncio
import logging
import math
from typing import AbstractSet, Dict, Iterable, List, Optional

from coverage_engine.core.errors import FetchFailedError
from coverage_engine.schemas.coverage_area import CoverageArea
from coverage_engine.services.cache.coverage_cache import CoverageAreaCache
from coverage_engine.services.datasource.base import LocationDataSource

logger = logging.getLogger(__name__)


def _recency(area: CoverageArea) -> float:
    # Larger is more recent; areas without a timestamp rank last
    if area.updated_at is None:
        return -math.inf
    return area.updated_at.timestamp()


def find_containing(
    selected_ids: AbstractSet[str],
    candidates: Iterable[CoverageArea],
) -> Optional[CoverageArea]:
    """
    Pick the active coverage area whose units are a superset of the selection.

    Ties go to the area with the fewest units, then to the most recently
    updated one, then to the smallest id.

    Args:
        selected_ids: Selected location ids
        candidates: Coverage areas to consider

    Returns:
        Best matching coverage area, or None (also for an empty selection)
    """
    if not selected_ids:
        return None

    best: Optional[CoverageArea] = None
    best_key = None
    for area in candidates:
        if not area.is_active:
            continue
        units = area.unit_id_set
        if not selected_ids <= units:
            continue
        key = (len(units), -_recency(area), area.id)
        if best_key is None or key < best_key:
            best, best_key = area, key
    return best


class CoverageAreaMatcher:
    """
    Session-scoped matcher with a per-unit candidate cache.

    Any coverage area containing the whole selection must contain each
    selected unit, so only one unit's candidate list is needed per lookup.
    The matcher prefers a unit whose list is already cached, which keeps
    repeated lookups during a selection session free of network calls.
    """

    def __init__(self, data_source: LocationDataSource, shared_cache: Optional[CoverageAreaCache] = None):
        self.data_source = data_source
        self.shared_cache = shared_cache
        self._by_unit: Dict[str, List[CoverageArea]] = {}

    async def candidates_for(self, selected_ids: AbstractSet[str]) -> List[CoverageArea]:
        if not selected_ids:
            return []
        anchor = next((unit_id for unit_id in sorted(selected_ids) if unit_id in self._by_unit), None)
        if anchor is None:
            anchor = min(selected_ids)
        return await self._candidates_for_unit(anchor)

    async def _candidates_for_unit(self, unit_id: str) -> List[CoverageArea]:
        cached = self._by_unit.get(unit_id)
        if cached is not None:
            return cached

        if self.shared_cache is not None:
            shared = self.shared_cache.get_candidates(unit_id)
            if shared is not None:
                self._by_unit[unit_id] = shared
                return shared

        try:
            candidates = await asyncio.to_thread(
                self.data_source.list_coverage_areas, geographic_unit_id=unit_id, is_active=True
            )
        except FetchFailedError as exc:
            logger.warning(f"Failed to fetch coverage-area candidates for unit {unit_id}: {exc}")
            raise
        self._by_unit[unit_id] = candidates
        if self.shared_cache is not None:
            self.shared_cache.set_candidates(unit_id, candidates)
        logger.debug(f"Fetched {len(candidates)} coverage-area candidates for unit {unit_id}")
        return candidates

    async def suggest(self, selected_ids: AbstractSet[str]) -> Optional[CoverageArea]:
        """
        Suggest an existing coverage area for the selection.

        Raises:
            FetchFailedError: If candidates could not be loaded
        """
        candidates = await self.candidates_for(selected_ids)
        return find_containing(frozenset(selected_ids), candidates)

    def invalidate(self, shared: bool = True) -> None:
        """
        Drop cached candidates after any coverage-area mutation.

        Args:
            shared: Also clear the cross-process cache; False when another
                engine has already done so for the same mutation
        """
        self._by_unit.clear()
        if shared and self.shared_cache is not None:
            self.shared_cache.invalidate_all()
