"""Pre-delete checks for locations and coverage areas."""

import asyncio
import logging

from coverage_engine.schemas.session import IntegrityCheckResult
from coverage_engine.services.datasource.base import LocationDataSource
from coverage_engine.services.hierarchy.location_store import LocationStore

logger = logging.getLogger(__name__)


class IntegrityChecker:
    """Verifies that a delete would not orphan dependent records."""

    def __init__(self, store: LocationStore, data_source: LocationDataSource):
        self.store = store
        self.data_source = data_source

    async def can_delete_location(self, location_id: str) -> IntegrityCheckResult:
        """
        Check whether a location can be deleted.

        The location is blocked by any child (loaded earlier or fetched now)
        and by any active coverage area that lists it.

        Args:
            location_id: Location to check

        Returns:
            IntegrityCheckResult with the blocking descendant and coverage-area ids

        Raises:
            NotFoundError: If the location does not exist
            FetchFailedError: If the data source cannot be consulted
        """
        if location_id not in self.store:
            node = await asyncio.to_thread(self.data_source.get_location, location_id)
            self.store.upsert(node)

        if not self.store.has_complete_children(location_id):
            children = await asyncio.to_thread(self.data_source.get_children, location_id)
            self.store.replace_children(location_id, children)

        descendants = self.store.descendant_ids(location_id)
        if descendants:
            child_count = len(self.store.child_ids(location_id))
            return IntegrityCheckResult(
                ok=False,
                reason=(
                    f"This location has {child_count} child location(s). "
                    "Delete children first or reassign them."
                ),
                blocking_ids=descendants,
            )

        areas = await asyncio.to_thread(
            self.data_source.list_coverage_areas, geographic_unit_id=location_id, is_active=True
        )
        referencing = [area.id for area in areas if area.is_active and location_id in area.unit_id_set]
        if referencing:
            return IntegrityCheckResult(
                ok=False,
                reason=(
                    f"This location is used in {len(referencing)} active coverage area(s). "
                    "Remove it from coverage areas first."
                ),
                coverage_area_ids=referencing,
            )

        return IntegrityCheckResult(ok=True)

    async def can_delete_coverage_area(self, coverage_area_id: str) -> IntegrityCheckResult:
        """
        Check whether a coverage area can be deleted.

        Returns:
            IntegrityCheckResult carrying the number of active user assignments
        """
        assignments = await asyncio.to_thread(self.data_source.get_coverage_area_users, coverage_area_id)
        active = [assignment for assignment in assignments if assignment.is_active]
        if active:
            logger.info(f"Coverage area {coverage_area_id} has {len(active)} active assignment(s)")
            return IntegrityCheckResult(
                ok=False,
                reason=(
                    f"This coverage area has {len(active)} user(s) assigned. "
                    "Reassign users before deleting."
                ),
                blocking_ids=[assignment.id for assignment in active],
                active_assignment_count=len(active),
            )
        return IntegrityCheckResult(ok=True)
