"""In-process data source, used for local development and tests."""

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from coverage_engine.core.errors import IntegrityViolationError, NotFoundError
from coverage_engine.schemas.coverage_area import (
    CoverageArea,
    CoverageAreaCreate,
    CoverageAreaUpdate,
    UserCoverageAssignment,
)
from coverage_engine.schemas.location import LocationCreate, LocationNode, LocationType, LocationUpdate
from coverage_engine.services.datasource.base import LocationDataSource

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryLocationDataSource(LocationDataSource):
    """
    Data source backed by dictionaries.

    Behaves like the dashboard backend: locations are hard-deleted and refuse
    deletion while children exist, coverage areas are soft-deleted. Every call
    is appended to ``calls`` as ``(method, argument)``.
    """

    name = "memory"

    def __init__(
        self,
        locations: Optional[Iterable[LocationNode]] = None,
        coverage_areas: Optional[Iterable[CoverageArea]] = None,
        assignments: Optional[Iterable[UserCoverageAssignment]] = None,
    ):
        self._lock = threading.Lock()
        self.locations: Dict[str, LocationNode] = {node.id: node for node in (locations or [])}
        self.coverage_areas: Dict[str, CoverageArea] = {area.id: area for area in (coverage_areas or [])}
        self.assignments: Dict[str, UserCoverageAssignment] = {
            assignment.id: assignment for assignment in (assignments or [])
        }
        self.calls: List[Tuple[str, Optional[str]]] = []

    def _record(self, method: str, argument: Optional[str] = None) -> None:
        with self._lock:
            self.calls.append((method, argument))

    def call_count(self, method: str) -> int:
        with self._lock:
            return sum(1 for name, _ in self.calls if name == method)

    # Locations

    def list_locations(
        self,
        type: Optional[LocationType] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> List[LocationNode]:
        self._record("list_locations", type.value if type is not None else None)
        query = (search or "").casefold()
        with self._lock:
            return [
                node for node in self.locations.values()
                if (type is None or node.type == type)
                and (is_active is None or node.is_active == is_active)
                and (not query or query in node.name.casefold() or query in (node.code or "").casefold())
            ]

    def get_location_tree(self, include_inactive: bool = False) -> List[LocationNode]:
        self._record("get_location_tree")
        with self._lock:
            return [node for node in self.locations.values() if include_inactive or node.is_active]

    def get_children(self, parent_id: str) -> List[LocationNode]:
        self._record("get_children", parent_id)
        with self._lock:
            if parent_id not in self.locations:
                raise NotFoundError("Location", parent_id)
            return [node for node in self.locations.values() if node.parent_id == parent_id]

    def get_location(self, location_id: str) -> LocationNode:
        self._record("get_location", location_id)
        with self._lock:
            node = self.locations.get(location_id)
        if node is None:
            raise NotFoundError("Location", location_id)
        return node

    def create_location(self, payload: LocationCreate) -> LocationNode:
        self._record("create_location", payload.name)
        node = LocationNode(
            id=uuid.uuid4().hex,
            created_at=_now(),
            updated_at=_now(),
            **payload.model_dump(),
        )
        with self._lock:
            if node.parent_id is not None and node.parent_id not in self.locations:
                raise NotFoundError("Location", node.parent_id)
            self.locations[node.id] = node
        return node

    def update_location(self, location_id: str, payload: LocationUpdate) -> LocationNode:
        self._record("update_location", location_id)
        with self._lock:
            node = self.locations.get(location_id)
            if node is None:
                raise NotFoundError("Location", location_id)
            changes = payload.model_dump(exclude_unset=True)
            if "metadata" in changes and payload.metadata is not None:
                changes["metadata"] = payload.metadata
            updated = node.model_copy(update={**changes, "updated_at": _now()})
            self.locations[location_id] = updated
        return updated

    def delete_location(self, location_id: str) -> None:
        self._record("delete_location", location_id)
        with self._lock:
            if location_id not in self.locations:
                raise NotFoundError("Location", location_id)
            children = [node.id for node in self.locations.values() if node.parent_id == location_id]
            if children:
                raise IntegrityViolationError(
                    f"Location {location_id} still has {len(children)} child location(s)",
                    blocking_ids=children,
                )
            del self.locations[location_id]

    # Coverage areas

    def list_coverage_areas(
        self,
        geographic_unit_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> List[CoverageArea]:
        self._record("list_coverage_areas", geographic_unit_id)
        with self._lock:
            return [
                area for area in self.coverage_areas.values()
                if (geographic_unit_id is None or geographic_unit_id in area.unit_id_set)
                and (organization_id is None or area.organization_id == organization_id)
                and (is_active is None or area.is_active == is_active)
            ]

    def get_coverage_area(self, coverage_area_id: str) -> CoverageArea:
        self._record("get_coverage_area", coverage_area_id)
        with self._lock:
            area = self.coverage_areas.get(coverage_area_id)
        if area is None:
            raise NotFoundError("CoverageArea", coverage_area_id)
        return area

    def create_coverage_area(self, payload: CoverageAreaCreate) -> CoverageArea:
        self._record("create_coverage_area", payload.name)
        area = CoverageArea(
            id=uuid.uuid4().hex,
            created_at=_now(),
            updated_at=_now(),
            **payload.model_dump(),
        )
        with self._lock:
            self.coverage_areas[area.id] = area
        return area

    def update_coverage_area(self, coverage_area_id: str, payload: CoverageAreaUpdate) -> CoverageArea:
        self._record("update_coverage_area", coverage_area_id)
        with self._lock:
            area = self.coverage_areas.get(coverage_area_id)
            if area is None:
                raise NotFoundError("CoverageArea", coverage_area_id)
            changes = payload.model_dump(exclude_unset=True)
            if "metadata" in changes and payload.metadata is not None:
                changes["metadata"] = payload.metadata
            updated = area.model_copy(update={**changes, "updated_at": _now()})
            self.coverage_areas[coverage_area_id] = updated
        return updated

    def delete_coverage_area(self, coverage_area_id: str) -> None:
        self._record("delete_coverage_area", coverage_area_id)
        with self._lock:
            area = self.coverage_areas.get(coverage_area_id)
            if area is None:
                raise NotFoundError("CoverageArea", coverage_area_id)
            self.coverage_areas[coverage_area_id] = area.model_copy(
                update={"is_active": False, "updated_at": _now()}
            )

    def get_coverage_area_users(self, coverage_area_id: str) -> List[UserCoverageAssignment]:
        self._record("get_coverage_area_users", coverage_area_id)
        with self._lock:
            if coverage_area_id not in self.coverage_areas:
                raise NotFoundError("CoverageArea", coverage_area_id)
            return [
                assignment for assignment in self.assignments.values()
                if assignment.coverage_area_id == coverage_area_id
            ]
