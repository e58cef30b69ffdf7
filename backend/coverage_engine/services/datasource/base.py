"""Interface of the location / coverage-area data source."""

from abc import ABC, abstractmethod
from typing import List, Optional

from coverage_engine.schemas.coverage_area import (
    CoverageArea,
    CoverageAreaCreate,
    CoverageAreaUpdate,
    UserCoverageAssignment,
)
from coverage_engine.schemas.location import LocationCreate, LocationNode, LocationType, LocationUpdate


class LocationDataSource(ABC):
    """
    Backing store for locations and coverage areas.

    Implementations return canonical schema objects only; any upstream field
    variants are normalised before records leave the data source. Network
    failures surface as FetchFailedError, missing records as NotFoundError.
    Calls are synchronous; the engine runs them off the event loop.
    """

    name = "abstract"

    @abstractmethod
    def list_locations(
        self,
        type: Optional[LocationType] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> List[LocationNode]:
        ...

    @abstractmethod
    def get_location_tree(self, include_inactive: bool = False) -> List[LocationNode]:
        """Every location as a flat list, to be assembled by the tree builder."""

    @abstractmethod
    def get_children(self, parent_id: str) -> List[LocationNode]:
        ...

    @abstractmethod
    def get_location(self, location_id: str) -> LocationNode:
        ...

    @abstractmethod
    def create_location(self, payload: LocationCreate) -> LocationNode:
        ...

    @abstractmethod
    def update_location(self, location_id: str, payload: LocationUpdate) -> LocationNode:
        ...

    @abstractmethod
    def delete_location(self, location_id: str) -> None:
        ...

    @abstractmethod
    def list_coverage_areas(
        self,
        geographic_unit_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> List[CoverageArea]:
        ...

    @abstractmethod
    def get_coverage_area(self, coverage_area_id: str) -> CoverageArea:
        ...

    @abstractmethod
    def create_coverage_area(self, payload: CoverageAreaCreate) -> CoverageArea:
        ...

    @abstractmethod
    def update_coverage_area(self, coverage_area_id: str, payload: CoverageAreaUpdate) -> CoverageArea:
        ...

    @abstractmethod
    def delete_coverage_area(self, coverage_area_id: str) -> None:
        ...

    @abstractmethod
    def get_coverage_area_users(self, coverage_area_id: str) -> List[UserCoverageAssignment]:
        ...
