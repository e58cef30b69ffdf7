from datetime import datetime, timezone
from typing import List, Optional

import pytest

from coverage_engine.schemas.coverage_area import CoverageArea, UserCoverageAssignment
from coverage_engine.schemas.location import LocationMetadata, LocationNode, LocationType
from coverage_engine.services.datasource.memory import InMemoryLocationDataSource
from coverage_engine.services.hierarchy.engine import GeoHierarchyEngine
from coverage_engine.services.hierarchy.location_store import LocationStore


def make_node(
    node_id: str,
    name: str,
    type: LocationType,
    parent_id: Optional[str] = None,
    is_city: bool = False,
    **kwargs,
) -> LocationNode:
    return LocationNode(
        id=node_id,
        name=name,
        type=type,
        parent_id=parent_id,
        metadata=LocationMetadata(is_city=is_city),
        **kwargs,
    )


def make_area(
    area_id: str,
    units: List[str],
    name: Optional[str] = None,
    is_active: bool = True,
    updated_at: Optional[datetime] = None,
) -> CoverageArea:
    return CoverageArea(
        id=area_id,
        name=name or area_id,
        geographic_unit_ids=units,
        is_active=is_active,
        updated_at=updated_at,
    )


def make_assignment(assignment_id: str, coverage_area_id: str, is_active: bool = True) -> UserCoverageAssignment:
    return UserCoverageAssignment(
        id=assignment_id,
        user_id=f"user-{assignment_id}",
        coverage_area_id=coverage_area_id,
        is_active=is_active,
        assigned_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def scenario_nodes() -> List[LocationNode]:
    """P -> D1 -> {M1, M2}, plus P2 -> C1 (city acting as district) -> M3 -> B1."""
    return [
        make_node("P", "Province", LocationType.PROVINCE),
        make_node("D1", "District One", LocationType.DISTRICT, parent_id="P"),
        make_node("M1", "Municipality One", LocationType.MUNICIPALITY, parent_id="D1", code="M-001"),
        make_node("M2", "Municipality Two", LocationType.MUNICIPALITY, parent_id="D1", code="M-002"),
        make_node("P2", "Another Province", LocationType.PROVINCE),
        make_node("C1", "City One", LocationType.CITY, parent_id="P2", is_city=True),
        make_node("M3", "Municipality Three", LocationType.MUNICIPALITY, parent_id="C1"),
        make_node("B1", "Barangay One", LocationType.BARANGAY, parent_id="M3"),
    ]


@pytest.fixture
def scenario_areas() -> List[CoverageArea]:
    return [
        make_area("CA1", ["M1", "M2"], updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc)),
        make_area("CA2", ["M1", "M2", "M3"], updated_at=datetime(2024, 2, 1, tzinfo=timezone.utc)),
        make_area("CA3", ["M3", "B1"]),
    ]


@pytest.fixture
def data_source(scenario_nodes, scenario_areas) -> InMemoryLocationDataSource:
    return InMemoryLocationDataSource(
        locations=scenario_nodes,
        coverage_areas=scenario_areas,
        assignments=[make_assignment("A1", "CA1"), make_assignment("A2", "CA1", is_active=False)],
    )


@pytest.fixture
def loaded_store(scenario_nodes) -> LocationStore:
    """Store holding every scenario node with all child lists marked complete."""
    store = LocationStore(scenario_nodes)
    for node in scenario_nodes:
        store.mark_children_complete(node.id)
    return store


@pytest.fixture
def engine(data_source) -> GeoHierarchyEngine:
    return GeoHierarchyEngine(data_source)
