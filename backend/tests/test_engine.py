import asyncio

import pytest

from conftest import make_area
from coverage_engine.core.errors import (
    CycleDetectedError,
    FetchFailedError,
    IntegrityViolationError,
    InvalidParentTypeError,
)
from coverage_engine.schemas.coverage_area import CoverageAreaUpdate
from coverage_engine.schemas.location import LocationCreate, LocationMetadata, LocationType, LocationUpdate
from coverage_engine.services.datasource.memory import InMemoryLocationDataSource
from coverage_engine.services.hierarchy.engine import GeoHierarchyEngine


def _flatten(states):
    stack = list(states)
    result = {}
    while stack:
        current = stack.pop()
        result[current.id] = current
        stack.extend(current.children)
    return result


def test_load_roots_loads_provinces_only(engine):
    roots = asyncio.run(engine.load_roots())

    assert {node.id for node in roots} == {"P", "P2"}
    assert len(engine.store) == 2


def test_auto_expand_roots_opens_the_whole_tree(engine):
    async def scenario():
        await engine.load_roots()
        return await engine.auto_expand_roots()

    failed = asyncio.run(scenario())

    assert failed == []
    states = _flatten(engine.snapshot())
    assert set(states) == {"P", "D1", "M1", "M2", "P2", "C1", "M3", "B1"}
    assert states["D1"].expanded
    assert states["M1"].has_children is False


def test_snapshot_hides_children_of_collapsed_nodes(engine):
    async def scenario():
        await engine.load_roots()
        await engine.expand("P", mode="shallow")

    asyncio.run(scenario())
    snapshot = engine.snapshot()

    by_id = {root.id: root for root in snapshot}
    assert [child.id for child in by_id["P"].children] == ["D1"]
    assert by_id["P"].children[0].has_children is None
    assert by_id["P2"].children == []
    assert by_id["P2"].has_children is None


def test_toggle_subtree_loads_unexpanded_descendants(engine):
    async def scenario():
        await engine.load_roots()
        return await engine.toggle_subtree("P")

    suggestion = asyncio.run(scenario())

    assert engine.selection.selected == {"P", "D1", "M1", "M2"}
    assert suggestion is None
    assert not engine.expansion.is_expanded("P")


def test_selection_scenario_through_engine(engine):
    async def scenario():
        await engine.load_roots()
        await engine.expand("P")
        await engine.toggle_subtree("D1")
        await engine.toggle("M1")

    asyncio.run(scenario())

    assert engine.is_indeterminate("D1")
    assert not engine.is_selected("D1")
    assert engine.is_indeterminate("P")
    assert engine.suggestion.id == "CA1"


def test_toggle_refreshes_suggestion(engine):
    async def scenario():
        await engine.load_full_tree()
        first = await engine.toggle("M1")
        second = await engine.toggle("M3")
        return first, second

    first, second = asyncio.run(scenario())
    assert first.id == "CA1"
    assert second.id == "CA2"


def test_confirm_uses_suggested_area(engine):
    async def scenario():
        await engine.load_full_tree()
        await engine.toggle("M2")
        return await engine.confirm()

    result = asyncio.run(scenario())
    assert result.coverage_area_ids == ["CA1"]
    assert result.location_ids == ["M2"]
    assert result.created_coverage_area is None


def test_confirm_creates_area_when_nothing_matches(engine, data_source):
    async def scenario():
        await engine.load_full_tree()
        await engine.toggle("D1")
        return await engine.confirm(new_coverage_area_name="  North Cluster ")

    result = asyncio.run(scenario())

    created = result.created_coverage_area
    assert created.name == "North Cluster"
    assert created.geographic_unit_ids == ["D1"]
    assert result.coverage_area_ids == [created.id]
    assert created.id in data_source.coverage_areas


def test_confirm_requires_selection_and_name(engine):
    asyncio.run(engine.load_full_tree())
    with pytest.raises(ValueError, match="select at least one"):
        asyncio.run(engine.confirm())

    asyncio.run(engine.toggle("D1"))
    with pytest.raises(ValueError, match="name"):
        asyncio.run(engine.confirm())


def test_confirm_can_skip_the_suggestion(engine):
    async def scenario():
        await engine.load_full_tree()
        await engine.toggle("M1")
        return await engine.confirm(use_suggested=False, new_coverage_area_name="Custom")

    result = asyncio.run(scenario())
    assert result.created_coverage_area is not None
    assert result.coverage_area_ids != ["CA1"]


def test_deleting_district_with_children_fails(engine):
    asyncio.run(engine.load_roots())

    with pytest.raises(IntegrityViolationError) as exc_info:
        asyncio.run(engine.delete_location("D1"))

    assert len(exc_info.value.blocking_ids) >= 1
    assert "M1" in exc_info.value.blocking_ids


def test_delete_unreferenced_leaf_updates_store_and_selection(engine, data_source):
    async def scenario():
        await engine.load_roots()
        await engine.expand("P", mode="full")
        created = await engine.create_location(
            LocationCreate(name="Municipality Four", type=LocationType.MUNICIPALITY, parent_id="D1")
        )
        await engine.toggle(created.id)
        await engine.delete_location(created.id)
        return created

    created = asyncio.run(scenario())
    assert created.id not in engine.store
    assert created.id not in data_source.locations
    assert not engine.is_selected(created.id)
    assert set(engine.store.child_ids("D1")) == {"M1", "M2"}


def test_backend_refusal_resyncs_and_reraises(scenario_nodes):
    class RefusingDataSource(InMemoryLocationDataSource):
        def delete_location(self, location_id):
            raise FetchFailedError("backend unavailable", node_id=location_id)

    data_source = RefusingDataSource(locations=scenario_nodes)
    engine = GeoHierarchyEngine(data_source)

    async def scenario():
        await engine.load_full_tree()
        await engine.delete_location("M2")

    with pytest.raises(FetchFailedError):
        asyncio.run(scenario())
    assert "M2" in engine.store
    assert data_source.call_count("get_children") >= 1


def test_create_rejects_invalid_parent_type(engine, data_source):
    payload = LocationCreate(name="Barangay X", type=LocationType.BARANGAY, parent_id="D1")

    with pytest.raises(InvalidParentTypeError):
        asyncio.run(engine.create_location(payload))
    assert data_source.call_count("create_location") == 0


def test_reparent_under_own_descendant_is_a_cycle(engine):
    asyncio.run(engine.load_full_tree())

    with pytest.raises(CycleDetectedError):
        asyncio.run(engine.reparent("D1", "M1"))
    with pytest.raises(CycleDetectedError):
        asyncio.run(engine.reparent("D1", "D1"))


def test_reparent_checks_type_rules(engine):
    asyncio.run(engine.load_full_tree())

    with pytest.raises(InvalidParentTypeError):
        asyncio.run(engine.reparent("M1", "P"))


def test_reparent_moves_node_in_store(engine, data_source):
    asyncio.run(engine.load_full_tree())

    moved = asyncio.run(engine.reparent("M2", "C1"))

    assert moved.parent_id == "C1"
    assert set(engine.store.child_ids("C1")) == {"M2", "M3"}
    assert engine.store.child_ids("D1") == ["M1"]
    assert data_source.locations["M2"].parent_id == "C1"


def test_type_change_must_keep_children_valid(engine):
    asyncio.run(engine.load_full_tree())

    with pytest.raises(InvalidParentTypeError):
        asyncio.run(engine.update_location("C1", LocationUpdate(type=LocationType.PROVINCE, parent_id=None)))


def test_renaming_skips_placement_checks(engine):
    asyncio.run(engine.load_full_tree())
    updated = asyncio.run(engine.update_location("M1", LocationUpdate(name="Renamed")))
    assert updated.name == "Renamed"
    assert engine.store.require("M1").name == "Renamed"


def test_delete_coverage_area_with_users_requires_force(engine, data_source):
    with pytest.raises(IntegrityViolationError) as exc_info:
        asyncio.run(engine.delete_coverage_area("CA1"))
    assert exc_info.value.active_assignment_count == 1
    assert data_source.coverage_areas["CA1"].is_active

    check = asyncio.run(engine.delete_coverage_area("CA1", force=True))
    assert not check.ok
    assert not data_source.coverage_areas["CA1"].is_active


def test_deleted_area_is_no_longer_suggested(engine):
    async def scenario():
        await engine.load_full_tree()
        first = await engine.toggle("M1")
        await engine.delete_coverage_area("CA2")
        await engine.delete_coverage_area("CA1", force=True)
        second = await engine.refresh_suggestion()
        return first, second

    first, second = asyncio.run(scenario())
    assert first.id == "CA1"
    assert second is None


def test_active_area_cannot_lose_all_units(engine):
    with pytest.raises(ValueError):
        asyncio.run(engine.update_coverage_area("CA2", CoverageAreaUpdate(geographic_unit_ids=[])))

    deactivated = asyncio.run(
        engine.update_coverage_area("CA2", CoverageAreaUpdate(geographic_unit_ids=[], is_active=False))
    )
    assert deactivated.geographic_unit_ids == []


def test_match_uses_smallest_area(engine, data_source):
    data_source.coverage_areas["CA4"] = make_area("CA4", ["M3"])
    assert asyncio.run(engine.match(["M3"])).id == "CA4"


def test_hidden_types_are_left_out_of_snapshots(data_source):
    engine = GeoHierarchyEngine(data_source, hidden_types=["barangay"])
    asyncio.run(engine.load_full_tree())

    states = _flatten(engine.snapshot(visible_only=False))
    assert "B1" not in states
    assert states["M3"].has_children is False


def test_search_snapshot_shows_matches_below_collapsed_nodes(engine):
    asyncio.run(engine.load_full_tree())
    states = _flatten(engine.snapshot(search="barangay"))
    assert set(states) == {"P2", "C1", "M3", "B1"}


def test_type_change_checks_children_that_were_never_loaded(engine, data_source):
    # A fresh engine has not fetched the district's municipalities yet
    with pytest.raises(InvalidParentTypeError) as exc_info:
        asyncio.run(engine.update_location("D1", LocationUpdate(type=LocationType.CITY)))

    assert exc_info.value.child_type == "municipality"
    assert data_source.locations["D1"].type == LocationType.DISTRICT


def test_type_change_to_city_acting_as_district_is_allowed(engine):
    payload = LocationUpdate(type=LocationType.CITY, metadata=LocationMetadata(is_city=True))

    updated = asyncio.run(engine.update_location("D1", payload))

    assert updated.type == LocationType.CITY
    assert updated.metadata.is_city


def test_clearing_is_city_with_municipalities_below_is_rejected(engine, data_source):
    with pytest.raises(InvalidParentTypeError):
        asyncio.run(engine.update_location("C1", LocationUpdate(metadata=LocationMetadata(is_city=False))))
    assert data_source.locations["C1"].metadata.is_city


def test_ancestors_fetch_missing_parents(engine):
    ancestors = asyncio.run(engine.ancestors("B1"))
    assert [node.id for node in ancestors] == ["M3", "C1", "P2"]

    with_self = asyncio.run(engine.ancestors("B1", include_self=True))
    assert [node.id for node in with_self] == ["B1", "M3", "C1", "P2"]
    assert asyncio.run(engine.ancestors("P")) == []


def test_descendants_load_the_whole_subtree(engine):
    descendants = asyncio.run(engine.descendants("P2"))
    assert [node.id for node in descendants] == ["C1", "M3", "B1"]

    with_self = asyncio.run(engine.descendants("D1", include_self=True))
    assert [node.id for node in with_self][0] == "D1"
    assert {node.id for node in with_self} == {"D1", "M1", "M2"}


def test_coverage_area_units_skip_missing_locations(engine, data_source):
    data_source.coverage_areas["CA3"] = make_area("CA3", ["M3", "B1", "gone"])

    units = asyncio.run(engine.coverage_area_units("CA3"))

    assert [node.id for node in units] == ["M3", "B1"]


def test_confirm_rereads_candidates_changed_elsewhere(engine, data_source):
    async def scenario():
        await engine.load_full_tree()
        await engine.toggle("M1")
        await engine.toggle("M2")
        suggested = engine.suggestion
        # Deleted through another engine or process
        data_source.delete_coverage_area("CA1")
        return suggested, await engine.confirm()

    suggested, result = asyncio.run(scenario())

    assert suggested.id == "CA1"
    assert result.coverage_area_ids == ["CA2"]


def test_coverage_change_hook_runs_after_mutations(data_source):
    calls = []
    engine = GeoHierarchyEngine(data_source, on_coverage_change=lambda: calls.append("changed"))

    asyncio.run(engine.delete_coverage_area("CA2"))
    asyncio.run(engine.update_coverage_area("CA3", CoverageAreaUpdate(name="Renamed")))

    assert calls == ["changed", "changed"]


def test_dropped_candidates_refresh_the_suggestion(engine, data_source):
    async def scenario():
        await engine.load_full_tree()
        await engine.toggle("M1")
        data_source.delete_coverage_area("CA1")
        engine.drop_coverage_candidates()
        return await engine.current_suggestion()

    assert asyncio.run(scenario()).id == "CA2"
