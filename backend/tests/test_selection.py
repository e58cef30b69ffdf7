import random

import pytest

from conftest import make_node
from coverage_engine.core.errors import NotFoundError
from coverage_engine.schemas.location import LocationType
from coverage_engine.services.hierarchy.location_store import LocationStore
from coverage_engine.services.hierarchy.selection import SelectionPropagator, SelectionState


def test_toggle_subtree_scenario(loaded_store):
    selection = SelectionPropagator(loaded_store)

    assert selection.toggle_subtree("D1") is True
    assert selection.selected == {"D1", "M1", "M2"}
    assert selection.is_indeterminate("P")

    selection.toggle("M1")
    assert not selection.is_selected("D1")
    assert selection.is_indeterminate("D1")
    assert selection.selected == {"M2"}


def test_toggle_single_node_does_not_touch_descendants(loaded_store):
    selection = SelectionPropagator(loaded_store)

    selection.toggle("D1")
    assert selection.selected == {"D1"}
    assert not selection.is_selected("M1")


def test_selecting_all_children_does_not_select_parent(loaded_store):
    selection = SelectionPropagator(loaded_store)
    selection.toggle("M1")
    selection.toggle("M2")

    assert not selection.is_selected("D1")
    assert selection.state_of("D1") == SelectionState.INDETERMINATE


def test_toggle_subtree_twice_restores_selection(loaded_store):
    selection = SelectionPropagator(loaded_store, initial_ids=["M3"])
    before = selection.selected

    selection.toggle_subtree("P")
    selection.toggle_subtree("P")

    assert selection.selected == before


def test_toggle_subtree_twice_keeps_selected_ancestor(loaded_store):
    selection = SelectionPropagator(loaded_store)
    selection.toggle_subtree("P")
    before = selection.selected

    assert selection.toggle_subtree("D1") is False
    assert selection.selected == {"P"}
    assert selection.toggle_subtree("D1") is True

    assert selection.selected == before


def test_indeterminate_propagates_through_unloaded_levels(loaded_store):
    selection = SelectionPropagator(loaded_store, initial_ids=["B1"])
    assert selection.is_indeterminate("M3")
    assert selection.is_indeterminate("C1")
    assert selection.is_indeterminate("P2")
    assert not selection.is_indeterminate("P")


def test_leaf_without_loaded_children_is_never_indeterminate(scenario_nodes):
    store = LocationStore(scenario_nodes[:1])
    selection = SelectionPropagator(store)
    assert not selection.is_indeterminate("P")


def test_hidden_types_are_skipped_by_subtree_toggle(loaded_store):
    selection = SelectionPropagator(loaded_store, hidden_types=[LocationType.BARANGAY])

    selection.toggle_subtree("P2")
    assert selection.selected == {"P2", "C1", "M3"}


def test_toggle_unknown_node_raises(loaded_store):
    with pytest.raises(NotFoundError):
        SelectionPropagator(loaded_store).toggle("nope")


def test_discard_forgets_removed_ids(loaded_store):
    selection = SelectionPropagator(loaded_store, initial_ids=["M1", "M2"])
    selection.discard(["M1"])
    assert selection.selected == {"M2"}


def test_compute_states_covers_every_node(loaded_store):
    selection = SelectionPropagator(loaded_store, initial_ids=["M2"])
    states = selection.compute_states()

    assert set(states) == {node.id for node in loaded_store.nodes()}
    assert states["M2"] == SelectionState.SELECTED
    assert states["D1"] == SelectionState.INDETERMINATE
    assert states["P"] == SelectionState.INDETERMINATE
    assert states["P2"] == SelectionState.UNSELECTED


def _random_store(rng: random.Random, size: int) -> LocationStore:
    nodes = []
    for index in range(size):
        parent_id = f"n{rng.randrange(index)}" if index and rng.random() < 0.85 else None
        nodes.append(make_node(f"n{index}", f"Node {index}", LocationType.CUSTOM, parent_id=parent_id))
    store = LocationStore(nodes)
    for node in nodes:
        store.mark_children_complete(node.id)
    return store


@pytest.mark.parametrize("seed", range(25))
def test_selected_nodes_are_never_indeterminate(seed):
    rng = random.Random(seed)
    store = _random_store(rng, rng.randint(1, 40))
    ids = [node.id for node in store.nodes()]
    selection = SelectionPropagator(store)

    for _ in range(30):
        node_id = rng.choice(ids)
        if rng.random() < 0.5:
            selection.toggle(node_id)
        else:
            selection.toggle_subtree(node_id)
        for candidate in ids:
            if selection.is_selected(candidate):
                assert not selection.is_indeterminate(candidate)


@pytest.mark.parametrize("seed", range(25))
def test_toggle_subtree_pairs_are_idempotent(seed):
    rng = random.Random(seed)
    store = _random_store(rng, rng.randint(1, 40))
    ids = [node.id for node in store.nodes()]
    selection = SelectionPropagator(store)
    target = rng.choice(ids)
    subtree = set(selection.subtree_ids(target))
    # Ancestors and unrelated nodes are arbitrary; the subtree starts uniform
    selection.select_many(node_id for node_id in ids if node_id not in subtree and rng.random() < 0.4)
    if rng.random() < 0.5:
        selection.select_many(subtree)
    before = selection.selected

    selection.toggle_subtree(target)
    selection.toggle_subtree(target)

    assert selection.selected == before
