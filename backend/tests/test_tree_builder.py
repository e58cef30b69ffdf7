import random

import pytest

from conftest import make_node
from coverage_engine.core.errors import CycleDetectedError
from coverage_engine.schemas.location import LocationType
from coverage_engine.services.hierarchy.tree_builder import build_tree, filter_tree, flatten_tree


def _random_forest(rng: random.Random, size: int):
    nodes = []
    for index in range(size):
        parent_id = None
        if index and rng.random() < 0.8:
            parent_id = f"n{rng.randrange(index)}"
        nodes.append(make_node(f"n{index}", f"Node {rng.randrange(1000)}", LocationType.CUSTOM, parent_id=parent_id))
    rng.shuffle(nodes)
    return nodes


def test_build_tree_links_children_and_sorts_by_name(scenario_nodes):
    forest = build_tree(scenario_nodes)

    assert [root.id for root in forest] == ["P2", "P"]  # "Another Province" < "Province"
    province = forest[1]
    assert [child.id for child in province.children] == ["D1"]
    assert [child.id for child in province.children[0].children] == ["M1", "M2"]


def test_build_tree_sorting_is_case_insensitive():
    nodes = [
        make_node("a", "beta", LocationType.CUSTOM),
        make_node("b", "Alpha", LocationType.CUSTOM),
        make_node("c", "alpha", LocationType.CUSTOM),
    ]
    assert [root.id for root in build_tree(nodes)] == ["b", "c", "a"]


def test_nodes_with_missing_parent_become_roots():
    nodes = [
        make_node("M1", "Municipality One", LocationType.MUNICIPALITY, parent_id="D-unknown"),
        make_node("B1", "Barangay One", LocationType.BARANGAY, parent_id="M1"),
    ]
    forest = build_tree(nodes)
    assert [root.id for root in forest] == ["M1"]
    assert [child.id for child in forest[0].children] == ["B1"]


def test_build_tree_of_empty_input_is_empty():
    assert build_tree([]) == []


@pytest.mark.parametrize("seed", range(20))
def test_flatten_has_no_duplicates_and_child_count_matches(seed):
    rng = random.Random(seed)
    nodes = _random_forest(rng, rng.randint(1, 60))

    forest = build_tree(nodes)
    flat = flatten_tree(forest)

    ids = [node.id for node in flat]
    assert len(ids) == len(set(ids)) == len(nodes)

    child_total = 0
    stack = list(forest)
    while stack:
        current = stack.pop()
        child_total += len(current.children)
        stack.extend(current.children)
    assert child_total == len(nodes) - len(forest)


def test_cycle_is_reported_with_its_members():
    nodes = [
        make_node("root", "Root", LocationType.PROVINCE),
        make_node("a", "A", LocationType.CUSTOM, parent_id="c"),
        make_node("b", "B", LocationType.CUSTOM, parent_id="a"),
        make_node("c", "C", LocationType.CUSTOM, parent_id="b"),
    ]
    with pytest.raises(CycleDetectedError) as exc_info:
        build_tree(nodes)
    assert set(exc_info.value.node_ids) == {"a", "b", "c"}


def test_self_parent_is_a_cycle():
    with pytest.raises(CycleDetectedError):
        build_tree([make_node("x", "X", LocationType.CUSTOM, parent_id="x")])


def test_excluded_types_are_dropped_with_their_subtrees(scenario_nodes):
    forest = build_tree(scenario_nodes, exclude_types=[LocationType.MUNICIPALITY])
    ids = {node.id for node in flatten_tree(forest)}
    assert ids == {"P", "D1", "P2", "C1"}


def test_exclude_types_accepts_plain_strings(scenario_nodes):
    forest = build_tree(scenario_nodes, exclude_types=["barangay"])
    assert "B1" not in {node.id for node in flatten_tree(forest)}


def test_filter_tree_keeps_matches_and_their_ancestors(scenario_nodes):
    forest = filter_tree(build_tree(scenario_nodes), "two")
    assert [root.id for root in forest] == ["P"]
    assert [node.id for node in flatten_tree(forest)] == ["P", "D1", "M2"]


def test_filter_tree_matches_code(scenario_nodes):
    forest = filter_tree(build_tree(scenario_nodes), "m-001")
    assert [node.id for node in flatten_tree(forest)] == ["P", "D1", "M1"]


def test_blank_filter_returns_forest_unchanged(scenario_nodes):
    forest = build_tree(scenario_nodes)
    assert filter_tree(forest, "  ") is forest
