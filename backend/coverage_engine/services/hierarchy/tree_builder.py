"""Builds a name-ordered forest from a flat parent-pointer list."""

import logging
from dataclasses import dataclass, field
from typing import Collection, Dict, Iterable, List, Optional, Set

from coverage_engine.core.errors import CycleDetectedError
from coverage_engine.schemas.location import LocationNode, type_values

logger = logging.getLogger(__name__)


@dataclass
class TreeNode:
    """A location together with its (sorted) children."""

    node: LocationNode
    children: List["TreeNode"] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.node.id


def sort_key(node: LocationNode):
    return (node.name.casefold(), node.name, node.id)


def build_tree(
    nodes: Iterable[LocationNode],
    exclude_types: Optional[Collection[str]] = None,
) -> List[TreeNode]:
    """
    Build a forest from a flat list of locations.

    Nodes whose parent is not part of the input are roots of the slice. Every
    level is sorted by name, case-insensitively.

    Args:
        nodes: Flat, possibly partial list of locations
        exclude_types: Location types to drop together with their subtrees

    Returns:
        Root tree nodes

    Raises:
        CycleDetectedError: If a node is reachable from itself through parent links
    """
    # Pass 1: index
    index: Dict[str, TreeNode] = {}
    for node in nodes:
        index[node.id] = TreeNode(node=node)

    # Pass 2: link
    roots: List[TreeNode] = []
    for tree_node in index.values():
        parent_id = tree_node.node.parent_id
        if parent_id is not None and parent_id in index:
            index[parent_id].children.append(tree_node)
        else:
            roots.append(tree_node)

    reachable = _count_reachable(roots)
    if reachable != len(index):
        # Members of a parent cycle never hang off a root
        raise CycleDetectedError(_find_cycle(index, roots))

    excluded = type_values(exclude_types)
    if excluded:
        roots = [root for root in roots if root.node.type.value not in excluded]

    stack = list(roots)
    while stack:
        current = stack.pop()
        if excluded:
            current.children = [
                child for child in current.children if child.node.type.value not in excluded
            ]
        current.children.sort(key=lambda child: sort_key(child.node))
        stack.extend(current.children)

    roots.sort(key=lambda root: sort_key(root.node))
    return roots


def _count_reachable(roots: List[TreeNode]) -> int:
    count = 0
    stack = list(roots)
    while stack:
        current = stack.pop()
        count += 1
        stack.extend(current.children)
    return count


def _find_cycle(index: Dict[str, TreeNode], roots: List[TreeNode]) -> List[str]:
    reachable: Set[str] = set()
    stack = list(roots)
    while stack:
        current = stack.pop()
        reachable.add(current.id)
        stack.extend(current.children)

    start = next(node_id for node_id in index if node_id not in reachable)
    path: List[str] = []
    position: Dict[str, int] = {}
    current_id: Optional[str] = start
    while current_id is not None and current_id not in position:
        position[current_id] = len(path)
        path.append(current_id)
        current_id = index[current_id].node.parent_id
    # current_id is the first repeated node, i.e. the entry into the cycle
    cycle = path[position[current_id]:]
    logger.error(f"Parent cycle in location data: {' -> '.join(cycle)}")
    return cycle


def flatten_tree(forest: List[TreeNode]) -> List[LocationNode]:
    """Pre-order flatten of a forest."""
    result: List[LocationNode] = []
    stack = list(reversed(forest))
    while stack:
        current = stack.pop()
        result.append(current.node)
        stack.extend(reversed(current.children))
    return result


def filter_tree(forest: List[TreeNode], query: str) -> List[TreeNode]:
    """
    Keep nodes whose name or code contains ``query`` (case-insensitive),
    plus the ancestors needed to reach them.
    """
    query = (query or "").strip().casefold()
    if not query:
        return forest

    def matches(node: LocationNode) -> bool:
        return query in node.name.casefold() or (
            node.code is not None and query in node.code.casefold()
        )

    def prune(tree_node: TreeNode) -> Optional[TreeNode]:
        kept_children = [c for c in (prune(child) for child in tree_node.children) if c is not None]
        if matches(tree_node.node) or kept_children:
            return TreeNode(node=tree_node.node, children=kept_children)
        return None

    return [kept for kept in (prune(root) for root in forest) if kept is not None]
