"""In-memory store of location records with a parent -> children index."""

import logging
from typing import Dict, Iterable, List, Optional, Set

from coverage_engine.core.errors import CycleDetectedError, NotFoundError
from coverage_engine.schemas.location import LocationNode

logger = logging.getLogger(__name__)


class LocationStore:
    """
    Flat set of LocationNode records plus the derived adjacency index.

    The index is keyed by parent id and is kept current on every mutation, so
    children that arrive before their parent are linked as soon as the parent
    is merged. ``_complete`` holds the ids whose full child list has been
    fetched; for those an empty child set means "no children exist".
    """

    def __init__(self, nodes: Optional[Iterable[LocationNode]] = None):
        self._nodes: Dict[str, LocationNode] = {}
        self._children: Dict[str, Set[str]] = {}
        self._complete: Set[str] = set()
        if nodes:
            self.merge(nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def get(self, node_id: str) -> Optional[LocationNode]:
        return self._nodes.get(node_id)

    def require(self, node_id: str) -> LocationNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFoundError("Location", node_id)
        return node

    def nodes(self) -> List[LocationNode]:
        return list(self._nodes.values())

    def upsert(self, node: LocationNode) -> None:
        """Insert or replace a node, relinking it if its parent changed."""
        previous = self._nodes.get(node.id)
        if previous is not None and previous.parent_id != node.parent_id:
            self._unlink(node.id, previous.parent_id)
        self._nodes[node.id] = node
        if node.parent_id is not None:
            self._children.setdefault(node.parent_id, set()).add(node.id)

    def merge(self, nodes: Iterable[LocationNode]) -> int:
        count = 0
        for node in nodes:
            self.upsert(node)
            count += 1
        return count

    def replace_children(self, parent_id: str, children: Iterable[LocationNode]) -> List[LocationNode]:
        """
        Record the authoritative child list of ``parent_id``.

        Children previously indexed under the parent but absent from the new
        list are dropped together with their subtrees.

        Args:
            parent_id: Parent whose children were fetched
            children: Complete list of children returned by the data source

        Returns:
            The merged children
        """
        children = [child.model_copy(update={"parent_id": parent_id}) for child in children]
        fresh_ids = {child.id for child in children}
        for stale_id in self._children.get(parent_id, set()) - fresh_ids:
            if stale_id in self._nodes:
                logger.debug(f"Dropping stale child {stale_id} of {parent_id}")
                self.remove(stale_id, cascade=True)
            else:
                self._unlink(stale_id, parent_id)
        self.merge(children)
        self._complete.add(parent_id)
        return children

    def remove(self, node_id: str, cascade: bool = False) -> List[str]:
        """
        Remove a node from the store.

        Args:
            node_id: Node to remove
            cascade: Also remove every loaded descendant

        Returns:
            Ids of all removed nodes
        """
        self.require(node_id)
        removed = [node_id]
        if cascade:
            removed.extend(self.descendant_ids(node_id))
        for removed_id in removed:
            removed_node = self._nodes.pop(removed_id)
            self._unlink(removed_id, removed_node.parent_id)
            self._complete.discard(removed_id)
        if cascade:
            for removed_id in removed:
                self._children.pop(removed_id, None)
        # Without cascade, orphaned children stay indexed and surface as roots
        return removed

    def clear(self) -> None:
        self._nodes.clear()
        self._children.clear()
        self._complete.clear()

    def _unlink(self, node_id: str, parent_id: Optional[str]) -> None:
        if parent_id is None:
            return
        siblings = self._children.get(parent_id)
        if siblings is not None:
            siblings.discard(node_id)
            if not siblings:
                del self._children[parent_id]

    def child_ids(self, node_id: str) -> List[str]:
        return [child_id for child_id in self._children.get(node_id, ()) if child_id in self._nodes]

    def children_of(self, node_id: str) -> List[LocationNode]:
        return [self._nodes[child_id] for child_id in self.child_ids(node_id)]

    def has_complete_children(self, node_id: str) -> bool:
        return node_id in self._complete

    def mark_children_complete(self, node_id: str) -> None:
        self._complete.add(node_id)

    def known_has_children(self, node_id: str) -> Optional[bool]:
        """True/False when known, None when the children were never fetched."""
        if self.child_ids(node_id):
            return True
        if node_id in self._complete:
            return False
        return None

    def roots(self) -> List[LocationNode]:
        return [
            node for node in self._nodes.values()
            if node.parent_id is None or node.parent_id not in self._nodes
        ]

    def descendant_ids(self, node_id: str) -> List[str]:
        """
        Collect every loaded descendant of a node, nearest first.

        Raises:
            CycleDetectedError: If the node is reachable from itself
        """
        self.require(node_id)
        result: List[str] = []
        visited: Set[str] = {node_id}
        frontier = [node_id]
        while frontier:
            next_frontier = []
            for current in frontier:
                for child_id in self.child_ids(current):
                    if child_id in visited:
                        raise CycleDetectedError([node_id, child_id])
                    visited.add(child_id)
                    result.append(child_id)
                    next_frontier.append(child_id)
            frontier = next_frontier
        return result

    def ancestor_ids(self, node_id: str) -> List[str]:
        """Walk loaded parents from the node upwards, nearest first."""
        node = self.require(node_id)
        result: List[str] = []
        seen: Set[str] = {node_id}
        parent_id = node.parent_id
        while parent_id is not None and parent_id in self._nodes:
            if parent_id in seen:
                raise CycleDetectedError(result + [parent_id])
            seen.add(parent_id)
            result.append(parent_id)
            parent_id = self._nodes[parent_id].parent_id
        return result

    def is_descendant(self, candidate_id: str, ancestor_id: str) -> bool:
        if candidate_id not in self._nodes:
            return False
        return ancestor_id in self.ancestor_ids(candidate_id)
