"""Multi-select state over the location hierarchy."""

import logging
from enum import Enum
from typing import Collection, Dict, FrozenSet, Iterable, List, Optional, Set

from coverage_engine.core.errors import CycleDetectedError
from coverage_engine.schemas.location import type_values
from coverage_engine.services.hierarchy.location_store import LocationStore

logger = logging.getLogger(__name__)


class SelectionState(str, Enum):
    SELECTED = "selected"
    UNSELECTED = "unselected"
    INDETERMINATE = "indeterminate"


class SelectionPropagator:
    """
    Holds the set of selected location ids and derives tri-state status.

    A directly selected node stands for its whole subtree, so toggling a
    single node off also deselects any selected ancestor. Subtree toggles
    only touch the subtree itself. Selection never propagates
    upwards: selecting every child of a node does not select the node.
    Subtree operations work on the ids currently in the store; callers load
    the full subtree before calling ``toggle_subtree``.
    """

    def __init__(
        self,
        store: LocationStore,
        hidden_types: Optional[Collection[str]] = None,
        initial_ids: Optional[Iterable[str]] = None,
    ):
        self.store = store
        self.hidden_types: FrozenSet[str] = type_values(hidden_types)
        self._selected: Set[str] = set(initial_ids or ())

    @property
    def selected(self) -> FrozenSet[str]:
        return frozenset(self._selected)

    def __len__(self) -> int:
        return len(self._selected)

    def is_selected(self, node_id: str) -> bool:
        return node_id in self._selected

    def toggle(self, node_id: str) -> bool:
        """
        Flip a single node without touching its descendants.

        Returns:
            True if the node is selected afterwards
        """
        self.store.require(node_id)
        if node_id in self._selected:
            self._deselect(node_id)
            return False
        self._selected.add(node_id)
        return True

    def toggle_subtree(self, node_id: str) -> bool:
        """
        Select the node and every loaded descendant, or deselect them all
        when they are already all selected.

        Returns:
            True if the subtree is selected afterwards
        """
        subtree = self.subtree_ids(node_id)
        if all(member in self._selected for member in subtree):
            self.deselect_many(subtree)
            return False
        self._selected.update(subtree)
        return True

    def subtree_ids(self, node_id: str) -> List[str]:
        """The node plus its loaded descendants, skipping hidden types."""
        self.store.require(node_id)
        result = [node_id]
        stack = self.visible_child_ids(node_id)
        while stack:
            current = stack.pop()
            result.append(current)
            stack.extend(self.visible_child_ids(current))
        return result

    def visible_child_ids(self, node_id: str) -> List[str]:
        if not self.hidden_types:
            return self.store.child_ids(node_id)
        return [
            child.id for child in self.store.children_of(node_id)
            if child.type.value not in self.hidden_types
        ]

    def _deselect(self, node_id: str) -> None:
        self._selected.discard(node_id)
        # A selected ancestor would claim the id just removed
        for ancestor_id in self.store.ancestor_ids(node_id):
            self._selected.discard(ancestor_id)

    def select_many(self, node_ids: Iterable[str]) -> None:
        self._selected.update(node_ids)

    def deselect_many(self, node_ids: Iterable[str]) -> None:
        for node_id in node_ids:
            self._selected.discard(node_id)

    def replace(self, node_ids: Iterable[str]) -> None:
        self._selected = set(node_ids)

    def clear(self) -> None:
        self._selected.clear()

    def discard(self, node_ids: Iterable[str]) -> None:
        """Forget ids that no longer exist."""
        self.deselect_many(node_ids)

    def is_indeterminate(self, node_id: str) -> bool:
        """
        True iff the node is not selected and at least one loaded child is
        selected or itself indeterminate.
        """
        self.store.require(node_id)
        if node_id in self._selected:
            return False
        return self._states_for([node_id])[node_id] == SelectionState.INDETERMINATE

    def state_of(self, node_id: str) -> SelectionState:
        self.store.require(node_id)
        return self._states_for([node_id])[node_id]

    def compute_states(self) -> Dict[str, SelectionState]:
        """Selection state of every node in the store, computed in one pass."""
        return self._states_for([node.id for node in self.store.roots()])

    def _states_for(self, top_ids: List[str]) -> Dict[str, SelectionState]:
        # Iterative post-order so deep custom hierarchies do not hit the recursion limit
        states: Dict[str, SelectionState] = {}
        visiting: Set[str] = set()
        stack = [(node_id, False) for node_id in top_ids]
        while stack:
            node_id, children_done = stack.pop()
            if node_id in states:
                continue
            children = self.visible_child_ids(node_id)
            if not children_done:
                if node_id in visiting:
                    raise CycleDetectedError([node_id])
                visiting.add(node_id)
                stack.append((node_id, True))
                stack.extend((child_id, False) for child_id in children if child_id not in states)
                continue
            states[node_id] = self._resolve(node_id, children, states)
        return states

    def _resolve(self, node_id: str, children: List[str], states: Dict[str, SelectionState]) -> SelectionState:
        if node_id in self._selected:
            return SelectionState.SELECTED
        for child_id in children:
            if states.get(child_id, SelectionState.UNSELECTED) != SelectionState.UNSELECTED:
                return SelectionState.INDETERMINATE
        return SelectionState.UNSELECTED
