"""Lazy expansion of location subtrees."""

import asyncio
import logging
from enum import Enum
from typing import Dict, Iterable, List, Literal, Set

from coverage_engine.core.errors import FetchFailedError
from coverage_engine.services.datasource.base import LocationDataSource
from coverage_engine.services.hierarchy.location_store import LocationStore

logger = logging.getLogger(__name__)

ExpandMode = Literal["shallow", "full"]


class ExpansionState(str, Enum):
    COLLAPSED = "collapsed"
    LOADING = "loading"
    EXPANDED = "expanded"


class ExpansionController:
    """
    Tracks per-node expansion state and loads children on demand.

    Children are fetched through the data source on a worker thread and
    merged into the shared LocationStore. Concurrent expansions of the same
    node share one in-flight task.
    """

    def __init__(self, store: LocationStore, data_source: LocationDataSource):
        """
        Initialize the expansion controller.

        Args:
            store: Store that receives fetched children
            data_source: Source of child lists
        """
        self.store = store
        self.data_source = data_source
        self._states: Dict[str, ExpansionState] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}
        # Nodes the user collapsed on purpose; auto-expansion leaves them alone
        self._user_collapsed: Set[str] = set()
        # Nodes collapsed while their fetch was still running
        self._discard_on_arrival: Set[str] = set()

    def state_of(self, node_id: str) -> ExpansionState:
        return self._states.get(node_id, ExpansionState.COLLAPSED)

    def is_expanded(self, node_id: str) -> bool:
        return self.state_of(node_id) == ExpansionState.EXPANDED

    def is_loading(self, node_id: str) -> bool:
        return node_id in self._in_flight

    def has_children(self, node_id: str):
        return self.store.known_has_children(node_id)

    async def expand(self, node_id: str, mode: ExpandMode = "shallow") -> None:
        """
        Expand a node, fetching its children first if needed.

        Args:
            node_id: Node to expand
            mode: "shallow" loads immediate children, "full" loads the whole subtree

        Raises:
            NotFoundError: If the node is not in the store
            FetchFailedError: If the data source fails; the node reverts to collapsed
        """
        self.store.require(node_id)

        in_flight = self._in_flight.get(node_id)
        if in_flight is not None:
            # The caller still wants this node open even if it was collapsed meanwhile
            self._discard_on_arrival.discard(node_id)
            self._user_collapsed.discard(node_id)
            await asyncio.shield(in_flight)
            return

        if self.state_of(node_id) == ExpansionState.EXPANDED:
            return

        self._user_collapsed.discard(node_id)
        self._states[node_id] = ExpansionState.LOADING
        task = asyncio.ensure_future(self._load(node_id, mode))
        self._in_flight[node_id] = task
        task.add_done_callback(lambda _: self._in_flight.pop(node_id, None))
        await asyncio.shield(task)

    async def _load(self, node_id: str, mode: ExpandMode) -> None:
        try:
            if mode == "full":
                loaded = await self.load_subtree(node_id)
            else:
                await self._ensure_children(node_id)
                loaded = []
        except Exception as exc:
            self._states[node_id] = ExpansionState.COLLAPSED
            self._discard_on_arrival.discard(node_id)
            logger.warning(f"Expansion of {node_id} failed, reverted to collapsed: {exc}")
            raise

        if node_id in self._discard_on_arrival:
            # Collapsed before the fetch resolved: keep the data, do not reopen
            self._discard_on_arrival.discard(node_id)
            self._states[node_id] = ExpansionState.COLLAPSED
            logger.debug(f"Expansion of {node_id} resolved after collapse; children cached only")
            return

        self._states[node_id] = ExpansionState.EXPANDED
        for descendant_id in loaded:
            if descendant_id in self._user_collapsed or descendant_id in self._in_flight:
                continue
            if self.store.known_has_children(descendant_id):
                self._states[descendant_id] = ExpansionState.EXPANDED

    async def _ensure_children(self, node_id: str) -> List[str]:
        if self.store.has_complete_children(node_id):
            return self.store.child_ids(node_id)
        children = await asyncio.to_thread(self.data_source.get_children, node_id)
        merged = self.store.replace_children(node_id, children)
        logger.debug(f"Loaded {len(merged)} children for {node_id}")
        return [child.id for child in merged]

    async def load_subtree(self, node_id: str) -> List[str]:
        """
        Load every descendant of a node, level by level.

        Levels are fetched concurrently; already complete child lists are
        served from the store. Expansion state is not changed.

        Returns:
            Ids of all descendants now in the store
        """
        self.store.require(node_id)
        visited: Set[str] = {node_id}
        descendants: List[str] = []
        frontier = [node_id]
        while frontier:
            results = await asyncio.gather(*(self._ensure_children(current) for current in frontier))
            next_frontier = []
            for child_ids in results:
                for child_id in child_ids:
                    if child_id in visited:
                        continue
                    visited.add(child_id)
                    descendants.append(child_id)
                    next_frontier.append(child_id)
            frontier = next_frontier
        logger.info(f"Loaded subtree of {node_id}: {len(descendants)} descendants")
        return descendants

    def collapse(self, node_id: str) -> None:
        """Collapse a node, keeping its cached children."""
        self.store.require(node_id)
        if node_id in self._in_flight:
            self._discard_on_arrival.add(node_id)
        self._states[node_id] = ExpansionState.COLLAPSED
        self._user_collapsed.add(node_id)

    def was_collapsed_by_user(self, node_id: str) -> bool:
        return node_id in self._user_collapsed

    async def auto_expand(self, node_ids: Iterable[str], mode: ExpandMode = "full") -> List[str]:
        """
        Expand nodes that have never been loaded.

        Nodes with a known child list and nodes the user collapsed are skipped.

        Returns:
            Ids of nodes whose expansion failed
        """
        targets = [
            node_id for node_id in node_ids
            if node_id in self.store
            and self.store.known_has_children(node_id) is None
            and node_id not in self._user_collapsed
            and node_id not in self._in_flight
        ]
        if not targets:
            return []

        results = await asyncio.gather(
            *(self.expand(node_id, mode) for node_id in targets),
            return_exceptions=True,
        )
        failed = []
        for node_id, result in zip(targets, results):
            if isinstance(result, FetchFailedError):
                logger.warning(f"Auto-expansion of {node_id} failed: {result}")
                failed.append(node_id)
            elif isinstance(result, BaseException):
                raise result
        return failed

    def forget(self, node_ids: Iterable[str]) -> None:
        """Drop state for nodes removed from the store."""
        for node_id in node_ids:
            self._states.pop(node_id, None)
            self._user_collapsed.discard(node_id)
            self._discard_on_arrival.discard(node_id)

    def reset(self) -> None:
        self._states.clear()
        self._user_collapsed.clear()
        self._discard_on_arrival.clear()
