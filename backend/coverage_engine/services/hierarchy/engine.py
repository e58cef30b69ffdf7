"""Engine facade composing store, tree builder, expansion, selection, matcher and integrity checks."""

import asyncio
import logging
from typing import Callable, Collection, Iterable, List, Optional

from coverage_engine.core.errors import (
    CycleDetectedError,
    FetchFailedError,
    IntegrityViolationError,
    LocationEngineError,
    NotFoundError,
)
from coverage_engine.schemas.coverage_area import (
    CoverageArea,
    CoverageAreaCreate,
    CoverageAreaFilter,
    CoverageAreaUpdate,
)
from coverage_engine.schemas.location import (
    LocationCreate,
    LocationFilter,
    LocationNode,
    LocationType,
    LocationUpdate,
    type_values,
)
from coverage_engine.schemas.session import AssignmentResult, IntegrityCheckResult, TreeNodeState
from coverage_engine.services.cache.coverage_cache import CoverageAreaCache
from coverage_engine.services.datasource.base import LocationDataSource
from coverage_engine.services.hierarchy.expansion import ExpandMode, ExpansionController
from coverage_engine.services.hierarchy.integrity import IntegrityChecker
from coverage_engine.services.hierarchy.location_store import LocationStore
from coverage_engine.services.hierarchy.matcher import CoverageAreaMatcher
from coverage_engine.services.hierarchy.rules import validate_parent
from coverage_engine.services.hierarchy.selection import SelectionPropagator, SelectionState
from coverage_engine.services.hierarchy.tree_builder import TreeNode, build_tree, filter_tree

logger = logging.getLogger(__name__)


class GeoHierarchyEngine:
    """
    State of one location-selection session.

    Holds the loaded slice of the hierarchy, per-node expansion flags and the
    selection set, and exposes explicit query methods for the UI layer. All
    data-source calls run on worker threads; mutations that the backend
    rejects trigger a re-sync of the affected part of the store before the
    error is re-raised.
    """

    def __init__(
        self,
        data_source: LocationDataSource,
        hidden_types: Optional[Collection[str]] = None,
        initial_ids: Optional[Iterable[str]] = None,
        coverage_cache: Optional[CoverageAreaCache] = None,
        default_expand_mode: ExpandMode = "full",
        on_coverage_change: Optional[Callable[[], None]] = None,
    ):
        """
        Initialize the engine.

        Args:
            data_source: Backing store for locations and coverage areas
            hidden_types: Location types left out of trees and subtree selection
            initial_ids: Location ids selected when the session opens
            coverage_cache: Optional shared cache for coverage-area candidates
            default_expand_mode: Mode used when ``expand`` is called without one
            on_coverage_change: Called after this engine mutates a coverage area
        """
        self.data_source = data_source
        self.hidden_types = type_values(hidden_types)
        self.default_expand_mode = default_expand_mode
        self.store = LocationStore()
        self.expansion = ExpansionController(self.store, data_source)
        self.selection = SelectionPropagator(self.store, self.hidden_types, initial_ids)
        self.matcher = CoverageAreaMatcher(data_source, coverage_cache)
        self.integrity = IntegrityChecker(self.store, data_source)
        self.on_coverage_change = on_coverage_change
        self.suggestion: Optional[CoverageArea] = None
        self._suggestion_stale = False

    async def _call(self, func, *args, **kwargs):
        return await asyncio.to_thread(func, *args, **kwargs)

    # Loading

    async def load_roots(self, include_inactive: bool = False) -> List[LocationNode]:
        """Load the provinces; everything below them is fetched on expansion."""
        provinces = await self._call(
            self.data_source.list_locations,
            type=LocationType.PROVINCE,
            is_active=None if include_inactive else True,
        )
        self.store.merge(provinces)
        logger.info(f"Loaded {len(provinces)} root locations")
        return provinces

    async def load_full_tree(self, include_inactive: bool = True) -> List[TreeNode]:
        """
        Replace the store with the complete hierarchy.

        Raises:
            CycleDetectedError: If the backend data contains a parent cycle
        """
        nodes = await self._call(self.data_source.get_location_tree, include_inactive)
        forest = build_tree(nodes)
        self.store.clear()
        self.expansion.reset()
        self.store.merge(nodes)
        if include_inactive:
            for node in nodes:
                self.store.mark_children_complete(node.id)
        return forest

    async def list_locations(self, filters: LocationFilter) -> List[LocationNode]:
        nodes = await self._call(
            self.data_source.list_locations,
            type=filters.type,
            is_active=filters.is_active,
            search=filters.search,
        )
        self.store.merge(nodes)
        return nodes

    async def get_location(self, location_id: str) -> LocationNode:
        node = self.store.get(location_id)
        if node is None:
            node = await self._call(self.data_source.get_location, location_id)
            self.store.upsert(node)
        return node

    async def ancestors(self, location_id: str, include_self: bool = False) -> List[LocationNode]:
        """
        Parents of a location, nearest first, fetching any that are not loaded.

        Raises:
            CycleDetectedError: If the parent chain loops
        """
        chain = await self._ancestor_chain(location_id)
        if not include_self:
            chain = chain[1:]
        return [self.store.require(node_id) for node_id in chain]

    async def descendants(self, location_id: str, include_self: bool = False) -> List[LocationNode]:
        """Every descendant of a location, nearest level first."""
        node = await self.get_location(location_id)
        descendant_ids = await self.expansion.load_subtree(location_id)
        nodes = [self.store.require(node_id) for node_id in descendant_ids]
        return [node] + nodes if include_self else nodes

    # Tree views

    def tree(self, search: Optional[str] = None) -> List[TreeNode]:
        forest = build_tree(self.store.nodes(), exclude_types=self.hidden_types)
        return filter_tree(forest, search) if search else forest

    def snapshot(self, search: Optional[str] = None, visible_only: bool = True) -> List[TreeNodeState]:
        """
        Tree with expansion and selection flags.

        Args:
            search: Optional name/code filter
            visible_only: Include children only below expanded nodes (ignored while searching)
        """
        states = self.selection.compute_states()

        def render(tree_node: TreeNode) -> TreeNodeState:
            node_id = tree_node.id
            expanded = self.expansion.is_expanded(node_id)
            show_children = expanded or bool(search) or not visible_only
            if self.selection.visible_child_ids(node_id):
                has_children = True
            elif self.store.has_complete_children(node_id):
                has_children = False
            else:
                has_children = None
            state = states.get(node_id, SelectionState.UNSELECTED)
            return TreeNodeState(
                **tree_node.node.model_dump(),
                expanded=expanded,
                loading=self.expansion.is_loading(node_id),
                has_children=has_children,
                selected=state == SelectionState.SELECTED,
                indeterminate=state == SelectionState.INDETERMINATE,
                children=[render(child) for child in tree_node.children] if show_children else [],
            )

        return [render(root) for root in self.tree(search)]

    # Expansion

    async def expand(self, node_id: str, mode: Optional[ExpandMode] = None) -> None:
        await self.expansion.expand(node_id, mode or self.default_expand_mode)

    def collapse(self, node_id: str) -> None:
        self.expansion.collapse(node_id)

    async def auto_expand_roots(self) -> List[str]:
        """Fully expand roots that were never loaded; returns ids that failed."""
        return await self.expansion.auto_expand([node.id for node in self.store.roots()], mode="full")

    # Selection

    def is_selected(self, node_id: str) -> bool:
        return self.selection.is_selected(node_id)

    def is_indeterminate(self, node_id: str) -> bool:
        return self.selection.is_indeterminate(node_id)

    async def toggle(self, node_id: str) -> Optional[CoverageArea]:
        self.selection.toggle(node_id)
        return await self.refresh_suggestion()

    async def toggle_subtree(self, node_id: str) -> Optional[CoverageArea]:
        """Load the whole subtree, then select or deselect it as a unit."""
        await self.expansion.load_subtree(node_id)
        self.selection.toggle_subtree(node_id)
        return await self.refresh_suggestion()

    async def refresh_suggestion(self) -> Optional[CoverageArea]:
        """
        Re-run the coverage-area matcher for the current selection.

        Raises:
            FetchFailedError: If candidates could not be loaded; the suggestion is cleared
        """
        try:
            self.suggestion = await self.matcher.suggest(self.selection.selected)
        except FetchFailedError:
            self.suggestion = None
            raise
        finally:
            self._suggestion_stale = False
        return self.suggestion

    async def current_suggestion(self) -> Optional[CoverageArea]:
        """Suggestion for the selection, recomputed if coverage areas changed since."""
        if self._suggestion_stale:
            return await self.refresh_suggestion()
        return self.suggestion

    def drop_coverage_candidates(self) -> None:
        """Forget candidate lists after a coverage-area mutation made elsewhere."""
        self.matcher.invalidate(shared=False)
        self._suggestion_stale = True

    def _coverage_changed(self) -> None:
        self.matcher.invalidate()
        if self.on_coverage_change is not None:
            self.on_coverage_change()

    async def confirm(
        self,
        use_suggested: bool = True,
        new_coverage_area_name: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> AssignmentResult:
        """
        Finalize the selection into a (coverage-area ids, location ids) pair.

        Reuses the suggested coverage area when allowed, otherwise creates a
        new one seeded with the selection.

        Raises:
            ValueError: If nothing is selected or a new area has no name
        """
        location_ids = sorted(self.selection.selected)
        if not location_ids:
            raise ValueError("Please select at least one location")

        # Another process may have changed coverage areas since the last lookup
        self.matcher.invalidate(shared=False)
        suggestion = await self.refresh_suggestion()
        if suggestion is not None and use_suggested:
            return AssignmentResult(coverage_area_ids=[suggestion.id], location_ids=location_ids)

        name = (new_coverage_area_name or "").strip()
        if not name:
            raise ValueError("Please provide a name for the new coverage area")

        area = await self.create_coverage_area(
            CoverageAreaCreate(name=name, geographic_unit_ids=location_ids, organization_id=organization_id)
        )
        return AssignmentResult(
            coverage_area_ids=[area.id],
            location_ids=location_ids,
            created_coverage_area=area,
        )

    # Location mutations

    async def _resync(self, *node_ids: Optional[str]) -> None:
        for node_id in node_ids:
            if node_id is None or node_id not in self.store:
                continue
            try:
                children = await self._call(self.data_source.get_children, node_id)
            except LocationEngineError as exc:
                logger.warning(f"Re-sync of {node_id} failed: {exc}")
                continue
            removed = set(self.store.child_ids(node_id)) - {child.id for child in children}
            self.store.replace_children(node_id, children)
            self.expansion.forget(removed)
            self.selection.discard(removed)

    async def _ancestor_chain(self, node_id: str) -> List[str]:
        chain: List[str] = []
        current: Optional[str] = node_id
        while current is not None:
            if current in chain:
                raise CycleDetectedError(chain + [current])
            chain.append(current)
            current = (await self.get_location(current)).parent_id
        return chain

    async def _loaded_children(self, node_id: str) -> List[LocationNode]:
        if not self.store.has_complete_children(node_id):
            children = await self._call(self.data_source.get_children, node_id)
            self.store.replace_children(node_id, children)
        return self.store.children_of(node_id)

    async def _validate_placement(
        self,
        node: LocationNode,
        parent_id: Optional[str],
        retyped: LocationNode,
    ) -> None:
        node_type = retyped.type
        if parent_id is None:
            validate_parent(node_type, None, node.id)
        else:
            if parent_id == node.id:
                raise CycleDetectedError([node.id], "A location cannot be its own parent")
            chain = await self._ancestor_chain(parent_id)
            if node.id in chain:
                raise CycleDetectedError(
                    chain[: chain.index(node.id) + 1],
                    f"Cannot move {node.id} under its own descendant {parent_id}",
                )
            validate_parent(node_type, self.store.require(parent_id), node.id)

        # Children must still accept the node as a parent after a type or isCity change
        if node_type != node.type or retyped.metadata.is_city != node.metadata.is_city:
            for child in await self._loaded_children(node.id):
                validate_parent(child.type, retyped, child.id)

    async def create_location(self, payload: LocationCreate) -> LocationNode:
        """
        Create a location after checking the parent type.

        Raises:
            InvalidParentTypeError: If the type may not sit under the parent
            NotFoundError: If the parent does not exist
        """
        parent = await self.get_location(payload.parent_id) if payload.parent_id else None
        validate_parent(payload.type, parent)
        try:
            node = await self._call(self.data_source.create_location, payload)
        except LocationEngineError:
            await self._resync(payload.parent_id)
            raise
        self.store.upsert(node)
        return node

    async def update_location(self, location_id: str, payload: LocationUpdate) -> LocationNode:
        """
        Update a location. Parent, type or isCity changes are validated as a move.

        Raises:
            CycleDetectedError: If the new parent is the node or one of its descendants
            InvalidParentTypeError: If the placement breaks the type rules
        """
        node = await self.get_location(location_id)
        changes = {}
        if payload.type is not None:
            changes["type"] = payload.type
        if payload.metadata is not None:
            changes["metadata"] = payload.metadata
        retyped = node.model_copy(update=changes)
        if payload.changes_parent or retyped.type != node.type or retyped.metadata.is_city != node.metadata.is_city:
            new_parent_id = payload.parent_id if payload.changes_parent else node.parent_id
            await self._validate_placement(node, new_parent_id, retyped)

        try:
            updated = await self._call(self.data_source.update_location, location_id, payload)
        except LocationEngineError:
            await self._resync(node.parent_id, payload.parent_id if payload.changes_parent else None)
            raise
        self.store.upsert(updated)
        return updated

    async def reparent(self, location_id: str, new_parent_id: Optional[str]) -> LocationNode:
        return await self.update_location(location_id, LocationUpdate(parent_id=new_parent_id))

    async def can_delete_location(self, location_id: str) -> IntegrityCheckResult:
        return await self.integrity.can_delete_location(location_id)

    async def delete_location(self, location_id: str) -> None:
        """
        Delete a location that has no children and no active coverage-area references.

        Raises:
            IntegrityViolationError: If dependents exist (locally or according to the backend)
        """
        check = await self.integrity.can_delete_location(location_id)
        if not check.ok:
            raise IntegrityViolationError(
                check.reason or "Location cannot be deleted",
                blocking_ids=check.blocking_ids,
                coverage_area_ids=check.coverage_area_ids,
            )

        node = self.store.require(location_id)
        try:
            await self._call(self.data_source.delete_location, location_id)
        except LocationEngineError as exc:
            logger.error(f"Backend refused to delete location {location_id}: {exc}")
            await self._resync(node.parent_id, location_id)
            raise

        removed = self.store.remove(location_id, cascade=True)
        self.expansion.forget(removed)
        self.selection.discard(removed)
        logger.info(f"Deleted location {location_id}")

    # Coverage areas

    async def list_coverage_areas(self, filters: CoverageAreaFilter) -> List[CoverageArea]:
        return await self._call(
            self.data_source.list_coverage_areas,
            geographic_unit_id=filters.geographic_unit_id,
            organization_id=filters.organization_id,
            is_active=filters.is_active,
        )

    async def get_coverage_area(self, coverage_area_id: str) -> CoverageArea:
        return await self._call(self.data_source.get_coverage_area, coverage_area_id)

    async def coverage_area_units(self, coverage_area_id: str) -> List[LocationNode]:
        """
        Resolve a coverage area's geographic unit ids to locations.

        Units that no longer exist are left out and logged.
        """
        area = await self.get_coverage_area(coverage_area_id)
        units: List[LocationNode] = []
        for unit_id in area.geographic_unit_ids:
            try:
                units.append(await self.get_location(unit_id))
            except NotFoundError:
                logger.warning(f"Coverage area {coverage_area_id} references missing location {unit_id}")
        return units

    async def match(self, location_ids: Iterable[str]) -> Optional[CoverageArea]:
        return await self.matcher.suggest(frozenset(location_ids))

    async def create_coverage_area(self, payload: CoverageAreaCreate) -> CoverageArea:
        try:
            area = await self._call(self.data_source.create_coverage_area, payload)
        finally:
            self._coverage_changed()
        logger.info(f"Created coverage area {area.id} ({len(area.geographic_unit_ids)} units)")
        return area

    async def update_coverage_area(self, coverage_area_id: str, payload: CoverageAreaUpdate) -> CoverageArea:
        """
        Raises:
            ValueError: If the update would leave an active coverage area without units
        """
        if payload.geographic_unit_ids is not None and not payload.geographic_unit_ids:
            current = await self.get_coverage_area(coverage_area_id)
            stays_active = payload.is_active if payload.is_active is not None else current.is_active
            if stays_active:
                raise ValueError("An active coverage area must contain at least one geographic unit")
        try:
            return await self._call(self.data_source.update_coverage_area, coverage_area_id, payload)
        finally:
            self._coverage_changed()

    async def can_delete_coverage_area(self, coverage_area_id: str) -> IntegrityCheckResult:
        return await self.integrity.can_delete_coverage_area(coverage_area_id)

    async def delete_coverage_area(self, coverage_area_id: str, force: bool = False) -> IntegrityCheckResult:
        """
        Delete a coverage area.

        Args:
            coverage_area_id: Coverage area to delete
            force: Delete even when active assignments exist (caller confirmed)

        Returns:
            The integrity check that preceded the delete

        Raises:
            IntegrityViolationError: If active assignments exist and ``force`` is False
        """
        check = await self.integrity.can_delete_coverage_area(coverage_area_id)
        if not check.ok and not force:
            raise IntegrityViolationError(
                check.reason or "Coverage area cannot be deleted",
                blocking_ids=check.blocking_ids,
                active_assignment_count=check.active_assignment_count,
            )
        if not check.ok:
            logger.warning(
                f"Deleting coverage area {coverage_area_id} despite "
                f"{check.active_assignment_count} active assignment(s)"
            )
        try:
            await self._call(self.data_source.delete_coverage_area, coverage_area_id)
        finally:
            self._coverage_changed()
        if self.suggestion is not None and self.suggestion.id == coverage_area_id:
            self.suggestion = None
        return check
