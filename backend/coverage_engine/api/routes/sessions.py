from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
import logging

from coverage_engine.api.deps import get_registry, http_error
from coverage_engine.core.errors import LocationEngineError
from coverage_engine.schemas.session import (
    AssignmentResult,
    ConfirmRequest,
    SelectionRead,
    SessionCreate,
    SessionRead,
    TreeNodeState,
)
from coverage_engine.services.hierarchy.engine import GeoHierarchyEngine
from coverage_engine.services.hierarchy.expansion import ExpandMode
from coverage_engine.services.sessions import SelectionSession, SessionRegistry

router = APIRouter(prefix="/sessions", tags=["Sessions"])
logger = logging.getLogger(__name__)


def _session_read(session: SelectionSession) -> SessionRead:
    return SessionRead(
        session_id=session.session_id,
        selected_ids=sorted(session.engine.selection.selected),
        root_count=len(session.engine.store.roots()),
        failed_expansions=session.failed_expansions,
    )


def _selection_read(engine: GeoHierarchyEngine) -> SelectionRead:
    selected_ids = sorted(engine.selection.selected)
    return SelectionRead(
        selected_ids=selected_ids,
        suggested_coverage_area=engine.suggestion,
        create_new_suggested=bool(selected_ids) and engine.suggestion is None,
    )


async def _get_session(registry: SessionRegistry, session_id: str) -> SelectionSession:
    try:
        return await registry.get(session_id)
    except LocationEngineError as exc:
        raise http_error(exc)


@router.post("", response_model=SessionRead, status_code=status.HTTP_201_CREATED)
async def create_session(payload: SessionCreate, registry: SessionRegistry = Depends(get_registry)):
    """
    Open a location-selection session.

    Loads the provinces and, unless disabled, fully expands them. Roots whose
    expansion failed are reported in ``failedExpansions`` and stay collapsed.
    """
    try:
        session = await registry.create(payload)
    except LocationEngineError as exc:
        raise http_error(exc)
    return _session_read(session)


@router.get("/{session_id}", response_model=SessionRead)
async def get_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    return _session_read(await _get_session(registry, session_id))


@router.get("/{session_id}/tree", response_model=List[TreeNodeState])
async def get_session_tree(
    session_id: str,
    search: Optional[str] = Query(None, description="Keep matches and their ancestors"),
    visible_only: bool = Query(True, alias="visibleOnly", description="Only include children of expanded nodes"),
    registry: SessionRegistry = Depends(get_registry),
):
    """Tree with expansion and selection state for rendering"""
    session = await _get_session(registry, session_id)
    try:
        return session.engine.snapshot(search=search, visible_only=visible_only)
    except LocationEngineError as exc:
        raise http_error(exc)


@router.post("/{session_id}/nodes/{node_id}/expand", response_model=List[TreeNodeState])
async def expand_node(
    session_id: str,
    node_id: str,
    mode: Optional[ExpandMode] = Query(None, description="shallow or full; defaults to the configured mode"),
    registry: SessionRegistry = Depends(get_registry),
):
    session = await _get_session(registry, session_id)
    try:
        await session.engine.expand(node_id, mode)
    except LocationEngineError as exc:
        raise http_error(exc)
    return session.engine.snapshot()


@router.post("/{session_id}/nodes/{node_id}/collapse", response_model=List[TreeNodeState])
async def collapse_node(session_id: str, node_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = await _get_session(registry, session_id)
    try:
        session.engine.collapse(node_id)
    except LocationEngineError as exc:
        raise http_error(exc)
    return session.engine.snapshot()


@router.post("/{session_id}/nodes/{node_id}/toggle", response_model=SelectionRead)
async def toggle_node(session_id: str, node_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Select or deselect a single location"""
    session = await _get_session(registry, session_id)
    try:
        await session.engine.toggle(node_id)
    except LocationEngineError as exc:
        raise http_error(exc)
    return _selection_read(session.engine)


@router.post("/{session_id}/nodes/{node_id}/toggle-subtree", response_model=SelectionRead)
async def toggle_subtree(session_id: str, node_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Select or deselect a location together with all of its descendants"""
    session = await _get_session(registry, session_id)
    try:
        await session.engine.toggle_subtree(node_id)
    except LocationEngineError as exc:
        raise http_error(exc)
    return _selection_read(session.engine)


@router.get("/{session_id}/selection", response_model=SelectionRead)
async def get_selection(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = await _get_session(registry, session_id)
    try:
        await session.engine.current_suggestion()
    except LocationEngineError as exc:
        raise http_error(exc)
    return _selection_read(session.engine)


@router.post("/{session_id}/confirm", response_model=AssignmentResult)
async def confirm_selection(
    session_id: str,
    payload: ConfirmRequest,
    registry: SessionRegistry = Depends(get_registry),
):
    """
    Finalize the selection.

    Uses the suggested coverage area when ``useSuggested`` is set and one
    exists, otherwise creates a new area named ``newCoverageAreaName``.
    """
    session = await _get_session(registry, session_id)
    try:
        result = await session.engine.confirm(
            use_suggested=payload.use_suggested,
            new_coverage_area_name=payload.new_coverage_area_name,
            organization_id=payload.organization_id,
        )
    except (LocationEngineError, ValueError) as exc:
        raise http_error(exc)
    logger.info(
        f"Session {session_id} confirmed {len(result.location_ids)} location(s) "
        f"into coverage area(s) {result.coverage_area_ids}"
    )
    return result


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    try:
        await registry.close(session_id)
    except LocationEngineError as exc:
        raise http_error(exc)

    return None
