"""Registry of live location-selection sessions."""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from coverage_engine.core.config import get_settings
from coverage_engine.core.errors import FetchFailedError, NotFoundError
from coverage_engine.schemas.session import SessionCreate
from coverage_engine.services.cache.coverage_cache import CoverageAreaCache, get_coverage_cache
from coverage_engine.services.datasource import LocationDataSource, get_data_source
from coverage_engine.services.hierarchy.engine import GeoHierarchyEngine

logger = logging.getLogger(__name__)


@dataclass
class SelectionSession:
    session_id: str
    engine: GeoHierarchyEngine
    last_used: float
    failed_expansions: List[str] = field(default_factory=list)

    def touch(self, now: float) -> None:
        self.last_used = now


class SessionRegistry:
    """
    Keeps one GeoHierarchyEngine per open selection dialog.

    Sessions idle for longer than the configured TTL are dropped the next
    time the registry is used.
    """

    def __init__(
        self,
        data_source: Optional[LocationDataSource] = None,
        coverage_cache: Optional[CoverageAreaCache] = None,
        idle_ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings()
        self.data_source = data_source
        self.coverage_cache = coverage_cache
        self.idle_ttl_seconds = idle_ttl_seconds or settings.session_idle_ttl_seconds
        self.hidden_types = list(settings.hidden_location_types)
        self.default_expand_mode = settings.default_expand_mode
        self.clock = clock
        self._sessions: Dict[str, SelectionSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def _prune(self) -> None:
        cutoff = self.clock() - self.idle_ttl_seconds
        expired = [sid for sid, session in self._sessions.items() if session.last_used < cutoff]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info(f"Dropped {len(expired)} idle selection session(s)")

    async def create(self, request: SessionCreate) -> SelectionSession:
        """
        Open a session: load the provinces and auto-expand them if requested.

        Root loading failures propagate; auto-expansion failures are recorded
        on the session and the affected roots stay collapsed.
        """
        data_source = self.data_source or get_data_source()
        hidden = request.hidden_types if request.hidden_types is not None else self.hidden_types
        engine = GeoHierarchyEngine(
            data_source,
            hidden_types=hidden,
            initial_ids=request.initial_location_ids,
            coverage_cache=self.coverage_cache,
            default_expand_mode=self.default_expand_mode,
            on_coverage_change=self.invalidate_coverage_candidates,
        )
        await engine.load_roots()

        failed: List[str] = []
        if request.auto_expand:
            failed = await engine.auto_expand_roots()

        if request.initial_location_ids:
            try:
                await engine.refresh_suggestion()
            except FetchFailedError as exc:
                logger.warning(f"Initial coverage-area suggestion failed: {exc}")

        session = SelectionSession(
            session_id=uuid.uuid4().hex,
            engine=engine,
            last_used=self.clock(),
            failed_expansions=failed,
        )
        async with self._lock:
            self._prune()
            self._sessions[session.session_id] = session
        logger.info(f"Opened selection session {session.session_id}")
        return session

    async def get(self, session_id: str) -> SelectionSession:
        """
        Raises:
            NotFoundError: If the session does not exist or has expired
        """
        async with self._lock:
            self._prune()
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFoundError("Session", session_id)
            session.touch(self.clock())
            return session

    def invalidate_coverage_candidates(self) -> None:
        """Make every open session re-read coverage areas on its next lookup."""
        for session in list(self._sessions.values()):
            session.engine.drop_coverage_candidates()

    async def close(self, session_id: str) -> None:
        async with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise NotFoundError("Session", session_id)
        logger.info(f"Closed selection session {session_id}")


# Singleton instance
_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    """
    Get the singleton session registry.

    Returns:
        SessionRegistry backed by the configured data source and shared cache
    """
    global _registry
    if _registry is None:
        _registry = SessionRegistry(coverage_cache=get_coverage_cache())
    return _registry
