"""Error types raised by the geographic hierarchy engine."""

from typing import List, Optional


class LocationEngineError(Exception):
    """Base class for all engine errors."""


class NotFoundError(LocationEngineError):
    """A referenced location or coverage area is absent."""

    def __init__(self, kind: str, object_id: str):
        self.kind = kind
        self.object_id = object_id
        super().__init__(f"{kind} with id {object_id} not found")


class CycleDetectedError(LocationEngineError):
    """The parent graph contains a cycle, or a move would create one."""

    def __init__(self, node_ids: List[str], message: Optional[str] = None):
        self.node_ids = list(node_ids)
        super().__init__(message or f"Parent cycle detected through nodes: {', '.join(self.node_ids)}")


class FetchFailedError(LocationEngineError):
    """The data source failed while loading children, candidates or references."""

    def __init__(self, message: str, node_id: Optional[str] = None):
        self.node_id = node_id
        super().__init__(message)


class IntegrityViolationError(LocationEngineError):
    """A delete was attempted while dependent records still exist."""

    def __init__(
        self,
        message: str,
        blocking_ids: Optional[List[str]] = None,
        coverage_area_ids: Optional[List[str]] = None,
        active_assignment_count: int = 0,
    ):
        self.blocking_ids = list(blocking_ids or [])
        self.coverage_area_ids = list(coverage_area_ids or [])
        self.active_assignment_count = active_assignment_count
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "message": str(self),
            "blocking_ids": self.blocking_ids,
            "coverage_area_ids": self.coverage_area_ids,
            "active_assignment_count": self.active_assignment_count,
        }


class InvalidParentTypeError(LocationEngineError):
    """A location type may not be placed under the requested parent."""

    def __init__(
        self,
        child_type: str,
        parent_type: Optional[str],
        node_id: Optional[str] = None,
        parent_id: Optional[str] = None,
    ):
        self.child_type = child_type
        self.parent_type = parent_type
        self.node_id = node_id
        self.parent_id = parent_id
        if parent_type is None:
            message = f"A {child_type} requires a parent"
        else:
            message = f"A {child_type} cannot be placed under a {parent_type}"
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "message": str(self),
            "child_type": self.child_type,
            "parent_type": self.parent_type,
            "node_id": self.node_id,
            "parent_id": self.parent_id,
        }
