from typing import List, Optional

from pydantic import Field

from coverage_engine.schemas.coverage_area import CoverageArea
from coverage_engine.schemas.location import CamelModel, LocationNode


class IntegrityCheckResult(CamelModel):
    ok: bool
    reason: Optional[str] = None
    blocking_ids: List[str] = Field(default_factory=list)
    coverage_area_ids: List[str] = Field(default_factory=list)
    active_assignment_count: int = 0


class LocationTreeRead(LocationNode):
    children: List["LocationTreeRead"] = Field(default_factory=list)


class TreeNodeState(LocationNode):
    """A location with the UI state of one selection session."""

    expanded: bool = False
    loading: bool = False
    has_children: Optional[bool] = None  # None until the children have been fetched
    selected: bool = False
    indeterminate: bool = False
    children: List["TreeNodeState"] = Field(default_factory=list)


class SessionCreate(CamelModel):
    initial_location_ids: List[str] = Field(default_factory=list)
    hidden_types: Optional[List[str]] = None  # falls back to the configured default
    auto_expand: bool = True


class SessionRead(CamelModel):
    session_id: str
    selected_ids: List[str] = Field(default_factory=list)
    root_count: int = 0
    failed_expansions: List[str] = Field(default_factory=list)


class SelectionRead(CamelModel):
    selected_ids: List[str] = Field(default_factory=list)
    suggested_coverage_area: Optional[CoverageArea] = None
    # True when nothing existing covers the selection and a new area should be offered
    create_new_suggested: bool = False


class ConfirmRequest(CamelModel):
    use_suggested: bool = True
    new_coverage_area_name: Optional[str] = Field(None, max_length=200)
    organization_id: Optional[str] = None


class AssignmentResult(CamelModel):
    coverage_area_ids: List[str]
    location_ids: List[str]
    created_coverage_area: Optional[CoverageArea] = None


LocationTreeRead.model_rebuild()
TreeNodeState.model_rebuild()
