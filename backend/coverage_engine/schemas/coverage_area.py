from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import Field, field_validator, model_validator

from coverage_engine.schemas.location import CamelModel


def _unique(ids: List[str]) -> List[str]:
    seen = set()
    result = []
    for unit_id in ids:
        if unit_id not in seen:
            seen.add(unit_id)
            result.append(unit_id)
    return result


class CoverageAreaMetadata(CamelModel):
    is_default: bool = False
    tags: List[str] = Field(default_factory=list)
    custom: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, value: List[str]) -> List[str]:
        return _unique([tag.strip() for tag in value if tag and tag.strip()])


class CoverageArea(CamelModel):
    id: str = Field(..., min_length=1)
    name: str
    code: Optional[str] = None
    description: Optional[str] = None
    geographic_unit_ids: List[str] = Field(default_factory=list)
    organization_id: Optional[str] = None
    is_active: bool = True
    metadata: CoverageAreaMetadata = Field(default_factory=CoverageAreaMetadata)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("geographic_unit_ids")
    @classmethod
    def dedupe_units(cls, value: List[str]) -> List[str]:
        return _unique(value)

    @property
    def unit_id_set(self) -> FrozenSet[str]:
        return frozenset(self.geographic_unit_ids)


class CoverageAreaCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    code: Optional[str] = None
    description: Optional[str] = None
    geographic_unit_ids: List[str] = Field(default_factory=list)
    organization_id: Optional[str] = None
    is_active: bool = True
    metadata: CoverageAreaMetadata = Field(default_factory=CoverageAreaMetadata)

    @field_validator("geographic_unit_ids")
    @classmethod
    def dedupe_units(cls, value: List[str]) -> List[str]:
        return _unique(value)

    @model_validator(mode="after")
    def active_areas_need_units(self):
        if self.is_active and not self.geographic_unit_ids:
            raise ValueError("An active coverage area must contain at least one geographic unit")
        return self


class CoverageAreaUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    code: Optional[str] = None
    description: Optional[str] = None
    geographic_unit_ids: Optional[List[str]] = None
    organization_id: Optional[str] = None
    is_active: Optional[bool] = None
    metadata: Optional[CoverageAreaMetadata] = None

    @field_validator("geographic_unit_ids")
    @classmethod
    def dedupe_units(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _unique(value) if value is not None else None


class CoverageAreaFilter(CamelModel):
    geographic_unit_id: Optional[str] = None
    organization_id: Optional[str] = None
    is_active: Optional[bool] = None


class UserCoverageAssignment(CamelModel):
    id: str
    user_id: str
    coverage_area_id: str
    is_primary: bool = False
    is_active: bool = True
    assigned_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class CoverageMatchRequest(CamelModel):
    location_ids: List[str] = Field(..., min_length=1)
