from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class LocationType(str, Enum):
    PROVINCE = "province"
    DISTRICT = "district"
    CITY = "city"
    MUNICIPALITY = "municipality"
    BARANGAY = "barangay"
    CUSTOM = "custom"


class CamelModel(BaseModel):
    """Base model that reads and writes the dashboard's camelCase field names."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class LocationMetadata(CamelModel):
    is_city: bool = False  # a city acting as a district
    is_combined: bool = False  # a district spanning multiple operational units
    operational_group: Optional[str] = None
    custom: Dict[str, Any] = Field(default_factory=dict)


class LocationNode(CamelModel):
    id: str = Field(..., min_length=1)
    name: str
    type: LocationType
    code: Optional[str] = None
    administrative_code: Optional[str] = None
    parent_id: Optional[str] = None
    is_active: bool = True
    metadata: LocationMetadata = Field(default_factory=LocationMetadata)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def acts_as_district(self) -> bool:
        return self.type == LocationType.DISTRICT or (
            self.type == LocationType.CITY and self.metadata.is_city
        )


class LocationCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: LocationType
    parent_id: Optional[str] = None
    code: Optional[str] = None
    administrative_code: Optional[str] = None
    is_active: bool = True
    metadata: LocationMetadata = Field(default_factory=LocationMetadata)


class LocationUpdate(CamelModel):
    """Partial update. ``parent_id`` is only applied when explicitly present."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    type: Optional[LocationType] = None
    parent_id: Optional[str] = None
    code: Optional[str] = None
    administrative_code: Optional[str] = None
    is_active: Optional[bool] = None
    metadata: Optional[LocationMetadata] = None

    @property
    def changes_parent(self) -> bool:
        return "parent_id" in self.model_fields_set


class LocationFilter(CamelModel):
    type: Optional[LocationType] = None
    is_active: Optional[bool] = None
    search: Optional[str] = None


class ReparentRequest(CamelModel):
    parent_id: Optional[str] = None


def type_values(types: Optional[Iterable[Union[LocationType, str]]]) -> FrozenSet[str]:
    """Normalize a mix of LocationType members and plain strings to type values."""
    return frozenset(t.value if isinstance(t, LocationType) else str(t) for t in (types or ()))
