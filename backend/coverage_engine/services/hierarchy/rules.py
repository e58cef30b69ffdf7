"""Parent/child type rules for the administrative hierarchy."""

from typing import Dict, FrozenSet, Optional

from coverage_engine.core.errors import InvalidParentTypeError
from coverage_engine.schemas.location import LocationNode, LocationType

# Parent types accepted for each child type. A city only counts as a district
# parent when its metadata marks it as acting as one (checked separately).
ALLOWED_PARENT_TYPES: Dict[LocationType, FrozenSet[LocationType]] = {
    LocationType.PROVINCE: frozenset(),
    LocationType.DISTRICT: frozenset({LocationType.PROVINCE}),
    LocationType.CITY: frozenset({LocationType.PROVINCE}),
    LocationType.MUNICIPALITY: frozenset({LocationType.DISTRICT, LocationType.CITY}),
    LocationType.BARANGAY: frozenset({LocationType.MUNICIPALITY}),
}

# Types that may sit at the top of the forest without a parent
ROOT_TYPES: FrozenSet[LocationType] = frozenset(
    {LocationType.PROVINCE, LocationType.DISTRICT, LocationType.CITY, LocationType.CUSTOM}
)


def is_valid_parent(child_type: LocationType, parent: Optional[LocationNode]) -> bool:
    """
    Check whether a location of ``child_type`` may be placed under ``parent``.

    Args:
        child_type: Type of the node being created or moved
        parent: Prospective parent node, or None for a root

    Returns:
        True if the placement respects the hierarchy rules
    """
    if child_type == LocationType.CUSTOM:
        return True
    if parent is None:
        return child_type in ROOT_TYPES
    if child_type == LocationType.PROVINCE:
        return False

    allowed = ALLOWED_PARENT_TYPES[child_type]
    if parent.type not in allowed:
        return False
    if child_type == LocationType.MUNICIPALITY and parent.type == LocationType.CITY:
        return parent.metadata.is_city
    return True


def validate_parent(
    child_type: LocationType,
    parent: Optional[LocationNode],
    node_id: Optional[str] = None,
) -> None:
    """Raise InvalidParentTypeError unless ``parent`` is acceptable for ``child_type``."""
    if not is_valid_parent(child_type, parent):
        raise InvalidParentTypeError(
            child_type=child_type.value,
            parent_type=parent.type.value if parent is not None else None,
            node_id=node_id,
            parent_id=parent.id if parent is not None else None,
        )
