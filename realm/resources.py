"""Resource definitions for the realm construction backend."""
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Mapping


class Resource(str, Enum):
    """Enumeration of all resource keys used by towns and construction sites."""

    FOOD = "food"
    WOOD = "wood"
    STONE = "stone"
    IRON = "iron"
    GOLD = "gold"
    GEMS = "gems"


ALL_RESOURCES: List[Resource] = [
    Resource.FOOD,
    Resource.WOOD,
    Resource.STONE,
    Resource.IRON,
    Resource.GOLD,
    Resource.GEMS,
]


_RESOURCE_LOOKUP: Dict[str, Resource] = {}
for _resource in ALL_RESOURCES:
    _RESOURCE_LOOKUP[_resource.value.lower()] = _resource
    _RESOURCE_LOOKUP[_resource.name.lower()] = _resource


def resource_from_id(identifier: str) -> Resource:
    """Return the resource associated with ``identifier``.

    The lookup accepts either the wire identifier (``"wood"``) or the enum
    name regardless of capitalisation. A :class:`KeyError` is raised if the
    identifier is unknown.
    """

    resource = _RESOURCE_LOOKUP.get(str(identifier).strip().lower())
    if resource is None:
        raise KeyError(f"Recurso desconocido: {identifier}")
    return resource


def normalise_resource(value: Resource | str) -> Resource:
    """Coerce ``value`` into a :class:`Resource` instance."""

    if isinstance(value, Resource):
        return value
    return resource_from_id(value)


def normalise_mapping(mapping: Mapping[Resource | str, float]) -> Dict[Resource, float]:
    """Return a new mapping with normalised resource keys."""

    return {normalise_resource(key): float(amount) for key, amount in mapping.items()}


def to_payload(mapping: Mapping[Resource | str, float]) -> Dict[str, float]:
    """Return ``mapping`` keyed by wire identifiers, suitable for JSON."""

    return {normalise_resource(key).value: float(amount) for key, amount in mapping.items()}


def empty_amounts() -> Dict[str, float]:
    return {resource.value: 0.0 for resource in ALL_RESOURCES}


__all__ = [
    "ALL_RESOURCES",
    "Resource",
    "empty_amounts",
    "normalise_mapping",
    "normalise_resource",
    "resource_from_id",
    "to_payload",
]
