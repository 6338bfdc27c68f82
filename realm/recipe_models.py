"""Data models for building recipes and construction phases."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, Mapping, Optional, Tuple

from . import config
from .resources import Resource

Vector3 = Tuple[float, float, float]


def _vector(value: object, name: str) -> Vector3:
    try:
        x, y, z = (float(part) for part in value)  # type: ignore[union-attr]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a sequence of three numbers") from exc
    return (x, y, z)


def _format_coordinate(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


@dataclass(frozen=True, slots=True)
class BuildingComponent:
    """Single placeable piece of a building recipe."""

    type: str
    model_path: str
    position: Vector3
    rotation: Optional[Vector3] = None
    scale: Optional[Vector3] = None
    attach_to: Optional[str] = None

    @property
    def key(self) -> str:
        """Identifier stored in a project's completed-component set."""

        coordinates = "_".join(_format_coordinate(value) for value in self.position)
        return f"{self.type}_{coordinates}"

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "BuildingComponent":
        component_type = str(payload.get("type", "")).strip().lower()
        if component_type not in config.COMPONENT_TYPES:
            raise ValueError(f"Unknown component type: {payload.get('type')!r}")
        rotation = payload.get("rotation")
        scale = payload.get("scale")
        attach_to = payload.get("attach_to", payload.get("attachTo"))
        return cls(
            type=component_type,
            model_path=str(payload.get("model_path", payload.get("modelPath", ""))),
            position=_vector(payload.get("position"), "position"),
            rotation=None if rotation is None else _vector(rotation, "rotation"),
            scale=None if scale is None else _vector(scale, "scale"),
            attach_to=None if attach_to is None else str(attach_to),
        )

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "type": self.type,
            "key": self.key,
            "modelPath": self.model_path,
            "position": list(self.position),
        }
        if self.rotation is not None:
            payload["rotation"] = list(self.rotation)
        if self.scale is not None:
            payload["scale"] = list(self.scale)
        if self.attach_to is not None:
            payload["attachTo"] = self.attach_to
        return payload


@dataclass(frozen=True, slots=True)
class BuildingRecipe:
    """Immutable recipe describing how a building is assembled per level."""

    id: str
    name: str
    category: str
    base_size: Tuple[int, int]
    height: float
    components: Mapping[int, Tuple[BuildingComponent, ...]] = field(default_factory=dict)

    def iter_components(self) -> Iterator[BuildingComponent]:
        """Yield every component, lower levels first, in declaration order."""

        for level in sorted(self.components):
            yield from self.components[level]

    @property
    def component_count(self) -> int:
        return sum(len(entries) for entries in self.components.values())


@dataclass(frozen=True, slots=True)
class ConstructionPhase:
    """One sequential construction stage derived from a recipe."""

    id: str
    name: str
    duration: float
    components: Tuple[BuildingComponent, ...]
    resources: Mapping[Resource, float]
    prerequisite: Optional[str]
    description: str

    @property
    def component_keys(self) -> Tuple[str, ...]:
        return tuple(component.key for component in self.components)

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "duration": self.duration,
            "components": [component.to_dict() for component in self.components],
            "resources": {
                resource.value: amount for resource, amount in self.resources.items()
            },
            "prerequisite": self.prerequisite,
            "description": self.description,
        }
