"""Centralised configuration for the realm construction engine."""
from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

from .resources import Resource, normalise_mapping

# ---------------------------------------------------------------------------
# Process level knobs

TICK_INTERVAL_SEC: float = float(os.environ.get("REALM_TICK_INTERVAL", "1.0"))

# When disabled a resumed project restarts its current phase from scratch.
RESUME_PRESERVES_PHASE_PROGRESS: bool = os.environ.get(
    "REALM_RESUME_PRESERVES_PROGRESS", "0"
).strip().lower() in {"1", "true", "yes"}

PRODUCTION_POLL_INTERVAL_SEC: float = 30.0

NOTIFICATION_QUEUE_LIMIT = 50

# Finished projects are dropped from the registry every N ticks.
PROJECT_CLEANUP_EVERY_TICKS = 300

# ---------------------------------------------------------------------------
# Construction phase pipeline


@dataclass(frozen=True)
class PhaseTemplate:
    """Static description of one stage of the construction pipeline."""

    id: str
    name: str
    component_types: Tuple[str, ...]
    duration: float
    resources: Mapping[Resource, float]
    description: str


PHASE_PIPELINE: Tuple[PhaseTemplate, ...] = (
    PhaseTemplate(
        id="foundation",
        name="Foundation & Structure",
        component_types=("foundation", "pillar", "column"),
        duration=60.0,
        resources=normalise_mapping({Resource.STONE: 50, Resource.WOOD: 30}),
        description="Laying foundation and building structural elements",
    ),
    PhaseTemplate(
        id="walls",
        name="Walls & Framework",
        component_types=("wall", "tower"),
        duration=90.0,
        resources=normalise_mapping({Resource.STONE: 75, Resource.WOOD: 50}),
        description="Constructing walls and building framework",
    ),
    PhaseTemplate(
        id="openings",
        name="Doors & Windows",
        component_types=("door", "window"),
        duration=45.0,
        resources=normalise_mapping({Resource.WOOD: 25, Resource.IRON: 10}),
        description="Installing doors and windows",
    ),
    PhaseTemplate(
        id="roofing",
        name="Roofing",
        component_types=("roof",),
        duration=75.0,
        resources=normalise_mapping({Resource.WOOD: 60, Resource.STONE: 20}),
        description="Installing roof and covering",
    ),
    PhaseTemplate(
        id="finishing",
        name="Finishing Touches",
        component_types=("decoration", "chimney", "stairs"),
        duration=30.0,
        resources=normalise_mapping({Resource.STONE: 15, Resource.IRON: 5}),
        description="Adding decorative elements and finishing touches",
    ),
)

COMPONENT_TYPES = frozenset(
    component_type
    for template in PHASE_PIPELINE
    for component_type in template.component_types
)

# ---------------------------------------------------------------------------
# Town building configuration (authoritative backend tables)

EMPTY = "empty"


def calculate_cost(base: float, level: int, multiplier: float = 1.4) -> int:
    return int(math.floor(base * multiplier ** (level - 1)))


def calculate_production(base: float, level: int, multiplier: float = 1.2) -> int:
    return int(math.floor(base * multiplier ** (level - 1)))


@dataclass(frozen=True)
class LevelStats:
    """Resources and duration attached to a single building level."""

    level: int
    resources: Mapping[Resource, float]
    time: float


@dataclass(frozen=True)
class BuildingConfig:
    """Catalogue entry describing a town building type."""

    type: str
    name: str
    category: str
    max_level: int
    build_cost: Mapping[int, LevelStats]
    production: Mapping[int, LevelStats] = field(default_factory=dict)

    def cost_for(self, level: int) -> Optional[LevelStats]:
        return self.build_cost.get(int(level))

    def production_for(self, level: int) -> Optional[LevelStats]:
        return self.production.get(int(level))


def _building(
    type_key: str,
    name: str,
    category: str,
    *,
    cost_bases: Mapping[Resource, float],
    build_time_base: float,
    time_multiplier: float = 1.4,
    production_bases: Mapping[Resource, float] | None = None,
    production_time: float = 3600.0,
    max_level: int = 30,
) -> BuildingConfig:
    build_cost: Dict[int, LevelStats] = {}
    production: Dict[int, LevelStats] = {}
    for level in range(1, max_level + 1):
        resources = {
            resource: float(calculate_cost(base, level))
            for resource, base in cost_bases.items()
        }
        build_cost[level] = LevelStats(
            level=level,
            resources=resources,
            time=float(calculate_cost(build_time_base, level, time_multiplier)),
        )
        if production_bases:
            production[level] = LevelStats(
                level=level,
                resources={
                    resource: float(calculate_production(base, level))
                    for resource, base in production_bases.items()
                },
                time=float(production_time),
            )
    return BuildingConfig(
        type=type_key,
        name=name,
        category=category,
        max_level=max_level,
        build_cost=build_cost,
        production=production,
    )


BUILDING_CONFIGS: Dict[str, BuildingConfig] = {
    "townhall": _building(
        "townhall",
        "Town Hall",
        "special",
        cost_bases={Resource.WOOD: 500, Resource.STONE: 400, Resource.IRON: 200},
        build_time_base=600,
        time_multiplier=1.3,
    ),
    "farm": _building(
        "farm",
        "Farm",
        "resource",
        cost_bases={Resource.WOOD: 80, Resource.STONE: 60},
        build_time_base=120,
        production_bases={Resource.FOOD: 15},
    ),
    "lumbermill": _building(
        "lumbermill",
        "Lumber Mill",
        "resource",
        cost_bases={Resource.STONE: 100},
        build_time_base=150,
        production_bases={Resource.WOOD: 12},
    ),
    "quarry": _building(
        "quarry",
        "Stone Quarry",
        "resource",
        cost_bases={Resource.WOOD: 120, Resource.IRON: 50},
        build_time_base=180,
        production_bases={Resource.STONE: 10},
    ),
    "mine": _building(
        "mine",
        "Iron Mine",
        "resource",
        cost_bases={Resource.WOOD: 150, Resource.STONE: 200},
        build_time_base=240,
        production_bases={Resource.IRON: 8},
    ),
    "gem_mine": _building(
        "gem_mine",
        "Gem Mine",
        "resource",
        cost_bases={
            Resource.WOOD: 300,
            Resource.STONE: 400,
            Resource.IRON: 200,
            Resource.GOLD: 100,
        },
        build_time_base=600,
        production_bases={Resource.GEMS: 2},
        production_time=7200.0,
    ),
    "house": _building(
        "house",
        "House",
        "residential",
        cost_bases={Resource.WOOD: 100, Resource.STONE: 80},
        build_time_base=180,
    ),
    "barracks": _building(
        "barracks",
        "Barracks",
        "military",
        cost_bases={Resource.WOOD: 200, Resource.STONE: 180, Resource.IRON: 60},
        build_time_base=300,
    ),
    "wall": _building(
        "wall",
        "Wall",
        "military",
        cost_bases={Resource.STONE: 200, Resource.IRON: 100},
        build_time_base=300,
    ),
}


def normalise_building_key(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("El identificador de edificio debe ser una cadena")
    key = value.strip().lower().replace("-", "_")
    if not key:
        raise ValueError("El identificador de edificio está vacío")
    return key


def resolve_building_type(value: str) -> str:
    key = normalise_building_key(value)
    if key in BUILDING_CONFIGS:
        return key
    raise ValueError(f"Identificador de edificio desconocido: {value}")


# ---------------------------------------------------------------------------
# Caller-side construction options (visual construction projects)


@dataclass(frozen=True)
class ConstructionOption:
    """Cost and nominal build time charged by the caller for a project."""

    type: str
    name: str
    category: str
    cost: Mapping[Resource, float]
    build_time: float
    requires: Tuple[str, ...] = ()

    @property
    def default_workers(self) -> int:
        # Longer projects get more hands.
        return max(1, int(math.ceil(self.build_time / 60.0)))


CONSTRUCTION_OPTIONS: Dict[str, ConstructionOption] = {
    "house": ConstructionOption(
        type="house",
        name="Medieval House",
        category="residential",
        cost=normalise_mapping({Resource.WOOD: 150, Resource.STONE: 100, Resource.GOLD: 200}),
        build_time=120.0,
    ),
    "tavern": ConstructionOption(
        type="tavern",
        name="Tavern",
        category="commercial",
        cost=normalise_mapping(
            {Resource.WOOD: 300, Resource.STONE: 200, Resource.IRON: 50, Resource.GOLD: 500}
        ),
        build_time=180.0,
    ),
    "farm": ConstructionOption(
        type="farm",
        name="Medieval Farm",
        category="resource",
        cost=normalise_mapping({Resource.WOOD: 200, Resource.STONE: 150, Resource.GOLD: 300}),
        build_time=150.0,
    ),
    "tower": ConstructionOption(
        type="tower",
        name="Guard Tower",
        category="military",
        cost=normalise_mapping({Resource.STONE: 400, Resource.IRON: 100, Resource.GOLD: 600}),
        build_time=240.0,
        requires=("house",),
    ),
    "castle": ConstructionOption(
        type="castle",
        name="Medieval Castle",
        category="special",
        cost=normalise_mapping(
            {
                Resource.STONE: 1000,
                Resource.IRON: 300,
                Resource.WOOD: 500,
                Resource.GOLD: 2000,
            }
        ),
        build_time=600.0,
        requires=("tower", "house"),
    ),
}

CANCEL_REFUND_RATE: float = 0.5

ACCELERATE_COST: Dict[Resource, float] = {Resource.GOLD: 200.0}
ACCELERATE_MULTIPLIER: float = 2.0

RUSH_SECONDS_PER_GEM: float = 60.0


def rush_cost(remaining_ms: float) -> int:
    """Return the gem price for finishing something ``remaining_ms`` early."""

    seconds_left = max(0, int(math.ceil(float(remaining_ms) / 1000.0)))
    if seconds_left == 0:
        return 0
    return max(1, int(math.ceil(seconds_left / RUSH_SECONDS_PER_GEM)))


# ---------------------------------------------------------------------------
# Starting state

TOWN_WIDTH = 10
TOWN_HEIGHT = 8

STARTING_BUILDINGS: Tuple[Mapping[str, object], ...] = (
    {"x": 4, "y": 3, "type": "townhall", "level": 1},
    {"x": 3, "y": 3, "type": "house", "level": 1},
    {"x": 5, "y": 3, "type": "farm", "level": 1},
)

STARTING_RESOURCES: Dict[Resource, float] = {
    Resource.FOOD: 0.0,
    Resource.WOOD: 2000.0,
    Resource.STONE: 1500.0,
    Resource.IRON: 500.0,
    Resource.GOLD: 3000.0,
    Resource.GEMS: 50.0,
}
