"""Catalogue helpers for building recipes."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .recipe_models import BuildingComponent, BuildingRecipe


logger = logging.getLogger(__name__)

_MODEL_ROOT = "/models/components"


def _part(component_type: str, position: Tuple[float, float, float], **extra: object) -> Dict[str, object]:
    payload: Dict[str, object] = {
        "type": component_type,
        "modelPath": f"{_MODEL_ROOT}/{component_type}.glb",
        "position": list(position),
    }
    payload.update(extra)
    return payload


def _corner_walls(half: float = 1.0) -> List[Dict[str, object]]:
    return [
        _part("wall", (-half, 0, -half), rotation=[0, 0, 0]),
        _part("wall", (half, 0, -half), rotation=[0, 1.5708, 0]),
        _part("wall", (half, 0, half), rotation=[0, 3.1416, 0]),
        _part("wall", (-half, 0, half), rotation=[0, -1.5708, 0]),
    ]


DEFAULT_RECIPE_DATA = {
    "recipes": [
        {
            "id": "townhall",
            "name": "Town Hall",
            "category": "special",
            "baseSize": [3, 3],
            "height": 4,
            "components": {
                1: [
                    _part("foundation", (0, 0, 0), scale=[3, 1, 3]),
                    *_corner_walls(),
                    _part("door", (0, 0, -1)),
                    _part("roof", (0, 2, 0), scale=[3.2, 1, 3.2]),
                ],
                2: [
                    _part("window", (-1, 1, 0), rotation=[0, -1.5708, 0]),
                    _part("window", (1, 1, 0), rotation=[0, 1.5708, 0]),
                    _part("window", (0, 1, 1), rotation=[0, 3.1416, 0]),
                    _part("chimney", (1, 3, 1)),
                ],
                3: [
                    _part("tower", (0, 3, 0)),
                    _part("decoration", (0, 2.5, -1.2)),
                ],
            },
        },
        {
            "id": "house",
            "name": "Medieval House",
            "category": "residential",
            "baseSize": [2, 2],
            "height": 2,
            "components": {
                1: [
                    _part("foundation", (0, 0, 0), scale=[2, 1, 2]),
                    *_corner_walls(),
                    _part("door", (0, 0, -1)),
                    _part("window", (1, 1, 0)),
                    _part("roof", (0, 2, 0), scale=[2.2, 1, 2.2]),
                    _part("chimney", (0.5, 2.5, 0.5)),
                ],
            },
        },
        {
            "id": "tavern",
            "name": "Tavern",
            "category": "commercial",
            "baseSize": [3, 2],
            "height": 3,
            "components": {
                1: [
                    _part("foundation", (0, 0, 0), scale=[3, 1, 2]),
                    *_corner_walls(),
                    _part("door", (0, 0, -1)),
                    _part("window", (-1, 1, 0)),
                    _part("window", (1, 1, 0)),
                    _part("roof", (0, 2, 0), scale=[3.2, 1, 2.2]),
                    _part("chimney", (1, 3, 0)),
                    _part("decoration", (0, 1.5, -1.2)),
                ],
            },
        },
        {
            "id": "farm",
            "name": "Medieval Farm",
            "category": "resource",
            "baseSize": [3, 3],
            "height": 2,
            "components": {
                1: [
                    _part("foundation", (0, 0, 0), scale=[2, 1, 2]),
                    _part("wall", (-1, 0, -1)),
                    _part("wall", (1, 0, -1)),
                    _part("door", (0, 0, -1)),
                    _part("roof", (0, 2, 0)),
                    _part("decoration", (2, 0, 2)),
                ],
            },
        },
        {
            "id": "tower",
            "name": "Guard Tower",
            "category": "military",
            "baseSize": [1, 1],
            "height": 5,
            "components": {
                1: [
                    _part("foundation", (0, 0, 0)),
                    _part("tower", (0, 0, 0)),
                    _part("stairs", (0, 0, 0.5)),
                    _part("window", (0, 3, -0.5)),
                    _part("roof", (0, 5, 0)),
                ],
            },
        },
        {
            "id": "castle",
            "name": "Medieval Castle",
            "category": "special",
            "baseSize": [5, 5],
            "height": 6,
            "components": {
                1: [
                    _part("foundation", (0, 0, 0), scale=[5, 1, 5]),
                    _part("pillar", (-2, 0, -2)),
                    _part("pillar", (2, 0, -2)),
                    _part("pillar", (2, 0, 2)),
                    _part("pillar", (-2, 0, 2)),
                    *_corner_walls(2.0),
                    _part("door", (0, 0, -2)),
                ],
                2: [
                    _part("tower", (-2, 2, -2)),
                    _part("tower", (2, 2, -2)),
                    _part("tower", (2, 2, 2)),
                    _part("tower", (-2, 2, 2)),
                    _part("window", (0, 3, -2)),
                    _part("roof", (0, 4, 0), scale=[4, 1, 4]),
                ],
                3: [
                    _part("stairs", (0, 0, -2.5)),
                    _part("decoration", (0, 5, 0)),
                ],
            },
        },
    ]
}


def recipe_from_dict(payload: Mapping[str, object]) -> BuildingRecipe:
    """Build a :class:`BuildingRecipe` from its JSON-like description."""

    recipe_id = str(payload.get("id", "")).strip()
    if not recipe_id:
        raise ValueError("Recipe id is required")
    raw_components = payload.get("components") or {}
    if not isinstance(raw_components, Mapping):
        raise ValueError(f"Recipe {recipe_id} components must be keyed by level")
    components: Dict[int, Tuple[BuildingComponent, ...]] = {}
    for level, entries in raw_components.items():
        components[int(level)] = tuple(
            BuildingComponent.from_dict(entry) for entry in entries  # type: ignore[union-attr]
        )
    base_size = payload.get("baseSize", payload.get("base_size", (1, 1)))
    width, depth = (int(value) for value in base_size)  # type: ignore[union-attr]
    return BuildingRecipe(
        id=recipe_id,
        name=str(payload.get("name", recipe_id.title())),
        category=str(payload.get("category", "general")),
        base_size=(width, depth),
        height=float(payload.get("height", 1)),  # type: ignore[arg-type]
        components=components,
    )


def load_recipes(data: Mapping[str, Iterable[Mapping[str, object]]] | None = None) -> Dict[str, BuildingRecipe]:
    source = data if data is not None else DEFAULT_RECIPE_DATA
    recipes: Dict[str, BuildingRecipe] = {}
    for entry in source.get("recipes", []):
        recipe = recipe_from_dict(entry)
        if recipe.id in recipes:
            logger.warning("Duplicate recipe %s ignored", recipe.id)
            continue
        recipes[recipe.id] = recipe
    return recipes


_DEFAULT_RECIPES: Optional[Dict[str, BuildingRecipe]] = None


def get_recipe(recipe_id: str) -> Optional[BuildingRecipe]:
    global _DEFAULT_RECIPES
    if _DEFAULT_RECIPES is None:
        _DEFAULT_RECIPES = load_recipes()
    return _DEFAULT_RECIPES.get(str(recipe_id).strip().lower())
