"""Derivation of ordered construction phases from building recipes."""
from __future__ import annotations

from types import MappingProxyType
from typing import Dict, List, Optional, Sequence, Tuple

from . import config
from .recipe_models import BuildingComponent, BuildingRecipe, ConstructionPhase


def group_components(
    recipe: BuildingRecipe,
    pipeline: Sequence[config.PhaseTemplate] = config.PHASE_PIPELINE,
) -> Dict[str, Tuple[BuildingComponent, ...]]:
    """Bucket the recipe's components by pipeline stage id."""

    buckets: Dict[str, List[BuildingComponent]] = {template.id: [] for template in pipeline}
    owner: Dict[str, str] = {}
    for template in pipeline:
        for component_type in template.component_types:
            owner.setdefault(component_type, template.id)
    for component in recipe.iter_components():
        stage = owner.get(component.type)
        if stage is not None:
            buckets[stage].append(component)
    return {stage: tuple(entries) for stage, entries in buckets.items()}


def derive_phases(
    recipe: BuildingRecipe,
    pipeline: Sequence[config.PhaseTemplate] = config.PHASE_PIPELINE,
) -> List[ConstructionPhase]:
    """Turn ``recipe`` into its ordered list of construction phases.

    Stages with no matching components are skipped and every emitted phase
    names the previously emitted one as its only prerequisite. A recipe
    without components yields an empty list.
    """

    buckets = group_components(recipe, pipeline)
    phases: List[ConstructionPhase] = []
    previous: Optional[str] = None
    for template in pipeline:
        components = buckets.get(template.id, ())
        if not components:
            continue
        phases.append(
            ConstructionPhase(
                id=template.id,
                name=template.name,
                duration=float(template.duration),
                components=components,
                resources=MappingProxyType(dict(template.resources)),
                prerequisite=previous,
                description=template.description,
            )
        )
        previous = template.id
    return phases


def total_duration(phases: Sequence[ConstructionPhase], workers: float = 1.0) -> float:
    """Return the wall-clock seconds needed for ``phases`` at ``workers`` pace."""

    pace = max(1.0, float(workers))
    return sum(phase.duration / pace for phase in phases)
