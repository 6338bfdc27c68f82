"""Timed, phase-by-phase construction projects."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from . import config
from .phases import derive_phases, total_duration
from .recipe_models import BuildingComponent, BuildingRecipe, ConstructionPhase
from .timers import Clock, TimerKey, TimerQueue


logger = logging.getLogger(__name__)

Position = Tuple[float, float, float]


class ProjectStatus(str, Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset({ProjectStatus.IN_PROGRESS, ProjectStatus.PAUSED})
TERMINAL_STATUSES = frozenset({ProjectStatus.COMPLETED, ProjectStatus.CANCELLED})


@dataclass
class ConstructionProject:
    """Mutable record of one tracked construction."""

    id: str
    building_type: str
    recipe: BuildingRecipe
    position: Position
    start_time: int
    phases: Tuple[ConstructionPhase, ...]
    current_phase_index: int = 0
    status: ProjectStatus = ProjectStatus.PLANNED
    total_duration: float = 0.0
    completed_components: Set[str] = field(default_factory=set)
    workers: float = 1.0
    phase_started_at: Optional[int] = None
    phase_deadline: Optional[int] = None
    paused_at: Optional[int] = None
    paused_elapsed_ms: int = 0
    completed_at: Optional[int] = None

    # ------------------------------------------------------------------
    @property
    def current_phase(self) -> Optional[ConstructionPhase]:
        if 0 <= self.current_phase_index < len(self.phases):
            return self.phases[self.current_phase_index]
        return None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def phase_duration_ms(self, phase: ConstructionPhase) -> int:
        return int(round(phase.duration * 1000.0 / max(1.0, self.workers)))

    def remaining_phases_ms(self) -> int:
        """Duration of the phases after the current one at today's pace."""

        return sum(
            self.phase_duration_ms(phase)
            for phase in self.phases[self.current_phase_index + 1:]
        )

    def to_snapshot(self) -> Dict[str, object]:
        current = self.current_phase
        return {
            "id": self.id,
            "building_type": self.building_type,
            "recipe_id": self.recipe.id,
            "position": list(self.position),
            "start_time": self.start_time,
            "status": self.status.value,
            "current_phase_index": self.current_phase_index,
            "current_phase": current.id if current else None,
            "phase_count": len(self.phases),
            "phases": [phase.id for phase in self.phases],
            "total_duration": self.total_duration,
            "workers": self.workers,
            "completed_components": sorted(self.completed_components),
            "phase_deadline": self.phase_deadline,
            "paused_at": self.paused_at,
            "completed_at": self.completed_at,
        }


@dataclass(frozen=True)
class DetailedProgress:
    overall: float
    current_phase: str
    phase_progress: float
    components_visible: Tuple[BuildingComponent, ...]
    next_components: Tuple[BuildingComponent, ...]
    estimated_completion: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "overall": self.overall,
            "current_phase": self.current_phase,
            "phase_progress": self.phase_progress,
            "components_visible": [c.to_dict() for c in self.components_visible],
            "next_components": [c.to_dict() for c in self.next_components],
            "estimated_completion": self.estimated_completion,
        }


ProjectCallback = Callable[[Dict[str, object]], None]


def _new_project_id(now_ms: int) -> str:
    return f"construction_{now_ms}_{uuid.uuid4().hex[:9]}"


class ConstructionScheduler:
    """Owns every construction project and its phase-completion timers.

    All operations on unknown ids return a ``None``/``False``/``0`` sentinel.
    A phase timer that fires for a project which is no longer in progress
    is discarded.
    """

    def __init__(
        self,
        timers: TimerQueue,
        clock: Optional[Clock] = None,
        *,
        resume_preserves_progress: Optional[bool] = None,
        id_factory: Callable[[int], str] = _new_project_id,
    ) -> None:
        self.timers = timers
        self.clock = clock or timers.clock
        if resume_preserves_progress is None:
            resume_preserves_progress = config.RESUME_PRESERVES_PHASE_PROGRESS
        self.resume_preserves_progress = bool(resume_preserves_progress)
        self._id_factory = id_factory
        self._projects: Dict[str, ConstructionProject] = {}
        self._callbacks: Dict[str, ProjectCallback] = {}

    # ------------------------------------------------------------------
    # Lifecycle

    def start_construction(
        self,
        building_type: str,
        recipe: BuildingRecipe,
        position: Sequence[float] = (0.0, 0.0, 0.0),
        workers: float = 1,
    ) -> str:
        now = self.clock.now_ms()
        phases = tuple(derive_phases(recipe))
        pace = max(1.0, float(workers))
        x, y, z = (float(value) for value in position)
        project = ConstructionProject(
            id=self._id_factory(now),
            building_type=str(building_type),
            recipe=recipe,
            position=(x, y, z),
            start_time=now,
            phases=phases,
            status=ProjectStatus.IN_PROGRESS,
            total_duration=total_duration(phases, pace),
            workers=pace,
        )
        self._projects[project.id] = project
        logger.info(
            "Construction %s started: type=%s phases=%s workers=%s total=%.1fs",
            project.id,
            project.building_type,
            len(phases),
            pace,
            project.total_duration,
        )
        if phases:
            self._schedule_phase(project, now)
        else:
            self._finalize(project, now)
        return project.id

    def _schedule_phase(
        self,
        project: ConstructionProject,
        start_ms: int,
        elapsed_ms: int = 0,
    ) -> None:
        phase = project.current_phase
        if phase is None:
            self._finalize(project, start_ms)
            return
        duration_ms = project.phase_duration_ms(phase)
        elapsed_ms = min(max(0, int(elapsed_ms)), duration_ms)
        project.phase_started_at = start_ms - elapsed_ms
        project.phase_deadline = self.timers.schedule(
            TimerKey.project(project.id),
            duration_ms - elapsed_ms,
            lambda: self._complete_phase(project.id),
            start_ms=start_ms,
        )

    def _complete_phase(self, project_id: str) -> None:
        project = self._projects.get(project_id)
        if project is None or project.status is not ProjectStatus.IN_PROGRESS:
            logger.debug("Stale phase timer for %s ignored", project_id)
            return
        finished_at = project.phase_deadline or self.clock.now_ms()
        phase = project.current_phase
        if phase is None:
            self._finalize(project, finished_at)
            return

        project.completed_components.update(phase.component_keys)
        project.current_phase_index += 1
        logger.debug(
            "Construction %s finished phase %s (%s/%s)",
            project.id,
            phase.id,
            project.current_phase_index,
            len(project.phases),
        )
        self._notify(project)

        if project.current_phase_index < len(project.phases):
            self._schedule_phase(project, finished_at)
        else:
            self._finalize(project, finished_at)

    def _finalize(self, project: ConstructionProject, finished_at: int) -> None:
        project.current_phase_index = len(project.phases)
        project.status = ProjectStatus.COMPLETED
        project.phase_deadline = None
        project.completed_at = finished_at
        logger.info("Construction %s completed", project.id)
        self._notify(project)

    def _notify(self, project: ConstructionProject) -> None:
        callback = self._callbacks.get(project.id)
        if callback is None:
            return
        try:
            callback(project.to_snapshot())
        except Exception:
            logger.exception("Update callback for %s failed", project.id)

    # ------------------------------------------------------------------
    # Queries

    def get_project(self, project_id: str) -> Optional[ConstructionProject]:
        return self._projects.get(project_id)

    def get_progress(self, project_id: str) -> float:
        project = self._projects.get(project_id)
        if project is None:
            return 0.0
        if project.status is ProjectStatus.COMPLETED:
            return 1.0
        if not project.phases:
            return 0.0
        if project.current_phase is None:
            # Out-of-range index; reported as done, like the detailed view.
            return 1.0
        return project.current_phase_index / len(project.phases)

    def get_detailed_progress(self, project_id: str) -> Optional[DetailedProgress]:
        project = self._projects.get(project_id)
        if project is None:
            return None
        everything = tuple(c for phase in project.phases for c in phase.components)

        if project.status is ProjectStatus.COMPLETED:
            return DetailedProgress(
                overall=1.0,
                current_phase="Completed",
                phase_progress=1.0,
                components_visible=everything,
                next_components=(),
                estimated_completion=project.completed_at or project.start_time,
            )
        if not project.phases:
            return DetailedProgress(
                overall=self.get_progress(project_id),
                current_phase="No phases",
                phase_progress=0.0,
                components_visible=(),
                next_components=(),
                estimated_completion=project.start_time,
            )
        phase = project.current_phase
        if phase is None:
            # Corrupted index; report the project as done rather than fail.
            logger.warning(
                "Construction %s has out-of-range phase index %s",
                project.id,
                project.current_phase_index,
            )
            return DetailedProgress(
                overall=1.0,
                current_phase="Invalid phase",
                phase_progress=1.0,
                components_visible=everything,
                next_components=(),
                estimated_completion=project.completed_at or self.clock.now_ms(),
            )

        now = self.clock.now_ms()
        visible = tuple(
            c for done in project.phases[: project.current_phase_index] for c in done.components
        )
        return DetailedProgress(
            overall=self.get_progress(project_id),
            current_phase=phase.name,
            phase_progress=self._phase_progress(project, now),
            components_visible=visible,
            next_components=phase.components,
            estimated_completion=self._estimate_completion(project, now),
        )

    def _phase_progress(self, project: ConstructionProject, now: int) -> float:
        started = project.phase_started_at
        deadline = project.phase_deadline
        if project.status is ProjectStatus.PAUSED:
            phase = project.current_phase
            if phase is None or started is None:
                return 0.0
            frozen = project.paused_elapsed_ms if self.resume_preserves_progress else 0
            return min(max(frozen / max(1, project.phase_duration_ms(phase)), 0.0), 1.0)
        if started is None or deadline is None or deadline <= started:
            return 0.0
        return min(max((now - started) / (deadline - started), 0.0), 1.0)

    def _estimate_completion(self, project: ConstructionProject, now: int) -> int:
        phase = project.current_phase
        if phase is None:
            return now
        if project.status is ProjectStatus.IN_PROGRESS and project.phase_deadline is not None:
            current_end = project.phase_deadline
        else:
            remaining = project.phase_duration_ms(phase)
            if self.resume_preserves_progress:
                remaining -= min(project.paused_elapsed_ms, remaining)
            current_end = now + remaining
        return max(now, current_end) + project.remaining_phases_ms()

    def get_active_projects(self) -> List[ConstructionProject]:
        return [project for project in self._projects.values() if project.is_active]

    def list_projects(self) -> List[ConstructionProject]:
        return list(self._projects.values())

    # ------------------------------------------------------------------
    # Controls

    def pause_construction(self, project_id: str) -> bool:
        project = self._projects.get(project_id)
        if project is None or project.status is not ProjectStatus.IN_PROGRESS:
            return False
        now = self.clock.now_ms()
        project.status = ProjectStatus.PAUSED
        project.paused_at = now
        started = project.phase_started_at if project.phase_started_at is not None else now
        project.paused_elapsed_ms = max(0, now - started)
        # The armed timer stays pending; its firing is ignored while paused.
        logger.info("Construction %s paused", project.id)
        return True

    def resume_construction(self, project_id: str) -> bool:
        project = self._projects.get(project_id)
        if project is None or project.status is not ProjectStatus.PAUSED:
            return False
        now = self.clock.now_ms()
        elapsed = project.paused_elapsed_ms if self.resume_preserves_progress else 0
        project.status = ProjectStatus.IN_PROGRESS
        project.paused_at = None
        project.paused_elapsed_ms = 0
        self._schedule_phase(project, now, elapsed_ms=elapsed)
        logger.info("Construction %s resumed", project.id)
        return True

    def cancel_construction(self, project_id: str) -> bool:
        project = self._projects.pop(project_id, None)
        if project is None:
            return False
        project.status = ProjectStatus.CANCELLED
        project.phase_deadline = None
        self._callbacks.pop(project_id, None)
        self.timers.cancel(TimerKey.project(project_id))
        logger.info("Construction %s cancelled", project_id)
        return True

    def accelerate(self, project_id: str, multiplier: float) -> bool:
        """Multiply the project's pace for the phases that have not started.

        The timer already armed for the current phase keeps its deadline.
        """

        project = self._projects.get(project_id)
        if project is None or project.status is not ProjectStatus.IN_PROGRESS:
            return False
        try:
            factor = float(multiplier)
        except (TypeError, ValueError):
            return False
        if factor < 1.0:
            return False
        project.workers = project.workers * factor
        project.total_duration = total_duration(project.phases, project.workers)
        logger.info(
            "Construction %s accelerated x%s (workers=%s)", project.id, factor, project.workers
        )
        return True

    def speed_up_construction(self, project_id: str, multiplier: float) -> bool:
        return self.accelerate(project_id, multiplier)

    def force_complete(self, project_id: str) -> bool:
        """Finish the project immediately, revealing every component."""

        project = self._projects.get(project_id)
        if project is None or project.status not in ACTIVE_STATUSES:
            return False
        self.timers.cancel(TimerKey.project(project_id))
        for phase in project.phases[project.current_phase_index:]:
            project.completed_components.update(phase.component_keys)
        project.paused_at = None
        project.paused_elapsed_ms = 0
        self._finalize(project, self.clock.now_ms())
        return True

    def remaining_ms(self, project_id: str) -> int:
        project = self._projects.get(project_id)
        if project is None or not project.is_active:
            return 0
        now = self.clock.now_ms()
        return max(0, self._estimate_completion(project, now) - now)

    # ------------------------------------------------------------------
    # Subscriptions and housekeeping

    def on_project_update(self, project_id: str, callback: ProjectCallback) -> bool:
        if project_id not in self._projects:
            return False
        self._callbacks[project_id] = callback
        return True

    def off_project_update(self, project_id: str) -> bool:
        return self._callbacks.pop(project_id, None) is not None

    def cleanup_completed_projects(self) -> int:
        finished = [
            project_id
            for project_id, project in self._projects.items()
            if project.status in TERMINAL_STATUSES
        ]
        for project_id in finished:
            del self._projects[project_id]
            self._callbacks.pop(project_id, None)
        if finished:
            logger.debug("Removed %s finished construction projects", len(finished))
        return len(finished)
