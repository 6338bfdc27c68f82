"""Owner of the construction scheduler, cell timers and production polling."""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from typing import Deque, Dict, List, Mapping, Optional, Sequence, Set

from . import config
from .backend import LocalBackend, TownBackend
from .construction import ConstructionProject, ConstructionScheduler, ProjectStatus
from .errors import BackendError, InsufficientResourcesError, NotFoundError
from .production import CollectResult, ProductionAccumulator
from .recipe_catalog import get_recipe
from .reconciler import ReconcileReport, TimerReconciler
from .resource_ledger import ResourceLedger
from .resources import Resource, normalise_mapping, to_payload
from .timers import Clock, ManualClock, SystemClock, TimerKind, TimerQueue
from .town import Building, Town


logger = logging.getLogger(__name__)


class RealmState:
    """Central storage for the realm: town, ledger, projects and timers."""

    _instance: Optional["RealmState"] = None

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._lock = threading.RLock()
        self._tick_count = 0
        self._state_version = 0
        self.notifications: Deque[str] = deque(maxlen=config.NOTIFICATION_QUEUE_LIMIT)
        self.timers: Optional[TimerQueue] = None
        self._initialise_state(clock)

    # ------------------------------------------------------------------
    @classmethod
    def get_instance(cls) -> "RealmState":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def reset(self, clock: Optional[Clock] = None) -> None:
        self._initialise_state(clock)

    def _initialise_state(self, clock: Optional[Clock]) -> None:
        with self._lock:
            if self.timers is not None:
                self.shutdown()
                self.timers.clear()
            self.clock: Clock = clock or SystemClock()
            self._tick_count = 0
            self._state_version = 0
            self.notifications.clear()
            self.timers = TimerQueue(self.clock)
            self.ledger = ResourceLedger(config.STARTING_RESOURCES)
            self.backend: TownBackend = LocalBackend(
                Town.starting(self.clock.now_ms()), self.ledger, self.clock
            )
            self.town: Town = self.backend.get_town()
            self.scheduler = ConstructionScheduler(self.timers, self.clock)
            self._project_costs: Dict[str, Dict[Resource, float]] = {}
            self._completed_types: Set[str] = set()
            self._provisional: Dict[Resource, float] = {}
            self.reconciler = TimerReconciler(
                self.town, self.timers, self.clock, notifier=self.add_notification
            )
            self.reconciler.add_listener(self._on_cell_finalized)
            self.accumulator = ProductionAccumulator(self.town, self.clock, backend=self.backend)
            self.reconciler.reconcile()
            self.accumulator.start(self.timers)

    def use_backend(self, backend: TownBackend) -> ReconcileReport:
        """Point the realm at another authoritative backend and reload from it."""

        with self._lock:
            self.backend = backend
            self.accumulator.backend = backend
            return self.reload()

    def restore(self, town: Town, resources: Mapping[Resource | str, float]) -> ReconcileReport:
        """Replace the authoritative town and balances, e.g. after loading a save.

        The loaded cells are reconciled as stored, so anything that finished
        while the save was offline is finalized here with its notification.
        """

        with self._lock:
            self.ledger = ResourceLedger(resources)
            self._provisional = {}
            self.backend = LocalBackend(town, self.ledger, self.clock)
            self.accumulator.backend = self.backend
            return self._adopt_town(town.copy())

    # ------------------------------------------------------------------
    # Notifications

    def add_notification(self, message: str) -> None:
        self.notifications.append(message)

    def consume_notification(self) -> Optional[str]:
        if not self.notifications:
            return None
        return self.notifications.popleft()

    def list_notifications(self) -> List[str]:
        return list(self.notifications)

    # ------------------------------------------------------------------
    # Time

    def tick(self) -> int:
        """Fire every due timer; returns how many fired."""

        with self._lock:
            fired = self.timers.run_due()
            self._tick_count += 1
            if self._tick_count % config.PROJECT_CLEANUP_EVERY_TICKS == 0:
                self.scheduler.cleanup_completed_projects()
            if fired:
                self._state_version += 1
                logger.debug("Tick %s fired %s timers", self._tick_count, fired)
            return fired

    def advance_time(self, seconds: float) -> int:
        """Move a manual clock forward and tick; a wall clock simply ticks."""

        with self._lock:
            if isinstance(self.clock, ManualClock):
                self.clock.advance(max(0.0, float(seconds)))
            return self.tick()

    # ------------------------------------------------------------------
    # Construction projects

    def _require_project(self, project_id: str) -> ConstructionProject:
        project = self.scheduler.get_project(str(project_id))
        if project is None:
            raise NotFoundError("Proyecto inexistente", code="project_not_found")
        return project

    def _charge(self, cost: Mapping[Resource, float]) -> None:
        if not self.ledger.consume(cost):
            raise InsufficientResourcesError(cost)

    def _missing_requirements(self, requires: Sequence[str]) -> List[str]:
        built = self._completed_types | {
            building.type for building in self.town.buildings() if not building.in_progress
        }
        return [type_key for type_key in requires if type_key not in built]

    def start_project(
        self,
        building_type: str,
        position: Sequence[float] = (0.0, 0.0, 0.0),
        workers: Optional[float] = None,
    ) -> ConstructionProject:
        try:
            key = config.normalise_building_key(building_type)
        except ValueError as exc:
            raise NotFoundError(str(exc), code="invalid_building_type") from exc
        option = config.CONSTRUCTION_OPTIONS.get(key)
        if option is None:
            raise NotFoundError(
                f"Tipo de construcción desconocido: {building_type}",
                code="invalid_building_type",
            )
        recipe = get_recipe(option.type)
        if recipe is None:
            raise NotFoundError(f"Receta no encontrada: {option.type}", code="recipe_not_found")

        with self._lock:
            missing = self._missing_requirements(option.requires)
            if missing:
                raise BackendError(
                    f"Requisitos no cumplidos: {', '.join(missing)}",
                    code="requirements_not_met",
                )
            self._charge(option.cost)
            pace = option.default_workers if workers is None else float(workers)
            project_id = self.scheduler.start_construction(option.type, recipe, position, pace)
            self._project_costs[project_id] = dict(option.cost)
            self.scheduler.on_project_update(project_id, self._on_project_update)
            self._state_version += 1
            return self._require_project(project_id)

    def _on_project_update(self, snapshot: Dict[str, object]) -> None:
        self._state_version += 1
        if snapshot.get("status") != ProjectStatus.COMPLETED.value:
            return
        project_id = str(snapshot["id"])
        building_type = str(snapshot["building_type"])
        self._completed_types.add(building_type)
        self._project_costs.pop(project_id, None)
        option = config.CONSTRUCTION_OPTIONS.get(building_type)
        name = option.name if option else building_type
        self.add_notification(f"Construcción completada: {name}")

    def pause_project(self, project_id: str) -> ConstructionProject:
        with self._lock:
            project = self._require_project(project_id)
            if not self.scheduler.pause_construction(project.id):
                raise BackendError(
                    "El proyecto no está en curso", code="invalid_project_state", http_status=409
                )
            self._state_version += 1
            return project

    def resume_project(self, project_id: str) -> ConstructionProject:
        with self._lock:
            project = self._require_project(project_id)
            if not self.scheduler.resume_construction(project.id):
                raise BackendError(
                    "El proyecto no está pausado", code="invalid_project_state", http_status=409
                )
            self._state_version += 1
            return project

    def cancel_project(self, project_id: str) -> Dict[Resource, float]:
        """Cancel an active project and refund part of what it cost."""

        with self._lock:
            project = self._require_project(project_id)
            if not project.is_active:
                raise BackendError(
                    "El proyecto ya ha finalizado", code="invalid_project_state", http_status=409
                )
            self.scheduler.cancel_construction(project.id)
            cost = self._project_costs.pop(project.id, {})
            refunded = self.ledger.refund(cost, config.CANCEL_REFUND_RATE)
            self._state_version += 1
            logger.info("Project %s cancelled, refunded %s", project.id, refunded)
            self.add_notification(f"Construcción cancelada: {project.building_type}")
            return refunded

    def accelerate_project(self, project_id: str) -> ConstructionProject:
        """Pay gold to double the pace of the phases still ahead."""

        with self._lock:
            project = self._require_project(project_id)
            if project.status is not ProjectStatus.IN_PROGRESS:
                raise BackendError(
                    "El proyecto no está en curso", code="invalid_project_state", http_status=409
                )
            self._charge(config.ACCELERATE_COST)
            self.scheduler.accelerate(project.id, config.ACCELERATE_MULTIPLIER)
            self._state_version += 1
            return project

    def rush_project(self, project_id: str) -> int:
        """Pay gems to finish a project immediately; returns the gems spent."""

        with self._lock:
            project = self._require_project(project_id)
            if not project.is_active:
                raise BackendError(
                    "El proyecto ya ha finalizado", code="invalid_project_state", http_status=409
                )
            gems = config.rush_cost(self.scheduler.remaining_ms(project.id))
            if gems:
                self._charge({Resource.GEMS: float(gems)})
            self.scheduler.force_complete(project.id)
            self._state_version += 1
            return gems

    def cleanup_projects(self) -> int:
        with self._lock:
            removed = self.scheduler.cleanup_completed_projects()
            if removed:
                self._state_version += 1
            return removed

    # ------------------------------------------------------------------
    # Town cells

    def _adopt_cell(self, building: Building) -> Building:
        cell = self.town.place(replace(building))
        self.reconciler.reconcile_building(cell)
        self._state_version += 1
        return cell

    def build_cell(self, x: int, y: int, type_key: str) -> Building:
        with self._lock:
            return self._adopt_cell(self.backend.build(x, y, type_key))

    def upgrade_cell(self, x: int, y: int) -> Building:
        with self._lock:
            return self._adopt_cell(self.backend.upgrade(x, y))

    def speedup_cell(self, x: int, y: int) -> Building:
        with self._lock:
            finished = self.backend.speedup(x, y)
            self.reconciler.finalize_any(x, y)
            return self._adopt_cell(finished)

    def _on_cell_finalized(self, building: Building, kind: TimerKind) -> None:
        self._state_version += 1
        self.accumulator.poll()

    def collect_resources(self) -> CollectResult:
        with self._lock:
            result = self.accumulator.collect()
            if result.degraded:
                # The backend never saw this collect, so its next payout covers
                # the same window again. Hold the credit until then.
                credited = normalise_mapping(
                    {key: amount for key, amount in result.collected.items() if amount > 0}
                )
                self.ledger.add(credited)
                for resource, amount in credited.items():
                    self._provisional[resource] = self._provisional.get(resource, 0.0) + amount
                if result.notice:
                    self.add_notification(result.notice)
            elif self._provisional:
                dropped = self.ledger.withdraw(self._provisional)
                self._provisional = {}
                logger.info("Dropped provisional collect credit %s", to_payload(dropped))
            self._state_version += 1
            return result

    def reload(self) -> ReconcileReport:
        """Drop cell timers, re-read the authoritative town and reconcile.

        The collect anchor comes back from the backend as well, so pending
        production after a degraded collect reflects what it still owes.
        """

        with self._lock:
            return self._adopt_town(self.backend.get_town())

    def _adopt_town(self, town: Town) -> ReconcileReport:
        self.reconciler.release_all()
        self.town = town
        report = self.reconciler.attach(town)
        self.accumulator.attach(town)
        self._state_version += 1
        logger.info("Realm reloaded: %s", report.to_dict())
        return report

    def shutdown(self) -> None:
        with self._lock:
            self.accumulator.stop()
            self.reconciler.release_all()

    # ------------------------------------------------------------------
    # Snapshots

    def project_snapshot(self, project: ConstructionProject) -> Dict[str, object]:
        payload = project.to_snapshot()
        payload["progress"] = self.scheduler.get_progress(project.id)
        detailed = self.scheduler.get_detailed_progress(project.id)
        payload["detail"] = detailed.to_dict() if detailed else None
        payload["remaining_ms"] = self.scheduler.remaining_ms(project.id)
        return payload

    def snapshot_projects(self) -> List[Dict[str, object]]:
        return [self.project_snapshot(project) for project in self.scheduler.list_projects()]

    def snapshot_town(self) -> Dict[str, object]:
        return self.town.to_dict()

    def resources_snapshot(self) -> Dict[str, float]:
        return self.ledger.snapshot()

    def provisional_snapshot(self) -> Dict[str, float]:
        return to_payload(self._provisional)

    def authoritative_resources(self) -> Dict[str, float]:
        """Balances without credit from collects the backend has not paid out."""

        with self._lock:
            balances = dict(self.backend.resources())
            for resource, amount in self._provisional.items():
                balances[resource.value] = max(0.0, balances.get(resource.value, 0.0) - amount)
            return balances

    def snapshot_state(self) -> Dict[str, object]:
        with self._lock:
            return {
                "resources": self.resources_snapshot(),
                "town": self.snapshot_town(),
                "projects": self.snapshot_projects(),
                "pending": self.accumulator.pending,
                "has_pending": self.accumulator.has_pending,
                "provisional": self.provisional_snapshot(),
                "timers": [
                    {"key": key, "due": due} for key, due in self.timers.snapshot()
                ],
                "notifications": self.list_notifications(),
                "now": self.clock.now_ms(),
                "version": int(self._state_version),
            }

    def response_metadata(self) -> Dict[str, object]:
        with self._lock:
            version_value = int(self._state_version)
        timestamp = (
            datetime.now(timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )
        return {
            "request_id": uuid.uuid4().hex,
            "server_time": timestamp,
            "version": version_value,
        }


def get_realm_state() -> RealmState:
    return RealmState.get_instance()
