"""Authoritative town backend.

:class:`TownBackend` is the contract the realm owner talks to. The in-process
:class:`LocalBackend` implements it against a :class:`~realm.town.Town` and a
:class:`~realm.resource_ledger.ResourceLedger`, settling elapsed builds and
upgrades whenever it is accessed.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, Mapping

from . import config
from .errors import BackendError, InsufficientResourcesError, NotFoundError
from .production import compute_pending
from .resource_ledger import ResourceLedger
from .resources import Resource
from .timers import Clock
from .town import Building, Town


logger = logging.getLogger(__name__)


class TownBackend(ABC):
    """Operations offered by the authoritative town service."""

    @abstractmethod
    def get_town(self) -> Town:
        raise NotImplementedError

    @abstractmethod
    def resources(self) -> Dict[str, float]:
        raise NotImplementedError

    @abstractmethod
    def build(self, x: int, y: int, type_key: str) -> Building:
        raise NotImplementedError

    @abstractmethod
    def upgrade(self, x: int, y: int) -> Building:
        raise NotImplementedError

    @abstractmethod
    def speedup(self, x: int, y: int) -> Building:
        raise NotImplementedError

    @abstractmethod
    def collect(self) -> Dict[str, float]:
        raise NotImplementedError


class LocalBackend(TownBackend):
    """Backend kept in process memory; every returned town or cell is a copy."""

    def __init__(
        self,
        town: Town,
        ledger: ResourceLedger,
        clock: Clock,
        building_configs: Mapping[str, config.BuildingConfig] = config.BUILDING_CONFIGS,
    ) -> None:
        self.town = town
        self.ledger = ledger
        self.clock = clock
        self.building_configs = building_configs

    # ------------------------------------------------------------------
    def settle(self) -> int:
        """Finish every build or upgrade whose end time has passed."""

        now = self.clock.now_ms()
        settled = 0
        for building in self.town.in_progress():
            for kind, end_time in building.pending_timers():
                if end_time is not None and end_time <= now and building.finish(kind):
                    settled += 1
        if settled:
            logger.debug("Backend settled %s cells", settled)
        return settled

    def get_town(self) -> Town:
        self.settle()
        return self.town.copy()

    def resources(self) -> Dict[str, float]:
        return self.ledger.snapshot()

    # ------------------------------------------------------------------
    def _config(self, type_key: str) -> config.BuildingConfig:
        try:
            canonical = config.resolve_building_type(type_key)
        except ValueError as exc:
            raise NotFoundError(str(exc), code="invalid_building_type") from exc
        building_config = self.building_configs.get(canonical)
        if building_config is None:
            raise NotFoundError(
                f"Configuración de edificio no encontrada: {type_key}",
                code="invalid_building_type",
            )
        return building_config

    def _occupied_cell(self, x: int, y: int) -> Building:
        cell = self.town.get(x, y)
        if cell is None or cell.is_empty:
            raise NotFoundError("Edificio no encontrado", code="building_not_found")
        return cell

    def _charge(self, cost: Mapping[Resource, float]) -> None:
        if not self.ledger.consume(cost):
            raise InsufficientResourcesError(cost)

    # ------------------------------------------------------------------
    def build(self, x: int, y: int, type_key: str) -> Building:
        self.settle()
        building_config = self._config(type_key)
        if not self.town.in_bounds(x, y):
            raise BackendError("Posición fuera del mapa", code="out_of_bounds")
        cell = self.town.get(x, y)
        if cell is not None and not cell.is_empty:
            raise BackendError("Posición ocupada", code="position_occupied", http_status=409)
        level_cost = building_config.cost_for(1)
        if level_cost is None:
            raise BackendError("Costo de construcción no configurado", code="cost_not_configured")
        self._charge(level_cost.resources)

        if cell is None:
            cell = self.town.place(Building(x=int(x), y=int(y)))
        now = self.clock.now_ms()
        cell.start_build(building_config.type, now, int(level_cost.time * 1000))
        logger.info("Backend build %s at %s,%s ends %s", cell.type, x, y, cell.build_end_time)
        return replace(cell)

    def upgrade(self, x: int, y: int) -> Building:
        self.settle()
        cell = self._occupied_cell(x, y)
        if cell.in_progress:
            raise BackendError(
                "El edificio ya está en obras", code="already_in_progress", http_status=409
            )
        building_config = self._config(cell.type)
        if cell.level >= building_config.max_level:
            raise BackendError("El edificio ya está al nivel máximo", code="max_level")
        level_cost = building_config.cost_for(cell.level + 1)
        if level_cost is None:
            raise BackendError("Costo de mejora no configurado", code="cost_not_configured")
        self._charge(level_cost.resources)

        now = self.clock.now_ms()
        cell.start_upgrade(now, int(level_cost.time * 1000))
        logger.info(
            "Backend upgrade %s at %s,%s to level %s ends %s",
            cell.type,
            x,
            y,
            cell.level + 1,
            cell.upgrade_end_time,
        )
        return replace(cell)

    def speedup(self, x: int, y: int) -> Building:
        self.settle()
        cell = self._occupied_cell(x, y)
        if not cell.in_progress:
            raise BackendError("No hay obras en curso", code="not_in_progress")
        end_time = cell.end_time() or self.clock.now_ms()
        gems = config.rush_cost(end_time - self.clock.now_ms())
        if gems:
            self._charge({Resource.GEMS: float(gems)})
        for kind, _ in cell.pending_timers():
            cell.finish(kind)
        logger.info("Backend speedup at %s,%s for %s gems", x, y, gems)
        return replace(cell)

    def collect(self) -> Dict[str, float]:
        self.settle()
        now = self.clock.now_ms()
        produced = compute_pending(
            self.town.buildings(), now, self.town.last_collected, self.building_configs
        )
        self.ledger.add(produced)
        self.town.last_collected = now
        return produced
