"""Pending production derived from elapsed wall-clock time."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, Mapping, Optional

from . import config
from .errors import BackendUnavailableError
from .resources import empty_amounts
from .timers import Clock, TimerKey, TimerKind, TimerQueue
from .town import Building, Town

if TYPE_CHECKING:
    from .backend import TownBackend


logger = logging.getLogger(__name__)

DEGRADED_NOTICE = "Servidor no disponible: recursos calculados localmente"


def compute_pending(
    buildings: Iterable[Building],
    now_ms: int,
    last_collected_ms: int,
    building_configs: Mapping[str, config.BuildingConfig] = config.BUILDING_CONFIGS,
) -> Dict[str, float]:
    """Return the resources produced by ``buildings`` since ``last_collected_ms``.

    Only whole production cycles count, and buildings with a build or upgrade
    in progress produce nothing. The result depends on nothing but the
    arguments.
    """

    pending = empty_amounts()
    elapsed_ms = max(0, int(now_ms) - int(last_collected_ms))
    for building in buildings:
        if building.is_empty or building.in_progress:
            continue
        building_config = building_configs.get(building.type)
        if building_config is None:
            continue
        level_production = building_config.production_for(building.level)
        if level_production is None or level_production.time <= 0:
            continue
        cycles = elapsed_ms // int(level_production.time * 1000)
        if cycles <= 0:
            continue
        for resource, amount in level_production.resources.items():
            pending[resource.value] = pending.get(resource.value, 0.0) + float(amount) * cycles
    return pending


@dataclass
class CollectResult:
    collected: Dict[str, float]
    collected_at: int
    degraded: bool = False
    notice: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "collected": dict(self.collected),
            "collected_at": self.collected_at,
            "degraded": self.degraded,
            "notice": self.notice,
        }


class ProductionAccumulator:
    """Keeps a pending-resources snapshot fresh on a fixed poll interval."""

    def __init__(
        self,
        town: Town,
        clock: Clock,
        *,
        backend: Optional["TownBackend"] = None,
        building_configs: Mapping[str, config.BuildingConfig] = config.BUILDING_CONFIGS,
        poll_interval: float = config.PRODUCTION_POLL_INTERVAL_SEC,
    ) -> None:
        self.town = town
        self.clock = clock
        self.backend = backend
        self.building_configs = building_configs
        self.poll_interval = float(poll_interval)
        self._pending: Dict[str, float] = empty_amounts()
        self._timers: Optional[TimerQueue] = None

    # ------------------------------------------------------------------
    @property
    def pending(self) -> Dict[str, float]:
        return dict(self._pending)

    @property
    def has_pending(self) -> bool:
        return any(amount > 0 for amount in self._pending.values())

    def poll(self) -> Dict[str, float]:
        """Replace the pending snapshot with a fresh computation."""

        self._pending = compute_pending(
            self.town.buildings(),
            self.clock.now_ms(),
            self.town.last_collected,
            self.building_configs,
        )
        logger.debug("Pending production: %s", self._pending)
        return dict(self._pending)

    # ------------------------------------------------------------------
    def start(self, timers: TimerQueue) -> None:
        self._timers = timers
        self.poll()
        self._arm(None)

    def stop(self) -> None:
        if self._timers is not None:
            self._timers.cancel(TimerKey(TimerKind.PRODUCTION))
        self._timers = None

    def _arm(self, start_ms: Optional[int]) -> None:
        if self._timers is None:
            return
        self._timers.schedule(
            TimerKey(TimerKind.PRODUCTION),
            self.poll_interval * 1000.0,
            self._on_poll,
            start_ms=start_ms,
        )

    def _on_poll(self) -> None:
        try:
            self.poll()
        finally:
            self._arm(None)

    def attach(self, town: Town) -> None:
        self.town = town
        self.poll()

    # ------------------------------------------------------------------
    def collect(self) -> CollectResult:
        """Collect pending production through the backend.

        When the backend cannot be reached the locally computed snapshot is
        used instead and the result is flagged as degraded.
        """

        now = self.clock.now_ms()
        degraded = False
        notice: Optional[str] = None
        if self.backend is None:
            collected = compute_pending(
                self.town.buildings(), now, self.town.last_collected, self.building_configs
            )
            degraded = True
            notice = DEGRADED_NOTICE
        else:
            try:
                collected = dict(self.backend.collect())
            except BackendUnavailableError as exc:
                logger.warning("Collect fell back to local estimate: %s", exc)
                collected = compute_pending(
                    self.town.buildings(), now, self.town.last_collected, self.building_configs
                )
                degraded = True
                notice = DEGRADED_NOTICE
        self.town.last_collected = now
        self._pending = empty_amounts()
        logger.info("Collected %s (degraded=%s)", collected, degraded)
        return CollectResult(
            collected=collected,
            collected_at=now,
            degraded=degraded,
            notice=notice,
        )
