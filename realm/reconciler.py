"""Rebuild volatile cell timers from durable end timestamps."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from .timers import Clock, TimerKey, TimerKind, TimerQueue
from .town import Building, Town


logger = logging.getLogger(__name__)

Notifier = Optional[Callable[[str], None]]
FinalizeListener = Callable[[Building, TimerKind], None]

_CELL_KINDS = (TimerKind.BUILD, TimerKind.UPGRADE)


@dataclass
class ReconcileReport:
    armed: List[str] = field(default_factory=list)
    finalized: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "armed": list(self.armed),
            "finalized": list(self.finalized),
            "skipped": list(self.skipped),
        }


class TimerReconciler:
    """Arms or finalizes per-cell build/upgrade timers for a town.

    Timers are keyed by ``(kind, x, y)``; re-arming a cell replaces whatever
    timer that cell already had.
    """

    def __init__(
        self,
        town: Town,
        timers: TimerQueue,
        clock: Optional[Clock] = None,
        notifier: Notifier = None,
    ) -> None:
        self.town = town
        self.timers = timers
        self.clock = clock or timers.clock
        self.notifier = notifier
        self._listeners: List[FinalizeListener] = []

    def add_listener(self, listener: FinalizeListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    def reconcile(self, buildings: Iterable[Building] | None = None) -> ReconcileReport:
        report = ReconcileReport()
        for building in list(buildings if buildings is not None else self.town.buildings()):
            self._reconcile_cell(building, report)
        if report.armed or report.finalized:
            logger.info(
                "Reconciled town: armed=%s finalized=%s",
                len(report.armed),
                len(report.finalized),
            )
        return report

    def reconcile_building(self, building: Building) -> ReconcileReport:
        report = ReconcileReport()
        self._reconcile_cell(building, report)
        return report

    def _reconcile_cell(self, building: Building, report: ReconcileReport) -> None:
        now = self.clock.now_ms()
        for kind, end_time in building.pending_timers():
            key = TimerKey.cell(kind, building.x, building.y)
            if end_time is None:
                logger.warning("Cell %s is in progress without an end time", key)
                report.skipped.append(str(key))
                continue
            if end_time > now:
                self._arm(building.x, building.y, kind, end_time - now)
                report.armed.append(str(key))
            else:
                if self.finalize(building.x, building.y, kind):
                    report.finalized.append(str(key))

    def _arm(self, x: int, y: int, kind: TimerKind, remaining_ms: int) -> None:
        self.timers.schedule(
            TimerKey.cell(kind, x, y),
            remaining_ms,
            lambda: self.finalize(x, y, kind),
        )

    # ------------------------------------------------------------------
    def finalize(self, x: int, y: int, kind: TimerKind) -> bool:
        """Complete the cell's build or upgrade.

        Safe to call repeatedly: once the cell's flag is clear further calls
        do nothing and return ``False``.
        """

        self.timers.cancel(TimerKey.cell(kind, x, y))
        building = self.town.get(x, y)
        if building is None or not building.finish(kind):
            return False
        if kind is TimerKind.UPGRADE:
            message = f"Mejora completada: {building.name} nivel {building.level} ({x},{y})"
        else:
            message = f"Construcción completada: {building.name} ({x},{y})"
        logger.info("Cell %s,%s finalized (%s)", x, y, kind.value)
        if self.notifier:
            self.notifier(message)
        for listener in list(self._listeners):
            listener(building, kind)
        return True

    def finalize_any(self, x: int, y: int) -> bool:
        building = self.town.get(x, y)
        if building is None:
            return False
        finished = False
        for kind, _ in building.pending_timers():
            finished = self.finalize(x, y, kind) or finished
        return finished

    # ------------------------------------------------------------------
    def active_keys(self) -> List[TimerKey]:
        return [key for key in self.timers.pending_keys() if key.kind in _CELL_KINDS]

    def release_all(self) -> int:
        released = self.timers.cancel_kind(*_CELL_KINDS)
        if released:
            logger.debug("Released %s cell timers", released)
        return released

    def attach(self, town: Town) -> ReconcileReport:
        """Swap in a freshly loaded town and reconcile it from scratch."""

        self.release_all()
        self.town = town
        return self.reconcile()
