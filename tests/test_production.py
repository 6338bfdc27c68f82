import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from realm import config
from realm.backend import LocalBackend
from realm.errors import BackendUnavailableError
from realm.production import DEGRADED_NOTICE, ProductionAccumulator, compute_pending
from realm.resource_ledger import ResourceLedger
from realm.resources import Resource
from realm.timers import ManualClock, TimerKey, TimerKind, TimerQueue
from realm.town import Building, Town


HOUR_MS = 3_600_000

SAWMILL_CONFIGS = {
    "lumbermill": config.BuildingConfig(
        type="lumbermill",
        name="Lumber Mill",
        category="resource",
        max_level=1,
        build_cost={},
        production={1: config.LevelStats(level=1, resources={Resource.WOOD: 10.0}, time=3600.0)},
    )
}


def _mill(**overrides):
    values = {"x": 0, "y": 0, "type": "lumbermill", "level": 1}
    values.update(overrides)
    return Building(**values)


def test_two_full_cycles_yield_twenty_wood():
    pending = compute_pending([_mill()], 2 * HOUR_MS, 0, SAWMILL_CONFIGS)

    assert pending["wood"] == 20


def test_partial_cycle_yields_nothing():
    pending = compute_pending([_mill()], HOUR_MS - 1_000, 0, SAWMILL_CONFIGS)

    assert pending["wood"] == 0


def test_pending_lists_every_resource_key():
    pending = compute_pending([], HOUR_MS, 0)

    assert set(pending) == {resource.value for resource in Resource}
    assert all(amount == 0 for amount in pending.values())


def test_buildings_under_construction_or_upgrade_do_not_produce():
    busy = [
        _mill(is_building=True, build_end_time=HOUR_MS),
        _mill(x=1, is_upgrading=True, upgrade_end_time=HOUR_MS),
    ]

    assert compute_pending(busy, 5 * HOUR_MS, 0, SAWMILL_CONFIGS)["wood"] == 0


def test_production_scales_with_level_and_cycle_length():
    buildings = [
        Building(x=0, y=0, type="farm", level=2),
        Building(x=1, y=0, type="gem_mine", level=1),
        Building(x=2, y=0, type="house", level=5),
    ]

    pending = compute_pending(buildings, 4 * HOUR_MS, 0)

    assert pending["food"] == 4 * 18
    assert pending["gems"] == 2 * 2


def test_clock_before_last_collection_yields_nothing():
    assert compute_pending([_mill()], 0, HOUR_MS, SAWMILL_CONFIGS)["wood"] == 0


# ---------------------------------------------------------------------------


@pytest.fixture()
def clock():
    return ManualClock(0)


@pytest.fixture()
def town():
    return Town.starting(0)


def test_accumulator_polls_on_its_interval(clock, town):
    timers = TimerQueue(clock)
    accumulator = ProductionAccumulator(town, clock, poll_interval=30)
    accumulator.start(timers)
    assert timers.due_at(TimerKey(TimerKind.PRODUCTION)) == 30_000
    assert accumulator.has_pending is False

    clock.advance(3600)
    timers.run_due()

    assert accumulator.pending["food"] == 15
    assert accumulator.has_pending is True
    assert timers.due_at(TimerKey(TimerKind.PRODUCTION)) == 3_630_000

    accumulator.stop()
    assert not timers.is_pending(TimerKey(TimerKind.PRODUCTION))


def test_collect_through_backend_credits_its_ledger(clock, town):
    ledger = ResourceLedger()
    backend = LocalBackend(town.copy(), ledger, clock)
    accumulator = ProductionAccumulator(town, clock, backend=backend)
    clock.advance(2 * 3600)

    result = accumulator.collect()

    assert result.degraded is False
    assert result.notice is None
    assert result.collected["food"] == 30
    assert ledger.get(Resource.FOOD) == 30
    assert town.last_collected == clock.now_ms()
    assert accumulator.has_pending is False


class _UnreachableBackend(LocalBackend):
    def collect(self):
        raise BackendUnavailableError("connection refused")


def test_collect_falls_back_to_local_estimate_when_backend_is_down(clock, town):
    ledger = ResourceLedger()
    accumulator = ProductionAccumulator(
        town, clock, backend=_UnreachableBackend(town.copy(), ledger, clock)
    )
    clock.advance(3600)
    accumulator.poll()

    result = accumulator.collect()

    assert result.degraded is True
    assert result.notice == DEGRADED_NOTICE
    assert result.collected["food"] == 15
    assert ledger.get(Resource.FOOD) == 0
    assert town.last_collected == 3_600_000
    assert accumulator.pending["food"] == 0


def test_collect_without_backend_is_degraded(clock, town):
    accumulator = ProductionAccumulator(town, clock)
    clock.advance(3600)

    result = accumulator.collect()

    assert result.degraded is True
    assert result.to_dict()["collected"]["food"] == 15
