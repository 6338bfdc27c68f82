import json
import math
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from realm import config
from realm.backend import LocalBackend
from realm.construction import ProjectStatus
from realm.errors import BackendError, BackendUnavailableError, InsufficientResourcesError, NotFoundError
from realm.persistence import load_realm, save_realm
from realm.production import DEGRADED_NOTICE
from realm.realm_state import get_realm_state
from realm.resources import Resource
from realm.timers import ManualClock, TimerKey, TimerKind
from realm.town import Building, format_timestamp


START_MS = 1_700_000_000_000


@pytest.fixture(autouse=True)
def clock():
    manual = ManualClock(START_MS)
    get_realm_state().reset(manual)
    yield manual


@pytest.fixture()
def state():
    return get_realm_state()


def test_reset_seeds_town_resources_and_production_poll(state):
    assert state.resources_snapshot() == {
        resource.value: amount for resource, amount in config.STARTING_RESOURCES.items()
    }
    assert [b.type for b in state.town.buildings()] == ["house", "townhall", "farm"]
    assert state.timers.pending_keys() == [TimerKey(TimerKind.PRODUCTION)]
    assert state.list_notifications() == []


def test_start_project_charges_option_cost_and_uses_default_workers(state):
    project = state.start_project("house")

    assert project.workers == 2
    assert project.total_duration == pytest.approx(150.0)
    assert state.ledger.get(Resource.WOOD) == pytest.approx(2000 - 150)
    assert state.ledger.get(Resource.GOLD) == pytest.approx(3000 - 200)


@pytest.mark.parametrize("building_type", ["house", "tavern", "farm", "tower"])
def test_cancel_refunds_half_the_cost_rounded_down(state, clock, building_type):
    before = state.resources_snapshot()
    cost = config.CONSTRUCTION_OPTIONS[building_type].cost

    project = state.start_project(building_type)
    state.advance_time(10)
    refunded = state.cancel_project(project.id)

    after = state.resources_snapshot()
    for resource in Resource:
        paid = cost.get(resource, 0.0)
        expected = before[resource.value] - paid + math.floor(0.5 * paid)
        assert after[resource.value] == pytest.approx(expected), resource
    assert refunded == {resource: float(math.floor(0.5 * paid)) for resource, paid in cost.items()}
    assert state.scheduler.get_project(project.id) is None


def test_cancel_of_unknown_project_is_not_found(state):
    with pytest.raises(NotFoundError) as excinfo:
        state.cancel_project("construction_0_missing00")

    assert excinfo.value.code == "project_not_found"


def test_project_completes_on_ticks_and_notifies(state):
    project = state.start_project("house")

    state.advance_time(149)
    assert project.status is ProjectStatus.IN_PROGRESS
    state.advance_time(1)

    assert project.status is ProjectStatus.COMPLETED
    assert state.list_notifications() == ["Construcción completada: Medieval House"]
    with pytest.raises(BackendError) as excinfo:
        state.cancel_project(project.id)
    assert excinfo.value.code == "invalid_project_state"


def test_accelerate_costs_gold_and_doubles_pace(state):
    project = state.start_project("house")

    state.accelerate_project(project.id)

    assert project.workers == pytest.approx(4.0)
    assert state.ledger.get(Resource.GOLD) == pytest.approx(3000 - 200 - 200)


def test_accelerate_without_gold_is_rejected(state):
    project = state.start_project("house")
    state.ledger.set_amount(Resource.GOLD, 100)

    with pytest.raises(InsufficientResourcesError) as excinfo:
        state.accelerate_project(project.id)

    assert excinfo.value.requirements == {Resource.GOLD: 200.0}
    assert project.workers == pytest.approx(2.0)


def test_rush_spends_gems_and_finishes_the_project(state):
    project = state.start_project("house")

    gems = state.rush_project(project.id)

    assert gems == 3
    assert state.ledger.get(Resource.GEMS) == pytest.approx(47)
    assert project.status is ProjectStatus.COMPLETED
    assert not state.timers.is_pending(TimerKey.project(project.id))


def test_pause_and_resume_state_errors(state):
    project = state.start_project("house")

    with pytest.raises(BackendError) as excinfo:
        state.resume_project(project.id)
    assert excinfo.value.http_status == 409

    state.pause_project(project.id)
    assert project.status is ProjectStatus.PAUSED
    state.resume_project(project.id)
    assert project.status is ProjectStatus.IN_PROGRESS


def test_requirements_gate_advanced_projects(state):
    with pytest.raises(BackendError) as excinfo:
        state.start_project("castle")
    assert excinfo.value.code == "requirements_not_met"

    tower = state.start_project("tower")
    state.rush_project(tower.id)
    state.cleanup_projects()

    assert state.start_project("castle").building_type == "castle"


def test_unknown_project_type(state):
    with pytest.raises(NotFoundError) as excinfo:
        state.start_project("dragon_lair")

    assert excinfo.value.code == "invalid_building_type"


def test_build_cell_arms_a_timer_and_finalizes_on_tick(state):
    building = state.build_cell(0, 0, "lumbermill")

    assert building.is_building is True
    assert state.timers.is_pending(TimerKey.cell(TimerKind.BUILD, 0, 0))

    state.advance_time(150)

    assert state.town.get(0, 0).is_building is False
    assert state.list_notifications() == ["Construcción completada: Lumber Mill (0,0)"]


def test_speedup_cell_finalizes_once(state):
    state.build_cell(0, 0, "lumbermill")

    building = state.speedup_cell(0, 0)

    assert building.is_building is False
    assert not state.timers.is_pending(TimerKey.cell(TimerKind.BUILD, 0, 0))
    assert state.list_notifications() == ["Construcción completada: Lumber Mill (0,0)"]
    state.advance_time(300)
    assert len(state.list_notifications()) == 1


def test_upgrade_cell_raises_level_after_timer(state):
    state.upgrade_cell(5, 3)
    state.advance_time(config.BUILDING_CONFIGS["farm"].cost_for(2).time)

    assert state.town.get(5, 3).level == 2
    assert state.backend.get_town().get(5, 3).level == 2


def test_collect_through_backend(state):
    state.advance_time(3600)
    assert state.accumulator.pending["food"] == 15

    result = state.collect_resources()

    assert result.degraded is False
    assert state.ledger.get(Resource.FOOD) == 15
    assert state.accumulator.has_pending is False


class _DownBackend(LocalBackend):
    def collect(self):
        raise BackendUnavailableError("timeout")


def test_collect_falls_back_when_backend_is_down(state):
    state.use_backend(_DownBackend(state.backend.get_town(), state.ledger, state.clock))
    state.advance_time(3600)

    result = state.collect_resources()

    assert result.degraded is True
    assert state.ledger.get(Resource.FOOD) == 15
    assert DEGRADED_NOTICE in state.list_notifications()


class _FlakyBackend(LocalBackend):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures_left = 1

    def collect(self):
        if self.failures_left:
            self.failures_left -= 1
            raise BackendUnavailableError("timeout")
        return super().collect()


def test_degraded_credit_is_replaced_by_the_next_backend_collect(state):
    state.use_backend(_FlakyBackend(state.backend.get_town(), state.ledger, state.clock))
    state.advance_time(3600)

    first = state.collect_resources()
    assert first.degraded is True
    assert state.ledger.get(Resource.FOOD) == 15
    assert state.provisional_snapshot() == {"food": 15.0}
    assert state.authoritative_resources()["food"] == 0

    state.reload()
    assert state.accumulator.pending["food"] == 15

    second = state.collect_resources()
    assert second.degraded is False
    assert second.collected["food"] == 15
    assert state.ledger.get(Resource.FOOD) == 15
    assert state.provisional_snapshot() == {}
    assert state.accumulator.has_pending is False


def test_save_after_degraded_collect_leaves_the_window_to_the_backend(state, tmp_path):
    state.use_backend(_FlakyBackend(state.backend.get_town(), state.ledger, state.clock))
    state.advance_time(3600)
    state.collect_resources()
    target = tmp_path / "degraded.json"
    save_realm(str(target))

    state.reset(ManualClock(START_MS + 3_600_000))
    load_realm(str(target))
    result = state.collect_resources()

    assert result.degraded is False
    assert state.ledger.get(Resource.FOOD) == 15


def test_reload_rearms_cells_from_the_backend(state, clock):
    state.backend.town.place(
        Building(
            x=0,
            y=0,
            type="quarry",
            is_building=True,
            build_start_time=START_MS,
            build_end_time=START_MS + 60_000,
        )
    )

    report = state.reload()

    assert report.armed == ["build:0,0"]
    state.advance_time(60)
    assert state.town.get(0, 0).is_building is False


def test_notifications_are_bounded_and_consumed_in_order(state):
    for index in range(config.NOTIFICATION_QUEUE_LIMIT + 5):
        state.add_notification(f"n{index}")

    assert len(state.list_notifications()) == config.NOTIFICATION_QUEUE_LIMIT
    assert state.consume_notification() == "n5"


def test_snapshot_state_shape(state):
    state.start_project("house")

    snapshot = state.snapshot_state()

    assert set(snapshot) >= {"resources", "town", "projects", "pending", "timers", "version"}
    assert snapshot["projects"][0]["progress"] == 0.0
    assert snapshot["projects"][0]["detail"]["current_phase"] == "Foundation & Structure"


# ---------------------------------------------------------------------------
# Persistence


def test_save_and_load_round_trip_rearms_timers(state, tmp_path):
    state.build_cell(0, 0, "lumbermill")
    target = tmp_path / "realm.json"
    save_realm(str(target))

    state.reset(ManualClock(START_MS + 60_000))
    report = load_realm(str(target))

    assert report.armed == ["build:0,0"]
    assert state.ledger.get(Resource.STONE) == pytest.approx(1400)
    state.advance_time(90)
    assert state.town.get(0, 0).is_building is False


def test_load_finalizes_builds_that_ended_offline(state, tmp_path):
    ended = format_timestamp(START_MS - 10 * 60_000)
    payload = {
        "version": 1,
        "town": {
            "mapSize": {"width": 10, "height": 8},
            "lastCollected": format_timestamp(START_MS),
            "buildings": [
                {
                    "x": 1,
                    "y": 1,
                    "type": "farm",
                    "level": 1,
                    "isBuilding": True,
                    "buildStartTime": format_timestamp(START_MS - 20 * 60_000),
                    "buildEndTime": ended,
                }
            ],
        },
        "resources": {"wood": 10, "gems": 5},
    }
    target = tmp_path / "offline.json"
    target.write_text(json.dumps(payload), encoding="utf-8")

    report = load_realm(str(target))

    assert report.finalized == ["build:1,1"]
    assert state.town.get(1, 1).is_building is False
    assert state.list_notifications() == ["Construcción completada: Farm (1,1)"]
    assert state.resources_snapshot()["gems"] == 5


def test_load_rejects_unknown_versions(tmp_path):
    target = tmp_path / "old.json"
    target.write_text(json.dumps({"version": 99}), encoding="utf-8")

    with pytest.raises(ValueError):
        load_realm(str(target))
