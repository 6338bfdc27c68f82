"""End-to-end API verification for projects, town cells and production."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from api import ui_bridge
from app import app
from realm import config
from realm.resources import Resource
from realm.timers import ManualClock


START_MS = 1_700_000_000_000


@pytest.fixture(autouse=True)
def reset_realm():
    ui_bridge.init_realm(force_reset=True, clock=ManualClock(START_MS))
    yield


@pytest.fixture()
def client():
    app.config.update(TESTING=True)
    with app.test_client() as test_client:
        yield test_client


def _tick(client, seconds):
    response = client.post("/api/tick", json={"dt": seconds})
    assert response.status_code == 200
    return response.get_json()


def test_state_exposes_starting_resources_and_metadata(client):
    response = client.get("/api/state")

    assert response.status_code == 200
    assert response.headers["Cache-Control"].startswith("no-store")
    payload = response.get_json()
    assert payload["ok"] is True
    assert payload["request_id"]
    assert payload["server_time"]
    for resource in Resource:
        assert payload["resources"][resource.value] == pytest.approx(
            config.STARTING_RESOURCES[resource]
        )
    types = {entry["type"] for entry in payload["town"]["buildings"]}
    assert types == {"townhall", "house", "farm"}


def test_init_without_reset_keeps_current_state(client):
    client.post("/api/projects", json={"type": "house"})

    response = client.post("/api/init?reset=0")

    assert response.status_code == 200
    assert len(response.get_json()["projects"]) == 1


def test_project_lifecycle_through_http(client):
    created = client.post("/api/projects", json={"type": "house", "position": [1, 0, 2]})
    assert created.status_code == 201
    project = created.get_json()["project"]
    assert project["status"] == "in_progress"
    assert project["position"] == [1.0, 0.0, 2.0]
    project_id = project["id"]

    _tick(client, 30)
    detail = client.get(f"/api/projects/{project_id}").get_json()["project"]
    assert detail["current_phase_index"] == 1
    assert detail["progress"] == pytest.approx(0.2)
    assert [c["type"] for c in detail["detail"]["components_visible"]] == ["foundation"]

    paused = client.post(f"/api/projects/{project_id}/pause")
    assert paused.status_code == 200
    assert paused.get_json()["project"]["status"] == "paused"
    resumed = client.post(f"/api/projects/{project_id}/resume")
    assert resumed.get_json()["project"]["status"] == "in_progress"

    rushed = client.post(f"/api/projects/{project_id}/rush")
    assert rushed.status_code == 200
    assert rushed.get_json()["project"]["status"] == "completed"

    cleanup = client.post("/api/projects/cleanup").get_json()
    assert cleanup["removed"] == 1
    assert client.get(f"/api/projects/{project_id}").status_code == 404


def test_cancel_returns_refund(client):
    project_id = client.post("/api/projects", json={"type": "farm"}).get_json()["project"]["id"]

    response = client.post(f"/api/projects/{project_id}/cancel")

    payload = response.get_json()
    assert response.status_code == 200
    assert payload["refunded"] == {"wood": 100.0, "stone": 75.0, "gold": 150.0}
    assert payload["resources"]["gold"] == pytest.approx(3000 - 300 + 150)


def test_project_errors_map_to_http_statuses(client):
    unknown_type = client.post("/api/projects", json={"type": "dragon_lair"})
    assert unknown_type.status_code == 404
    assert unknown_type.get_json()["error_code"] == "invalid_building_type"

    missing = client.post("/api/projects/construction_0_nothing00/pause")
    assert missing.status_code == 404

    project_id = client.post("/api/projects", json={"type": "house"}).get_json()["project"]["id"]
    bad_action = client.post(f"/api/projects/{project_id}/demolish")
    assert bad_action.status_code == 404
    conflict = client.post(f"/api/projects/{project_id}/resume")
    assert conflict.status_code == 409


def test_listing_active_projects(client):
    client.post("/api/projects", json={"type": "house"})
    done = client.post("/api/projects", json={"type": "farm"}).get_json()["project"]["id"]
    client.post(f"/api/projects/{done}/rush")

    everything = client.get("/api/projects").get_json()["projects"]
    active = client.get("/api/projects?active=1").get_json()["projects"]

    assert len(everything) == 2
    assert [p["building_type"] for p in active] == ["house"]


def test_town_build_and_timer_completion(client):
    response = client.post("/api/town/build", json={"x": 0, "y": 0, "type": "lumbermill"})
    assert response.status_code == 200
    building = response.get_json()["building"]
    assert building["isBuilding"] is True
    assert building["buildEndTime"].endswith("Z")

    _tick(client, 150)

    town = client.get("/api/town").get_json()["town"]
    cell = next(b for b in town["buildings"] if (b["x"], b["y"]) == (0, 0))
    assert cell["isBuilding"] is False
    notes = client.get("/api/notifications?consume=1").get_json()["notifications"]
    assert notes == ["Construcción completada: Lumber Mill (0,0)"]
    assert client.get("/api/notifications").get_json()["notifications"] == []


def test_town_errors(client):
    occupied = client.post("/api/town/build", json={"x": 4, "y": 3, "type": "farm"})
    assert occupied.status_code == 409
    assert occupied.get_json()["error_code"] == "position_occupied"

    no_coordinates = client.post("/api/town/build", json={"type": "farm"})
    assert no_coordinates.status_code == 400

    idle = client.post("/api/town/speedup", json={"x": 4, "y": 3})
    assert idle.status_code == 400
    assert idle.get_json()["error_code"] == "not_in_progress"


def test_insufficient_resources_lists_requirements(client):
    for x in range(2):
        assert client.post("/api/town/build", json={"x": x, "y": 0, "type": "gem_mine"}).status_code == 200

    response = client.post("/api/town/build", json={"x": 2, "y": 0, "type": "gem_mine"})

    payload = response.get_json()
    assert response.status_code == 400
    assert payload["error_code"] == "insufficient_resources"
    assert payload["requires"]["iron"] == 200.0


def test_upgrade_and_speedup(client):
    upgraded = client.post("/api/town/upgrade", json={"x": 5, "y": 3})
    assert upgraded.get_json()["building"]["isUpgrading"] is True

    rushed = client.post("/api/town/speedup", json={"x": 5, "y": 3}).get_json()

    assert rushed["building"]["level"] == 2
    assert rushed["resources"]["gems"] < config.STARTING_RESOURCES[Resource.GEMS]


def test_pending_and_collect(client):
    _tick(client, 3600)

    pending = client.get("/api/town/pending").get_json()
    assert pending["pending"]["food"] == 15
    assert pending["has_pending"] is True

    collected = client.post("/api/town/collect").get_json()
    assert collected["degraded"] is False
    assert collected["collected"]["food"] == 15
    assert collected["resources"]["food"] == 15
    assert client.get("/api/town/pending").get_json()["has_pending"] is False


def test_reload_endpoint_reports_reconciliation(client):
    client.post("/api/town/build", json={"x": 0, "y": 0, "type": "lumbermill"})

    payload = client.post("/api/town/reload").get_json()

    assert payload["reconciled"]["armed"] == ["build:0,0"]
