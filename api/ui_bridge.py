"""Public API between the HTTP layer and the realm logic."""
from __future__ import annotations

from typing import Dict, Optional, Sequence

from realm.errors import InsufficientResourcesError, RealmError
from realm.persistence import load_realm as realm_load, save_realm as realm_save
from realm.realm_state import RealmState, get_realm_state
from realm.resources import to_payload
from realm.timers import Clock


# ---------------------------------------------------------------------------
# Response helpers


def _success_response(**payload: object) -> Dict[str, object]:
    response: Dict[str, object] = {"ok": True}
    response.update(payload)
    return response


def _error_response(
    code: str, message: str, *, http_status: int | None = None
) -> Dict[str, object]:
    payload: Dict[str, object] = {
        "ok": False,
        "error_code": code,
        "error_message": message,
        "error": message,
    }
    if http_status is not None:
        payload["http_status"] = int(http_status)
    return payload


def _realm_error(state: RealmState, exc: RealmError) -> Dict[str, object]:
    error = _error_response(exc.code, str(exc), http_status=exc.http_status)
    if isinstance(exc, InsufficientResourcesError):
        error["requires"] = to_payload(exc.requirements)
    error.update(state.response_metadata())
    return error


def _invalid_argument(state: RealmState, message: str) -> Dict[str, object]:
    error = _error_response("invalid_argument", message, http_status=400)
    error.update(state.response_metadata())
    return error


def _with_metadata(state: RealmState, **payload: object) -> Dict[str, object]:
    payload.update(state.response_metadata())
    return _success_response(**payload)


def _should_reset(flag: object) -> bool:
    if flag is None:
        return True
    if isinstance(flag, str):
        return flag.strip().lower() not in {"0", "false", "no"}
    return bool(flag)


# ---------------------------------------------------------------------------
# Initialisation and ticking


def init_realm(force_reset: object = None, clock: Optional[Clock] = None) -> Dict[str, object]:
    """Initialise or reset the global realm using configuration defaults."""

    state = get_realm_state()
    if _should_reset(force_reset):
        state.reset(clock)
    return _with_metadata(state, **state.snapshot_state())


def tick(dt: object = 0) -> Dict[str, object]:
    """Fire due timers, first moving a manual clock by ``dt`` seconds."""

    state = get_realm_state()
    try:
        seconds = max(0.0, float(dt or 0))
    except (TypeError, ValueError):
        return _invalid_argument(state, "dt debe ser numérico")
    fired = state.advance_time(seconds)
    return _with_metadata(state, fired=fired, **state.snapshot_state())


def get_state() -> Dict[str, object]:
    state = get_realm_state()
    return _with_metadata(state, **state.snapshot_state())


# ---------------------------------------------------------------------------
# Construction projects


def _parse_position(raw: object) -> Sequence[float]:
    if raw is None:
        return (0.0, 0.0, 0.0)
    if isinstance(raw, dict):
        return tuple(float(raw.get(axis, 0.0)) for axis in ("x", "y", "z"))
    values = [float(value) for value in raw]  # type: ignore[union-attr]
    if len(values) != 3:
        raise ValueError("La posición necesita tres coordenadas")
    return tuple(values)


def start_project(
    building_type: str, position: object = None, workers: object = None
) -> Dict[str, object]:
    state = get_realm_state()
    try:
        coordinates = _parse_position(position)
        pace = None if workers is None else float(workers)
    except (TypeError, ValueError) as exc:
        return _invalid_argument(state, str(exc))
    try:
        project = state.start_project(building_type, coordinates, pace)
    except RealmError as exc:
        return _realm_error(state, exc)
    return _with_metadata(
        state,
        project=state.project_snapshot(project),
        resources=state.resources_snapshot(),
        http_status=201,
    )


def get_project(project_id: str) -> Dict[str, object]:
    state = get_realm_state()
    project = state.scheduler.get_project(project_id)
    if project is None:
        error = _error_response("project_not_found", "Proyecto inexistente", http_status=404)
        error.update(state.response_metadata())
        return error
    return _with_metadata(state, project=state.project_snapshot(project))


def list_projects(active_only: object = False) -> Dict[str, object]:
    state = get_realm_state()
    if isinstance(active_only, str):
        active_only = active_only.strip().lower() in {"1", "true", "yes"}
    if active_only:
        projects = [
            state.project_snapshot(project) for project in state.scheduler.get_active_projects()
        ]
    else:
        projects = state.snapshot_projects()
    return _with_metadata(state, projects=projects)


def pause_project(project_id: str) -> Dict[str, object]:
    state = get_realm_state()
    try:
        project = state.pause_project(project_id)
    except RealmError as exc:
        return _realm_error(state, exc)
    return _with_metadata(state, project=state.project_snapshot(project))


def resume_project(project_id: str) -> Dict[str, object]:
    state = get_realm_state()
    try:
        project = state.resume_project(project_id)
    except RealmError as exc:
        return _realm_error(state, exc)
    return _with_metadata(state, project=state.project_snapshot(project))


def cancel_project(project_id: str) -> Dict[str, object]:
    state = get_realm_state()
    try:
        refunded = state.cancel_project(project_id)
    except RealmError as exc:
        return _realm_error(state, exc)
    return _with_metadata(
        state,
        project_id=project_id,
        refunded=to_payload(refunded),
        resources=state.resources_snapshot(),
    )


def accelerate_project(project_id: str) -> Dict[str, object]:
    state = get_realm_state()
    try:
        project = state.accelerate_project(project_id)
    except RealmError as exc:
        return _realm_error(state, exc)
    return _with_metadata(
        state,
        project=state.project_snapshot(project),
        resources=state.resources_snapshot(),
    )


def rush_project(project_id: str) -> Dict[str, object]:
    state = get_realm_state()
    try:
        gems = state.rush_project(project_id)
    except RealmError as exc:
        return _realm_error(state, exc)
    project = state.scheduler.get_project(project_id)
    return _with_metadata(
        state,
        gems_spent=gems,
        project=state.project_snapshot(project) if project else None,
        resources=state.resources_snapshot(),
    )


def cleanup_projects() -> Dict[str, object]:
    state = get_realm_state()
    removed = state.cleanup_projects()
    return _with_metadata(state, removed=removed)


# ---------------------------------------------------------------------------
# Town cells


def get_town() -> Dict[str, object]:
    state = get_realm_state()
    return _with_metadata(state, town=state.snapshot_town())


def _cell_action(action, *args: object) -> Dict[str, object]:
    state = get_realm_state()
    try:
        building = action(state, *args)
    except RealmError as exc:
        return _realm_error(state, exc)
    return _with_metadata(
        state,
        building=building.to_dict(),
        resources=state.resources_snapshot(),
    )


def build_cell(x: int, y: int, building_type: str) -> Dict[str, object]:
    return _cell_action(RealmState.build_cell, int(x), int(y), building_type)


def upgrade_cell(x: int, y: int) -> Dict[str, object]:
    return _cell_action(RealmState.upgrade_cell, int(x), int(y))


def speedup_cell(x: int, y: int) -> Dict[str, object]:
    return _cell_action(RealmState.speedup_cell, int(x), int(y))


def collect_resources() -> Dict[str, object]:
    state = get_realm_state()
    result = state.collect_resources()
    return _with_metadata(state, resources=state.resources_snapshot(), **result.to_dict())


def get_pending() -> Dict[str, object]:
    state = get_realm_state()
    return _with_metadata(
        state,
        pending=state.accumulator.pending,
        has_pending=state.accumulator.has_pending,
    )


def reload_town() -> Dict[str, object]:
    state = get_realm_state()
    report = state.reload()
    return _with_metadata(state, reconciled=report.to_dict(), town=state.snapshot_town())


# ---------------------------------------------------------------------------
# Notifications


def get_notifications(consume: object = False) -> Dict[str, object]:
    state = get_realm_state()
    if isinstance(consume, str):
        consume = consume.strip().lower() in {"1", "true", "yes"}
    if consume:
        messages = []
        while True:
            message = state.consume_notification()
            if message is None:
                break
            messages.append(message)
    else:
        messages = state.list_notifications()
    return _with_metadata(state, notifications=messages)


# ---------------------------------------------------------------------------
# Persistence wrappers


def save_realm(path: str) -> Dict[str, object]:
    try:
        realm_save(path)
        return {"ok": True}
    except OSError as exc:
        return {"ok": False, "error": str(exc)}


def load_realm(path: str) -> Dict[str, object]:
    try:
        report = realm_load(path)
    except (OSError, KeyError, ValueError) as exc:
        return {"ok": False, "error": str(exc)}
    return {"ok": True, "reconciled": report.to_dict()}
