import logging
import time
import uuid
from datetime import datetime, timezone

from flask import Flask, jsonify, request

from api import ui_bridge
from realm.scheduler import ensure_tick_loop

app = Flask(__name__)
ensure_tick_loop()

logger = logging.getLogger(__name__)


def _generate_request_metadata() -> tuple[str, str]:
    request_id = str(uuid.uuid4())
    server_time = datetime.now(timezone.utc).isoformat()
    return request_id, server_time


def _enrich_payload(payload: dict, request_id: str, server_time: str) -> dict:
    body = dict(payload or {})
    body["request_id"] = request_id
    body["server_time"] = server_time
    return body


def _json_response(payload: dict, status: int = 200, *, request_id: str, server_time: str):
    body = _enrich_payload(payload, request_id, server_time)
    response = jsonify(body)
    response.status_code = status
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return response


def _status_for(payload: dict, success_status: int = 200) -> int:
    if payload.get("ok", False):
        return int(payload.get("http_status", success_status))
    return int(payload.get("http_status", 400))


def _respond(route: str, payload: dict, *, started: float | None = None):
    request_id, server_time = _generate_request_metadata()
    status = _status_for(payload)
    if started is not None:
        logger.info(
            "Handled %s request_id=%s status=%s error_code=%s duration_ms=%.2f",
            route,
            request_id,
            status,
            payload.get("error_code"),
            (time.perf_counter() - started) * 1000.0,
        )
    return _json_response(payload, status, request_id=request_id, server_time=server_time)


def _body() -> dict:
    return request.get_json(silent=True) or {}


# ---------------------------------------------------------------------------
# Realm lifecycle


@app.post("/api/init")
def api_init():
    """Initialise the realm, optionally forcing a reset."""

    reset_flag = request.args.get("reset")
    if reset_flag is None:
        payload = _body()
        reset_flag = payload.get("reset") or payload.get("force_reset")
    return _respond("/api/init", ui_bridge.init_realm(reset_flag))


@app.get("/api/state")
def api_state():
    return _respond("/api/state", ui_bridge.get_state())


@app.post("/api/tick")
def api_tick():
    """Fire due timers; ``dt`` only moves manual clocks."""

    return _respond("/api/tick", ui_bridge.tick(_body().get("dt", 0)))


# ---------------------------------------------------------------------------
# Construction projects


@app.post("/api/projects")
def api_start_project():
    payload = _body()
    started = time.perf_counter()
    response = ui_bridge.start_project(
        payload.get("type") or payload.get("building_type") or "",
        payload.get("position"),
        payload.get("workers"),
    )
    return _respond("/api/projects", response, started=started)


@app.get("/api/projects")
def api_list_projects():
    return _respond("/api/projects", ui_bridge.list_projects(request.args.get("active", False)))


@app.post("/api/projects/cleanup")
def api_cleanup_projects():
    return _respond("/api/projects/cleanup", ui_bridge.cleanup_projects())


@app.get("/api/projects/<project_id>")
def api_get_project(project_id: str):
    return _respond("/api/projects/<id>", ui_bridge.get_project(project_id))


_PROJECT_ACTIONS = {
    "pause": ui_bridge.pause_project,
    "resume": ui_bridge.resume_project,
    "cancel": ui_bridge.cancel_project,
    "accelerate": ui_bridge.accelerate_project,
    "rush": ui_bridge.rush_project,
}


@app.post("/api/projects/<project_id>/<action>")
def api_project_action(project_id: str, action: str):
    handler = _PROJECT_ACTIONS.get(action)
    if handler is None:
        response = ui_bridge._error_response(
            "unknown_action", f"Acción desconocida: {action}", http_status=404
        )
        return _respond("/api/projects/<id>/<action>", response)
    started = time.perf_counter()
    return _respond(f"/api/projects/<id>/{action}", handler(project_id), started=started)


# ---------------------------------------------------------------------------
# Town cells and production


@app.get("/api/town")
def api_town():
    return _respond("/api/town", ui_bridge.get_town())


@app.post("/api/town/reload")
def api_town_reload():
    return _respond("/api/town/reload", ui_bridge.reload_town())


def _cell_coordinates(payload: dict) -> tuple[int, int] | None:
    try:
        return int(payload["x"]), int(payload["y"])
    except (KeyError, TypeError, ValueError):
        return None


def _missing_coordinates():
    response = ui_bridge._error_response(
        "invalid_argument", "Se requieren las coordenadas x e y", http_status=400
    )
    return _respond("/api/town", response)


@app.post("/api/town/build")
def api_town_build():
    payload = _body()
    coordinates = _cell_coordinates(payload)
    if coordinates is None:
        return _missing_coordinates()
    started = time.perf_counter()
    response = ui_bridge.build_cell(*coordinates, str(payload.get("type", "")))
    return _respond("/api/town/build", response, started=started)


@app.post("/api/town/upgrade")
def api_town_upgrade():
    coordinates = _cell_coordinates(_body())
    if coordinates is None:
        return _missing_coordinates()
    started = time.perf_counter()
    return _respond("/api/town/upgrade", ui_bridge.upgrade_cell(*coordinates), started=started)


@app.post("/api/town/speedup")
def api_town_speedup():
    coordinates = _cell_coordinates(_body())
    if coordinates is None:
        return _missing_coordinates()
    started = time.perf_counter()
    return _respond("/api/town/speedup", ui_bridge.speedup_cell(*coordinates), started=started)


@app.post("/api/town/collect")
def api_town_collect():
    started = time.perf_counter()
    return _respond("/api/town/collect", ui_bridge.collect_resources(), started=started)


@app.get("/api/town/pending")
def api_town_pending():
    return _respond("/api/town/pending", ui_bridge.get_pending())


@app.get("/api/notifications")
def api_notifications():
    return _respond("/api/notifications", ui_bridge.get_notifications(request.args.get("consume")))


if __name__ == "__main__":
    app.run(debug=True)
