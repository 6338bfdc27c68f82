"""Persistence helpers to save and load the authoritative town."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from .realm_state import get_realm_state
from .reconciler import ReconcileReport
from .town import Town


SAVE_VERSION = 1


def save_realm(path: str) -> None:
    """Serialise the authoritative town and resource balances to ``path``.

    Credit from a degraded collect is left out; the saved collect anchor
    still owes that window.
    """

    state = get_realm_state()
    data: Dict[str, Any] = {
        "version": SAVE_VERSION,
        "town": state.backend.get_town().to_dict(),
        "resources": state.authoritative_resources(),
    }
    with open(Path(path), "w", encoding="utf-8") as fh:
        json.dump(data, fh, ensure_ascii=False, indent=2)


def load_realm(path: str) -> ReconcileReport:
    """Restore a saved town from ``path`` and reconcile its cell timers.

    Builds and upgrades whose end time passed while the save sat on disk are
    finalized during the load.
    """

    with open(Path(path), "r", encoding="utf-8") as fh:
        data = json.load(fh)
    if data.get("version") != SAVE_VERSION:
        raise ValueError("Versión de guardado incompatible")

    town = Town.from_dict(data.get("town") or {})
    resources = data.get("resources") or {}
    return get_realm_state().restore(town, resources)
