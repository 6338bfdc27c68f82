"""Background scheduler driving due timers from the realm tick loop."""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Optional

from . import config
from .realm_state import get_realm_state


logger = logging.getLogger(__name__)

_loop_thread: Optional[threading.Thread] = None
_loop_lock = threading.Lock()


async def _run_tick_loop(interval: float) -> None:
    state = get_realm_state()
    while True:
        try:
            state.tick()
        except Exception:
            logger.exception("Realm tick failed")
        await asyncio.sleep(interval)


def ensure_tick_loop(interval: float = config.TICK_INTERVAL_SEC) -> None:
    """Start the asynchronous tick loop if it is not already running."""

    global _loop_thread
    with _loop_lock:
        if _loop_thread and _loop_thread.is_alive():
            return

        def runner() -> None:
            asyncio.run(_run_tick_loop(interval))

        thread = threading.Thread(target=runner, name="realm-tick-loop", daemon=True)
        thread.start()
        _loop_thread = thread
        logger.info("Realm tick loop started (interval=%ss)", interval)
