"""Wall clock and keyed deferred timers.

Timers live only in memory. The queue is drained by :meth:`TimerQueue.run_due`,
which the background tick loop calls once per interval; tests drive the same
code deterministically with a :class:`ManualClock`.
"""
from __future__ import annotations

import heapq
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Hashable, List, Optional, Tuple


logger = logging.getLogger(__name__)


class Clock:
    """Source of wall-clock time as epoch milliseconds."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class SystemClock(Clock):
    pass


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start_ms: int = 0) -> None:
        self._now_ms = int(start_ms)

    def now_ms(self) -> int:
        return self._now_ms

    def advance(self, seconds: float) -> int:
        if seconds > 0:
            self._now_ms += int(round(float(seconds) * 1000))
        return self._now_ms

    def set(self, now_ms: int) -> None:
        self._now_ms = int(now_ms)


class TimerKind(str, Enum):
    PHASE = "phase"
    BUILD = "build"
    UPGRADE = "upgrade"
    PRODUCTION = "production"


@dataclass(frozen=True)
class TimerKey:
    """Structured timer identity: a kind plus the thing it belongs to."""

    kind: TimerKind
    target: Hashable = None

    @classmethod
    def cell(cls, kind: TimerKind, x: int, y: int) -> "TimerKey":
        return cls(kind, (int(x), int(y)))

    @classmethod
    def project(cls, project_id: str) -> "TimerKey":
        return cls(TimerKind.PHASE, project_id)

    def __str__(self) -> str:
        if isinstance(self.target, tuple):
            return f"{self.kind.value}:{','.join(str(part) for part in self.target)}"
        if self.target is None:
            return self.kind.value
        return f"{self.kind.value}:{self.target}"


TimerCallback = Callable[[], None]


@dataclass(order=True)
class _Entry:
    due_ms: int
    seq: int
    key: TimerKey = field(compare=False)
    callback: TimerCallback = field(compare=False)
    cancelled: bool = field(default=False, compare=False)


class TimerQueue:
    """Deferred callbacks keyed by :class:`TimerKey`.

    Scheduling under a key that already has a pending timer replaces it, so a
    key never owns more than one live timer.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or SystemClock()
        self._heap: List[_Entry] = []
        self._by_key: Dict[TimerKey, _Entry] = {}
        self._seq = itertools.count()

    # ------------------------------------------------------------------
    def schedule(
        self,
        key: TimerKey,
        delay_ms: float,
        callback: TimerCallback,
        *,
        start_ms: Optional[int] = None,
    ) -> int:
        """Arm ``callback`` to fire ``delay_ms`` after ``start_ms`` (default now).

        Returns the absolute due time in epoch milliseconds.
        """

        base = self.clock.now_ms() if start_ms is None else int(start_ms)
        due_ms = base + max(0, int(round(delay_ms)))
        previous = self._by_key.pop(key, None)
        if previous is not None:
            previous.cancelled = True
            logger.debug("Timer %s replaced (was due at %s)", key, previous.due_ms)
        entry = _Entry(due_ms=due_ms, seq=next(self._seq), key=key, callback=callback)
        self._by_key[key] = entry
        heapq.heappush(self._heap, entry)
        logger.debug("Timer %s armed for %s", key, due_ms)
        return due_ms

    def cancel(self, key: TimerKey) -> bool:
        entry = self._by_key.pop(key, None)
        if entry is None:
            return False
        entry.cancelled = True
        logger.debug("Timer %s cancelled", key)
        return True

    def cancel_kind(self, *kinds: TimerKind) -> int:
        keys = [key for key in self._by_key if key.kind in kinds]
        for key in keys:
            self.cancel(key)
        return len(keys)

    def clear(self) -> None:
        for entry in self._by_key.values():
            entry.cancelled = True
        self._by_key.clear()
        self._heap.clear()

    # ------------------------------------------------------------------
    def is_pending(self, key: TimerKey) -> bool:
        return key in self._by_key

    def due_at(self, key: TimerKey) -> Optional[int]:
        entry = self._by_key.get(key)
        return None if entry is None else entry.due_ms

    def pending_keys(self) -> List[TimerKey]:
        return list(self._by_key)

    def next_due(self) -> Optional[int]:
        self._discard_cancelled_head()
        return self._heap[0].due_ms if self._heap else None

    def __len__(self) -> int:
        return len(self._by_key)

    def _discard_cancelled_head(self) -> None:
        while self._heap and self._heap[0].cancelled:
            heapq.heappop(self._heap)

    # ------------------------------------------------------------------
    def run_due(self, now_ms: Optional[int] = None) -> int:
        """Fire every timer due at or before ``now_ms``, earliest first.

        Timers armed by a callback that are already due fire in the same pass.
        Returns the number of callbacks invoked.
        """

        now = self.clock.now_ms() if now_ms is None else int(now_ms)
        fired = 0
        while True:
            self._discard_cancelled_head()
            if not self._heap or self._heap[0].due_ms > now:
                break
            entry = heapq.heappop(self._heap)
            if self._by_key.get(entry.key) is entry:
                del self._by_key[entry.key]
            logger.debug("Timer %s fired (due %s, now %s)", entry.key, entry.due_ms, now)
            fired += 1
            try:
                entry.callback()
            except Exception:
                logger.exception("Timer callback for %s failed", entry.key)
        return fired

    def snapshot(self) -> List[Tuple[str, int]]:
        return sorted(
            ((str(key), entry.due_ms) for key, entry in self._by_key.items()),
            key=lambda item: item[1],
        )
