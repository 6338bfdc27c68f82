"""Town grid cells and timestamp conversion."""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from . import config
from .timers import TimerKind


# ---------------------------------------------------------------------------
# Timestamps cross the backend boundary as ISO-8601 strings.


def parse_timestamp(value: object) -> Optional[int]:
    """Return ``value`` as epoch milliseconds.

    Accepts ISO-8601 strings (a trailing ``Z`` included), ``datetime``
    instances and numeric epoch milliseconds. ``None`` and empty strings map
    to ``None``; anything else unparseable raises :class:`ValueError`.
    """

    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        moment = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Invalid timestamp: {value!r}") from exc
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(round(moment.timestamp() * 1000))


def format_timestamp(epoch_ms: Optional[int]) -> Optional[str]:
    if epoch_ms is None:
        return None
    moment = datetime.fromtimestamp(int(epoch_ms) / 1000.0, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------


@dataclass
class Building:
    """A single cell of the town grid."""

    x: int
    y: int
    type: str = config.EMPTY
    level: int = 1
    is_building: bool = False
    build_start_time: Optional[int] = None
    build_end_time: Optional[int] = None
    is_upgrading: bool = False
    upgrade_start_time: Optional[int] = None
    upgrade_end_time: Optional[int] = None

    @property
    def coordinates(self) -> Tuple[int, int]:
        return (self.x, self.y)

    @property
    def is_empty(self) -> bool:
        return self.type == config.EMPTY

    @property
    def in_progress(self) -> bool:
        return self.is_building or self.is_upgrading

    @property
    def name(self) -> str:
        building_config = config.BUILDING_CONFIGS.get(self.type)
        return building_config.name if building_config else self.type.title()

    def pending_timers(self) -> List[Tuple[TimerKind, Optional[int]]]:
        """Return the (kind, end time) pairs this cell is waiting on."""

        pending: List[Tuple[TimerKind, Optional[int]]] = []
        if self.is_building:
            pending.append((TimerKind.BUILD, self.build_end_time))
        if self.is_upgrading:
            pending.append((TimerKind.UPGRADE, self.upgrade_end_time))
        return pending

    def end_time(self) -> Optional[int]:
        if self.is_building:
            return self.build_end_time
        if self.is_upgrading:
            return self.upgrade_end_time
        return None

    # ------------------------------------------------------------------
    def start_build(self, type_key: str, now_ms: int, duration_ms: int) -> None:
        if self.in_progress:
            raise ValueError("La casilla ya tiene una obra en curso")
        self.type = type_key
        self.level = 1
        self.is_building = True
        self.build_start_time = int(now_ms)
        self.build_end_time = int(now_ms) + max(0, int(duration_ms))

    def start_upgrade(self, now_ms: int, duration_ms: int) -> None:
        if self.in_progress:
            raise ValueError("La casilla ya tiene una obra en curso")
        self.is_upgrading = True
        self.upgrade_start_time = int(now_ms)
        self.upgrade_end_time = int(now_ms) + max(0, int(duration_ms))

    def finish(self, kind: TimerKind) -> bool:
        """Clear the in-progress flags for ``kind``; ``False`` if already clear."""

        if kind is TimerKind.BUILD:
            if not self.is_building:
                return False
            self.is_building = False
            self.build_start_time = None
            self.build_end_time = None
            return True
        if kind is TimerKind.UPGRADE:
            if not self.is_upgrading:
                return False
            self.is_upgrading = False
            self.upgrade_start_time = None
            self.upgrade_end_time = None
            self.level += 1
            return True
        return False

    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "x": self.x,
            "y": self.y,
            "type": self.type,
            "level": self.level,
            "isBuilding": self.is_building,
            "isUpgrading": self.is_upgrading,
        }
        for key, value in (
            ("buildStartTime", self.build_start_time),
            ("buildEndTime", self.build_end_time),
            ("upgradeStartTime", self.upgrade_start_time),
            ("upgradeEndTime", self.upgrade_end_time),
        ):
            if value is not None:
                payload[key] = format_timestamp(value)
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "Building":
        return cls(
            x=int(payload["x"]),  # type: ignore[arg-type]
            y=int(payload["y"]),  # type: ignore[arg-type]
            type=str(payload.get("type", config.EMPTY)),
            level=int(payload.get("level", 1)),  # type: ignore[arg-type]
            is_building=bool(payload.get("isBuilding", False)),
            build_start_time=parse_timestamp(payload.get("buildStartTime")),
            build_end_time=parse_timestamp(payload.get("buildEndTime")),
            is_upgrading=bool(payload.get("isUpgrading", False)),
            upgrade_start_time=parse_timestamp(payload.get("upgradeStartTime")),
            upgrade_end_time=parse_timestamp(payload.get("upgradeEndTime")),
        )


@dataclass
class Town:
    """Grid of building cells plus the shared collection anchor."""

    width: int = config.TOWN_WIDTH
    height: int = config.TOWN_HEIGHT
    last_collected: int = 0
    cells: Dict[Tuple[int, int], Building] = field(default_factory=dict)

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def get(self, x: int, y: int) -> Optional[Building]:
        return self.cells.get((int(x), int(y)))

    def place(self, building: Building) -> Building:
        self.cells[building.coordinates] = building
        return building

    def buildings(self) -> Iterator[Building]:
        for key in sorted(self.cells):
            building = self.cells[key]
            if not building.is_empty:
                yield building

    def in_progress(self) -> List[Building]:
        return [building for building in self.buildings() if building.in_progress]

    def copy(self) -> "Town":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, object]:
        return {
            "mapSize": {"width": self.width, "height": self.height},
            "lastCollected": format_timestamp(self.last_collected),
            "buildings": [building.to_dict() for building in self.buildings()],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "Town":
        size = payload.get("mapSize") or {}
        town = cls(
            width=int(size.get("width", config.TOWN_WIDTH)),  # type: ignore[union-attr]
            height=int(size.get("height", config.TOWN_HEIGHT)),  # type: ignore[union-attr]
            last_collected=parse_timestamp(payload.get("lastCollected")) or 0,
        )
        for entry in payload.get("buildings", []):  # type: ignore[union-attr]
            town.place(Building.from_dict(entry))
        return town

    @classmethod
    def starting(cls, now_ms: int, entries: Iterable[Mapping[str, object]] = config.STARTING_BUILDINGS) -> "Town":
        town = cls(last_collected=int(now_ms))
        for entry in entries:
            town.place(
                Building(
                    x=int(entry["x"]),  # type: ignore[arg-type]
                    y=int(entry["y"]),  # type: ignore[arg-type]
                    type=str(entry["type"]),
                    level=int(entry.get("level", 1)),  # type: ignore[arg-type]
                )
            )
        return town
