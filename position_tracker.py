# position_tracker.py
"""
Tracks the vehicle position published on `telemetry/{device_id}/current`
and keeps a bounded trail of past (lat, lon) points for the map.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence, Tuple

import numpy as np

from config import TRAIL_CAPACITY
from telemetry_reducer import as_float, parse_timestamp

logger = logging.getLogger("USVConsole.Position")

EARTH_RADIUS_M = 6371000

TrailPoint = Tuple[float, float]


def _iso_timestamp(value: Any) -> str:
    """ISO-8601 text for a record timestamp; epoch numbers are converted, unparsable values become now"""
    parsed = parse_timestamp(value)
    if parsed is None:
        return datetime.now(timezone.utc).isoformat()
    if isinstance(value, str):
        return value
    return parsed.isoformat()


@dataclass(frozen=True)
class VehiclePosition:
    lat: float
    lon: float
    alt: float = 0.0
    heading: float = 0.0
    groundspeed: float = 0.0
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "VehiclePosition":
        ts = _iso_timestamp(record.get("timestamp"))
        return cls(
            lat=as_float(record.get("lat")),
            lon=as_float(record.get("lon")),
            alt=as_float(record.get("alt")),
            heading=as_float(record.get("heading")),
            groundspeed=as_float(record.get("groundspeed")),
            timestamp=ts,
        )


@dataclass(frozen=True)
class TrackState:
    position: Optional[VehiclePosition] = None
    trail: Tuple[TrailPoint, ...] = ()


def reduce_position(
    state: TrackState,
    record: Optional[Mapping[str, Any]],
    capacity: int = TRAIL_CAPACITY,
) -> TrackState:
    """Replace the current position and append it to the trail, evicting the oldest beyond capacity"""
    if not record or not isinstance(record, Mapping):
        return state

    position = VehiclePosition.from_record(record)
    trail = state.trail + ((position.lat, position.lon),)
    if len(trail) > capacity:
        trail = trail[len(trail) - capacity:]
    return TrackState(position=position, trail=trail)


def trail_distance_m(trail: Sequence[TrailPoint]) -> float:
    """Along-track distance of a trail in meters (haversine between consecutive points)"""
    if len(trail) < 2:
        return 0.0
    pts = np.radians(np.asarray(trail, dtype=float))
    lat1, lon1 = pts[:-1, 0], pts[:-1, 1]
    lat2, lon2 = pts[1:, 0], pts[1:, 1]
    a = (
        np.sin((lat2 - lat1) / 2) ** 2
        + np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2) ** 2
    )
    d = 2 * EARTH_RADIUS_M * np.arctan2(np.sqrt(a), np.sqrt(1 - a))
    return float(d.sum())


class PositionTracker:
    """Owns the current vehicle position and its trail"""

    def __init__(self, capacity: int = TRAIL_CAPACITY):
        self.capacity = capacity
        self._state = TrackState()
        self.stats = {"positions_received": 0, "points_evicted": 0}

    @property
    def state(self) -> TrackState:
        return self._state

    @property
    def position(self) -> Optional[VehiclePosition]:
        return self._state.position

    @property
    def trail(self) -> Tuple[TrailPoint, ...]:
        return self._state.trail

    def distance_m(self) -> float:
        return trail_distance_m(self._state.trail)

    def apply(self, record: Optional[Mapping[str, Any]]) -> TrackState:
        if not record:
            return self._state
        before = len(self._state.trail)
        self._state = reduce_position(self._state, record, self.capacity)
        self.stats["positions_received"] += 1
        self.stats["points_evicted"] += before + 1 - len(self._state.trail)
        return self._state
