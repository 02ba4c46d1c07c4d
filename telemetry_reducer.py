# telemetry_reducer.py
"""
Reduces batches of water-quality readings from the `readings` subscription
into the console's derived telemetry state:

- current sensor snapshot and its quality class
- connectivity (online flag, latched GPS fix, last update time)
- chart series rebuilt from the whole batch

A batch is the ordered keyed collection delivered by the store. The
"current" reading is the last one in iteration order, not the one with the
greatest timestamp.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from water_quality import QualityClass, score

logger = logging.getLogger("USVConsole.Telemetry")

SENSOR_FIELDS = ("ph", "temperature", "tds", "turbidity")


# ------------------------------
# Record helpers
# ------------------------------

def as_float(value: Any) -> float:
    """Coerce a record value to float, zeroing missing, non-numeric, NaN and Inf values"""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        out = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(out) or math.isinf(out):
        return 0.0
    return out


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string or an epoch number into an aware datetime.
    Epoch numbers above 1e11 are taken as milliseconds.
    Returns None when the value is absent or unparsable.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        if math.isnan(value) or math.isinf(value) or value == 0:
            return None
        seconds = value / 1000.0 if value > 1e11 else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    return None


def format_time_label(dt: datetime) -> str:
    """Local hh:mm:ss AM/PM label used on the chart axis"""
    return dt.astimezone().strftime("%I:%M:%S %p")


# ------------------------------
# State
# ------------------------------

@dataclass(frozen=True)
class SensorSnapshot:
    """Four numeric fields of the most recently selected reading"""
    ph: float = 0.0
    temperature: float = 0.0
    tds: float = 0.0
    turbidity: float = 0.0

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "SensorSnapshot":
        return cls(**{name: as_float(record.get(name)) for name in SENSOR_FIELDS})


@dataclass(frozen=True)
class ChartPoint:
    timestamp: str
    ph: float
    temperature: float
    turbidity: float
    tds: float


@dataclass(frozen=True)
class ConnectivityState:
    is_online: bool = False
    has_gps_fix: bool = False
    last_update: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class TelemetryState:
    snapshot: SensorSnapshot = field(default_factory=SensorSnapshot)
    # Initial class before any data arrives
    quality: QualityClass = QualityClass.GOOD
    connectivity: ConnectivityState = field(default_factory=ConnectivityState)
    chart: Tuple[ChartPoint, ...] = ()


def _has_position(record: Mapping[str, Any]) -> bool:
    lat = record.get("lat")
    lon = record.get("lon")
    if lat is None or lon is None:
        return False
    return as_float(lat) != 0.0 or as_float(lon) != 0.0


def _chart_point(record: Mapping[str, Any], now: datetime) -> ChartPoint:
    ts = parse_timestamp(record.get("timestamp")) or now
    return ChartPoint(
        timestamp=format_time_label(ts),
        ph=as_float(record.get("ph")),
        temperature=as_float(record.get("temperature")),
        turbidity=as_float(record.get("turbidity")),
        tds=as_float(record.get("tds")),
    )


# ------------------------------
# Reducer
# ------------------------------

def reduce_readings(
    state: TelemetryState,
    batch: Optional[Mapping[str, Any]],
    now: Optional[datetime] = None,
) -> TelemetryState:
    """
    Fold one readings batch into the telemetry state.
    An empty or absent batch returns the state unchanged.
    """
    if not batch:
        return state

    now = now or datetime.now(timezone.utc)
    values = batch.values() if isinstance(batch, Mapping) else batch
    entries = [e if isinstance(e, Mapping) else {} for e in values]
    latest = entries[-1]

    snapshot = SensorSnapshot.from_record(latest)
    connectivity = replace(
        state.connectivity,
        is_online=True,
        has_gps_fix=state.connectivity.has_gps_fix or _has_position(latest),
        last_update=parse_timestamp(latest.get("timestamp")) or now,
    )

    return TelemetryState(
        snapshot=snapshot,
        quality=score(snapshot),
        connectivity=connectivity,
        chart=tuple(_chart_point(e, now) for e in entries),
    )


class TelemetryReducer:
    """Owns the telemetry state; the only writer of snapshot, quality and connectivity"""

    def __init__(self, state: Optional[TelemetryState] = None):
        self._state = state or TelemetryState()
        self.stats = {
            "batches_received": 0,
            "batches_empty": 0,
            "last_batch_size": 0,
        }

    @property
    def state(self) -> TelemetryState:
        return self._state

    @property
    def snapshot(self) -> SensorSnapshot:
        return self._state.snapshot

    @property
    def quality(self) -> QualityClass:
        return self._state.quality

    @property
    def connectivity(self) -> ConnectivityState:
        return self._state.connectivity

    @property
    def chart(self) -> Tuple[ChartPoint, ...]:
        return self._state.chart

    def apply(self, batch: Optional[Dict[str, Any]]) -> TelemetryState:
        if not batch:
            self.stats["batches_empty"] += 1
            logger.debug("No data at readings")
            return self._state

        had_fix = self._state.connectivity.has_gps_fix
        self._state = reduce_readings(self._state, batch)
        self.stats["batches_received"] += 1
        self.stats["last_batch_size"] = len(batch)

        if self._state.connectivity.has_gps_fix and not had_fix:
            logger.info("🛰️ GPS fix acquired")
        logger.debug(
            f"Readings batch ({len(batch)}): quality={self._state.quality.value} "
            f"snapshot={self._state.snapshot}"
        )
        return self._state
