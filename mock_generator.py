# mock_generator.py
"""
Simulated USV for mock console sessions and tests.
Publishes water-quality readings and vehicle positions into any StoreAdapter
and acknowledges missions uploaded by the console, with configurable error
scenarios (sensor failures, data stalls, intermittent link, GPS issues).
"""

import asyncio
import logging
import math
import random
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Mapping, Optional

from config import DEVICE_ID, MISSIONS_PATH, READINGS_PATH, telemetry_path
from store_adapter import StoreAdapter

logger = logging.getLogger("USVConsole.MockGenerator")

SENSOR_FIELDS = ["ph", "temperature", "tds", "turbidity"]


# ------------------------------
# Mock Mode Configuration
# ------------------------------

class MockScenario(Enum):
    """Available mock simulation scenarios"""
    NORMAL = "normal"
    SENSOR_FAILURES = "sensor_failures"
    DATA_STALLS = "data_stalls"
    INTERMITTENT = "intermittent"
    GPS_ISSUES = "gps_issues"
    CHAOS = "chaos"


@dataclass
class MockModeConfig:
    """Configuration for mock data simulation with error scenarios"""
    scenario: MockScenario = MockScenario.NORMAL

    # Sensor failure settings
    sensor_failure_probability: float = 0.0  # 0-1, chance per reading
    failed_sensors: List[str] = field(default_factory=list)
    sensor_failure_duration: int = 0  # readings to fail for

    # Data stall settings
    stall_probability: float = 0.0  # chance to start a stall
    stall_duration_min: float = 3.0  # seconds
    stall_duration_max: float = 15.0  # seconds
    stall_active: bool = False
    stall_end_time: float = 0.0

    # Intermittent connection settings
    drop_probability: float = 0.0  # chance to drop a reading
    burst_drop_probability: float = 0.0  # chance to drop several readings
    burst_drop_count: int = 0  # remaining readings to drop in burst

    # GPS issues settings
    gps_drift_active: bool = False
    gps_loss_probability: float = 0.0  # chance a reading carries no fix
    gps_jump_probability: float = 0.0  # chance of sudden position jump

    # Vehicle side
    auto_acknowledge: bool = True

    @classmethod
    def from_scenario(cls, scenario: MockScenario) -> "MockModeConfig":
        """Create configuration for a specific scenario"""
        config = cls(scenario=scenario)

        if scenario == MockScenario.NORMAL:
            pass  # All defaults (no errors)

        elif scenario == MockScenario.SENSOR_FAILURES:
            config.sensor_failure_probability = 0.08
            config.sensor_failure_duration = 25

        elif scenario == MockScenario.DATA_STALLS:
            config.stall_probability = 0.02
            config.stall_duration_min = 5.0
            config.stall_duration_max = 20.0

        elif scenario == MockScenario.INTERMITTENT:
            config.drop_probability = 0.05
            config.burst_drop_probability = 0.02

        elif scenario == MockScenario.GPS_ISSUES:
            config.gps_drift_active = True
            config.gps_loss_probability = 0.1
            config.gps_jump_probability = 0.01

        elif scenario == MockScenario.CHAOS:
            # Everything enabled at moderate levels
            config.sensor_failure_probability = 0.04
            config.sensor_failure_duration = 15
            config.stall_probability = 0.01
            config.stall_duration_min = 3.0
            config.stall_duration_max = 10.0
            config.drop_probability = 0.03
            config.burst_drop_probability = 0.01
            config.gps_drift_active = True
            config.gps_loss_probability = 0.05
            config.gps_jump_probability = 0.005

        return config


# ------------------------------
# Mock USV
# ------------------------------

class MockUSV:
    """
    Generates readings and positions along a circular survey path and plays
    the vehicle side of the mission hand-off.
    """

    DEFAULT_DATA_INTERVAL = 1.0
    READINGS_RETAINED = 200

    def __init__(
        self,
        config: Optional[MockModeConfig] = None,
        device_id: str = DEVICE_ID,
        data_interval: float = DEFAULT_DATA_INTERVAL,
        seed: Optional[int] = None,
    ):
        self.config = config or MockModeConfig()
        self.device_id = device_id
        self.data_interval = data_interval
        self.rng = random.Random(seed)

        # Simulation state
        self.simulation_time = 0
        self.base_lat = 14.5995
        self.base_lon = 120.9842
        self._last_position = (self.base_lat, self.base_lon)

        # Error simulation state
        self._sensor_failure_remaining = 0
        self._current_failed_sensors: List[str] = []
        self._gps_drift_offset = (0.0, 0.0)

        self._published_keys: Deque[str] = deque()
        self._acknowledged: set = set()

        self.stats = {
            "readings_generated": 0,
            "readings_dropped": 0,
            "positions_generated": 0,
            "sensor_failures": 0,
            "gps_jumps": 0,
            "stalls": 0,
            "missions_acknowledged": 0,
        }

    def reset(self) -> None:
        """Reset generator state for a new session"""
        self.simulation_time = 0
        self._sensor_failure_remaining = 0
        self._current_failed_sensors = []
        self._gps_drift_offset = (0.0, 0.0)
        self._last_position = (self.base_lat, self.base_lon)
        self.stats = {k: 0 for k in self.stats}

    # ------------- Error simulation -------------

    def _apply_sensor_failures(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply sensor failure simulation"""
        cfg = self.config

        if self._sensor_failure_remaining <= 0:
            if self.rng.random() < cfg.sensor_failure_probability:
                self._sensor_failure_remaining = cfg.sensor_failure_duration
                candidates = cfg.failed_sensors or SENSOR_FIELDS
                fail_count = self.rng.randint(1, len(candidates))
                self._current_failed_sensors = self.rng.sample(candidates, fail_count)
                self.stats["sensor_failures"] += 1
                logger.warning(f"⚠️ SIMULATION: Sensor failure started for {self._current_failed_sensors}")

        if self._sensor_failure_remaining > 0:
            for sensor in self._current_failed_sensors:
                if self.rng.random() < 0.7:
                    data.pop(sensor, None)  # Missing field
                else:
                    data[sensor] = self.rng.uniform(-999, 999)  # Corrupted
            self._sensor_failure_remaining -= 1
            if self._sensor_failure_remaining == 0:
                logger.info("✅ SIMULATION: Sensor failure recovered")

        return data

    def _apply_gps_issues(self, lat: float, lon: float) -> Optional[tuple]:
        """Apply GPS simulation issues. None means no fix."""
        cfg = self.config

        if self.rng.random() < cfg.gps_loss_probability:
            return None

        if cfg.gps_drift_active:
            self._gps_drift_offset = (
                self._gps_drift_offset[0] + self.rng.gauss(0, 0.00002),
                self._gps_drift_offset[1] + self.rng.gauss(0, 0.00002),
            )
            # Occasional correction (GPS recalibration)
            if self.rng.random() < 0.005:
                self._gps_drift_offset = (
                    self._gps_drift_offset[0] * 0.5,
                    self._gps_drift_offset[1] * 0.5,
                )
            lat += self._gps_drift_offset[0]
            lon += self._gps_drift_offset[1]

        if self.rng.random() < cfg.gps_jump_probability:
            jump_lat = self.rng.uniform(-0.01, 0.01)
            jump_lon = self.rng.uniform(-0.01, 0.01)
            lat += jump_lat
            lon += jump_lon
            self.stats["gps_jumps"] += 1
            logger.warning(f"⚠️ SIMULATION: GPS position jump ({jump_lat:.4f}, {jump_lon:.4f})")

        return lat, lon

    def _should_stall(self) -> bool:
        """Check if we should stall data generation"""
        cfg = self.config
        now = time.monotonic()

        if cfg.stall_active:
            if now < cfg.stall_end_time:
                return True
            cfg.stall_active = False
            logger.info("✅ SIMULATION: Data stall ended, resuming...")
            return False

        if self.rng.random() < cfg.stall_probability:
            duration = self.rng.uniform(cfg.stall_duration_min, cfg.stall_duration_max)
            cfg.stall_active = True
            cfg.stall_end_time = now + duration
            self.stats["stalls"] += 1
            logger.warning(f"⚠️ SIMULATION: Data stall started ({duration:.1f}s)")
            return True

        return False

    def _should_drop_message(self) -> bool:
        """Check if we should drop this reading (intermittent simulation)"""
        cfg = self.config

        if cfg.burst_drop_count > 0:
            cfg.burst_drop_count -= 1
            return True

        if self.rng.random() < cfg.burst_drop_probability:
            cfg.burst_drop_count = self.rng.randint(3, 10)
            logger.warning(f"⚠️ SIMULATION: Burst drop started ({cfg.burst_drop_count} readings)")
            return True

        return self.rng.random() < cfg.drop_probability

    # ------------- Generation -------------

    def _path_point(self) -> tuple:
        t = self.simulation_time * 0.05
        lat = self.base_lat + 0.001 * math.sin(t) + self.rng.gauss(0, 0.00002)
        lon = self.base_lon + 0.001 * math.cos(t) + self.rng.gauss(0, 0.00002)
        return lat, lon

    def generate(self) -> Optional[Dict[str, Any]]:
        """
        Generate a single water-quality reading.
        Returns None if data should be stalled or dropped.
        """
        if self._should_stall():
            return None

        if self._should_drop_message():
            self.stats["readings_dropped"] += 1
            return None

        now = datetime.now(timezone.utc)
        t = self.simulation_time

        data: Dict[str, Any] = {
            "ph": round(7.2 + 0.4 * math.sin(t * 0.02) + self.rng.gauss(0, 0.05), 2),
            "temperature": round(25.0 + 2.0 * math.sin(t * 0.01) + self.rng.gauss(0, 0.2), 2),
            "tds": round(max(0.0, 320 + 60 * math.sin(t * 0.015) + self.rng.gauss(0, 8)), 1),
            "turbidity": round(max(0.0, 3.0 + 1.5 * math.sin(t * 0.03) + self.rng.gauss(0, 0.3)), 2),
            "timestamp": now.isoformat(),
        }

        fix = self._path_point()
        if self.config.scenario in (MockScenario.GPS_ISSUES, MockScenario.CHAOS):
            fix = self._apply_gps_issues(*fix)
        if fix is not None:
            data["lat"], data["lon"] = round(fix[0], 6), round(fix[1], 6)
            self._last_position = fix

        if self.config.scenario in (MockScenario.SENSOR_FAILURES, MockScenario.CHAOS):
            data = self._apply_sensor_failures(data)

        self.simulation_time += 1
        self.stats["readings_generated"] += 1
        return data

    def generate_position(self) -> Dict[str, Any]:
        """Current vehicle position record for telemetry/{device_id}/current"""
        lat, lon = self._last_position
        t = self.simulation_time * 0.05
        heading = (math.degrees(math.atan2(-math.sin(t), math.cos(t))) + 360) % 360
        self.stats["positions_generated"] += 1
        return {
            "lat": round(lat, 6),
            "lon": round(lon, 6),
            "alt": 0.0,
            "heading": round(heading, 1),
            "groundspeed": round(max(0.0, 1.5 + self.rng.gauss(0, 0.1)), 2),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def generate_batch(self, count: int, include_stalls: bool = False) -> List[Optional[Dict[str, Any]]]:
        """
        Generate multiple readings for batch testing.
        If include_stalls is False, None values are skipped.
        """
        results = []
        for _ in range(count):
            data = self.generate()
            if data is not None or include_stalls:
                results.append(data)
        return results

    # ------------- Vehicle side of the store -------------

    def publish_step(self, store: StoreAdapter) -> Optional[str]:
        """Publish one reading (if any) and the current position. Returns the reading key."""
        key = None
        reading = self.generate()
        if reading is not None:
            key = store.create(READINGS_PATH, reading)
            self._published_keys.append(key)
            while len(self._published_keys) > self.READINGS_RETAINED:
                store.set(f"{READINGS_PATH}/{self._published_keys.popleft()}", None)
        store.set(telemetry_path(self.device_id), self.generate_position())
        return key

    def acknowledge(self, store: StoreAdapter, batch: Optional[Mapping[str, Any]]) -> List[str]:
        """Mark pending missions as acknowledged, the way the vehicle does on pick-up"""
        acked = []
        if not batch or not self.config.auto_acknowledge:
            return acked
        for key, record in batch.items():
            if key in self._acknowledged or not isinstance(record, Mapping):
                continue
            if record.get("status") != "pending":
                continue
            self._acknowledged.add(key)
            store.set(f"{MISSIONS_PATH}/{key}", {**record, "status": "acknowledged"})
            self.stats["missions_acknowledged"] += 1
            logger.info(f"🚤 SIMULATION: Mission {key} acknowledged ({len(record.get('waypoints') or [])} waypoints)")
            acked.append(key)
        return acked

    async def run(self, store: StoreAdapter, stop_event: asyncio.Event) -> None:
        """Publish at data_interval until stop_event is set"""
        await store.wait_ready()
        missions = store.subscribe(MISSIONS_PATH)

        async def ack_loop():
            async for batch in missions:
                self.acknowledge(store, batch)

        ack_task = asyncio.create_task(ack_loop(), name="mock_ack")
        logger.info(f"🎭 Mock USV running: {self.config.scenario.value.upper()}")
        try:
            while not stop_event.is_set():
                self.publish_step(store)
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.data_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            missions.cancel()
            await asyncio.gather(ack_task, return_exceptions=True)
