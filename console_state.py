# console_state.py
"""
Operator console state for the USV.

ConsoleState is the single owned aggregate behind the presentation layer:
- subscribes to readings, vehicle position, mission statuses and the session probe
- folds every delivered event into its owning component, one event at a time
- exposes read accessors and the mission/settings commands

Run directly for a mock session against the simulated USV, or against the
realtime store when USV_ABLY_API_KEY is set.
"""

import asyncio
import logging
import os
import signal
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple

from config import (
    ABLY_API_KEY,
    DEFAULT_SENSOR_INTERVAL,
    DEVICE_ID,
    MISSIONS_LIMIT,
    MISSIONS_PATH,
    READINGS_LIMIT,
    READINGS_PATH,
    ROUTINE_MODE_MAX_INTERVAL,
    SURVEY_MODE_MAX_INTERVAL,
    TRAIL_CAPACITY,
    sensor_interval_path,
    setup_logging,
    telemetry_path,
)
from mission_manager import (
    Mission,
    MissionLifecycleManager,
    MissionLogEntry,
    Notifier,
    Waypoint,
)
from position_tracker import PositionTracker, TrailPoint, VehiclePosition
from store_adapter import InMemoryStore, StoreAdapter, Subscription
from telemetry_reducer import ChartPoint, ConnectivityState, SensorSnapshot, TelemetryReducer
from water_quality import QualityClass

logger = logging.getLogger("USVConsole")


def sampling_mode(sensor_interval: float) -> str:
    """Operating mode implied by the sensor sampling interval (seconds)"""
    if sensor_interval <= SURVEY_MODE_MAX_INTERVAL:
        return "Survey Mode"
    if sensor_interval <= ROUTINE_MODE_MAX_INTERVAL:
        return "Routine Monitoring"
    return "Low-Power / Standby"


class ConsoleState:
    """
    - Readings -> TelemetryReducer (snapshot, quality, connectivity, chart)
    - Vehicle position -> PositionTracker (position, trail)
    - Mission statuses -> MissionLifecycleManager (acknowledgements)
    - Session probe -> session_online
    """

    def __init__(
        self,
        store: StoreAdapter,
        device_id: str = DEVICE_ID,
        notify: Optional[Notifier] = None,
        readings_limit: int = READINGS_LIMIT,
        trail_capacity: int = TRAIL_CAPACITY,
    ):
        self.store = store
        self.device_id = device_id
        self.readings_limit = readings_limit

        self.telemetry = TelemetryReducer()
        self.tracker = PositionTracker(capacity=trail_capacity)
        self.missions = MissionLifecycleManager(store, notify=notify)

        self.session_online = False
        self.add_waypoint_mode = False
        self.sensor_interval = DEFAULT_SENSOR_INTERVAL

        self._subscriptions: List[Subscription] = []
        self._tasks: List[asyncio.Task] = []
        self.stats = {"events_processed": 0, "errors": 0, "last_error": None}

    # ------------- Read accessors -------------

    @property
    def snapshot(self) -> SensorSnapshot:
        return self.telemetry.snapshot

    @property
    def quality(self) -> QualityClass:
        return self.telemetry.quality

    @property
    def connectivity(self) -> ConnectivityState:
        return self.telemetry.connectivity

    @property
    def chart(self) -> Tuple[ChartPoint, ...]:
        return self.telemetry.chart

    @property
    def vehicle_position(self) -> Optional[VehiclePosition]:
        return self.tracker.position

    @property
    def trail(self) -> Tuple[TrailPoint, ...]:
        return self.tracker.trail

    @property
    def mission(self) -> Mission:
        return self.missions.mission

    @property
    def mission_log(self) -> Tuple[MissionLogEntry, ...]:
        return self.missions.log

    @property
    def sampling_mode(self) -> str:
        return sampling_mode(self.sensor_interval)

    # ------------- Commands -------------

    def set_add_waypoint_mode(self, enabled: bool) -> None:
        self.add_waypoint_mode = enabled

    def add_waypoint(self, x: float, y: float) -> Waypoint:
        wp = self.missions.add_waypoint(x, y)
        self.add_waypoint_mode = False
        return wp

    def clear_waypoints(self) -> None:
        self.missions.clear_waypoints()

    def send_mission(self) -> Optional[MissionLogEntry]:
        return self.missions.send_mission()

    def set_sensor_interval(self, seconds: int) -> None:
        """Change the vehicle's sampling interval and push it to the store"""
        if seconds <= 0:
            raise ValueError(f"sensor interval must be positive, got {seconds}")
        self.sensor_interval = seconds
        self.store.set(sensor_interval_path(self.device_id), seconds)
        logger.info(f"⚙️ Sensor interval set to {seconds}s ({self.sampling_mode})")

    # ------------- Event handlers -------------

    def on_session_state(self, online: Any) -> None:
        self.session_online = bool(online)
        logger.info(f"Connected to store: {self.session_online}")

    # ------------- Lifecycle -------------

    async def start(self) -> bool:
        """
        Connect the store and start one consumer task per subscription.
        Returns False (and stays pre-ready) if the session handshake fails.
        """
        if not self.store.is_ready and not await self.store.connect():
            logger.error("❌ Store session not ready - console stays offline")
            return False

        logger.info(f"Connecting to {READINGS_PATH} (last {self.readings_limit})...")
        feeds: List[Tuple[str, Subscription, Callable[[Any], Any]]] = [
            ("readings", self.store.subscribe(READINGS_PATH, limit=self.readings_limit), self.telemetry.apply),
            ("position", self.store.subscribe_single(telemetry_path(self.device_id)), self.tracker.apply),
            ("missions", self.store.subscribe(MISSIONS_PATH, limit=MISSIONS_LIMIT), self.missions.apply_status_updates),
            ("session", self.store.subscribe_connection(), self.on_session_state),
        ]
        for name, sub, handler in feeds:
            self._subscriptions.append(sub)
            self._tasks.append(asyncio.create_task(self._consume(name, sub, handler), name=name))
        logger.info(f"🚀 Console started (device {self.device_id})")
        return True

    async def _consume(self, name: str, sub: Subscription, handler: Callable[[Any], Any]) -> None:
        async for event in sub:
            try:
                handler(event)
                self.stats["events_processed"] += 1
            except Exception as e:
                self._count_error(f"{name} handler error: {e}")

    async def stop(self) -> None:
        for sub in self._subscriptions:
            sub.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._subscriptions.clear()
        self._tasks.clear()
        await self.store.close()
        logger.info("✅ Console stopped")

    def _count_error(self, msg: str):
        logger.error(f"❌ {msg}")
        self.stats["errors"] += 1
        self.stats["last_error"] = msg


# ------------------------------
# Session runner
# ------------------------------

async def print_status(console: ConsoleState, shutdown_event: asyncio.Event, interval: float = 30.0):
    while not shutdown_event.is_set():
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
        conn = console.connectivity
        s = console.snapshot
        logger.info(
            f"📊 online={conn.is_online} gps={conn.has_gps_fix} session={console.session_online} "
            f"quality={console.quality.value} ph={s.ph:.2f} temp={s.temperature:.2f} "
            f"tds={s.tds:.1f} turb={s.turbidity:.2f} trail={len(console.trail)} "
            f"missions={len(console.mission_log)}"
        )


async def main():
    setup_logging()
    shutdown_event = asyncio.Event()
    tasks: List[asyncio.Task] = []

    def _signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        loop.call_soon_threadsafe(shutdown_event.set)

    loop = asyncio.get_running_loop()
    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    if ABLY_API_KEY:
        from realtime_store import RealtimeStore
        store: StoreAdapter = RealtimeStore()
        logger.info("🔗 REAL MODE ENABLED")
    else:
        from mock_generator import MockModeConfig, MockScenario, MockUSV
        store = InMemoryStore()
        scenario = MockScenario(os.getenv("USV_MOCK_SCENARIO", MockScenario.NORMAL.value))
        usv = MockUSV(config=MockModeConfig.from_scenario(scenario))
        logger.info(f"🎭 MOCK MODE: {scenario.value.upper()}")

    console = ConsoleState(store)
    try:
        if not await console.start():
            return
        if not ABLY_API_KEY:
            tasks.append(asyncio.create_task(usv.run(store, shutdown_event), name="mock_usv"))
        tasks.append(asyncio.create_task(print_status(console, shutdown_event), name="status"))
        await shutdown_event.wait()
    finally:
        shutdown_event.set()
        await asyncio.gather(*tasks, return_exceptions=True)
        await console.stop()
        logger.info(f"🏁 Exited at {datetime.now(timezone.utc).isoformat()}")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("🛑 Interrupted")
