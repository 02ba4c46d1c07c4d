"""Integration tests for the console state aggregate over the in-memory store."""

import asyncio

import pytest

from config import MISSIONS_LIMIT, MISSIONS_PATH, sensor_interval_path, telemetry_path
from console_state import ConsoleState, sampling_mode
from mission_manager import MissionState
from mock_generator import MockUSV
from store_adapter import InMemoryStore
from water_quality import QualityClass


async def settle(rounds=5):
    for _ in range(rounds):
        await asyncio.sleep(0.01)


def good_reading(i=0, **extra):
    return {"ph": 7.0, "temperature": 24, "tds": 200 + i, "turbidity": 2,
            "timestamp": f"2026-10-19T12:00:{i:02d}Z", **extra}


class TestSamplingMode:
    @pytest.mark.parametrize("interval,mode", [
        (2, "Survey Mode"),
        (60, "Survey Mode"),
        (61, "Routine Monitoring"),
        (900, "Routine Monitoring"),
        (901, "Low-Power / Standby"),
    ])
    def test_boundaries(self, interval, mode):
        assert sampling_mode(interval) == mode


class TestCommands:
    def test_set_sensor_interval_writes_to_store(self, store):
        console = ConsoleState(store)
        console.set_sensor_interval(300)
        assert console.sampling_mode == "Routine Monitoring"
        assert store.get(sensor_interval_path()) == 300

    def test_rejects_non_positive_interval(self, store):
        console = ConsoleState(store)
        with pytest.raises(ValueError):
            console.set_sensor_interval(0)

    def test_add_waypoint_leaves_add_mode(self, store, notify):
        console = ConsoleState(store, notify=notify)
        console.set_add_waypoint_mode(True)
        console.add_waypoint(14.6, 121.0)
        assert console.add_waypoint_mode is False
        assert console.mission.status == MissionState.DRAFT


class TestLiveSession:
    def test_streams_reach_derived_state(self, notify):
        async def scenario():
            store = InMemoryStore()
            console = ConsoleState(store, notify=notify, readings_limit=20)
            assert await console.start()

            for i in range(25):
                store.create("readings", good_reading(i, lat=14.6, lon=121.0))
            for i in range(3):
                store.set(telemetry_path(), {"lat": 10.0 + i, "lon": 121.0})
            await settle()

            result = {
                "quality": console.quality,
                "chart": len(console.chart),
                "tds": console.snapshot.tds,
                "online": console.connectivity.is_online,
                "fix": console.connectivity.has_gps_fix,
                "session": console.session_online,
                "trail": console.trail,
                "position": console.vehicle_position,
            }
            await console.stop()
            return result

        result = asyncio.run(scenario())
        assert result["quality"] == QualityClass.GOOD
        assert result["chart"] == 20
        assert result["tds"] == 224
        assert result["online"] is True
        assert result["fix"] is True
        assert result["session"] is True
        assert result["trail"] == ((10.0, 121.0), (11.0, 121.0), (12.0, 121.0))
        assert result["position"].lat == 12.0

    def test_mission_acknowledgement_round_trip(self, notify):
        async def scenario():
            store = InMemoryStore()
            console = ConsoleState(store, notify=notify)
            usv = MockUSV(seed=7)
            assert await console.start()

            console.add_waypoint(14.60, 121.00)
            console.add_waypoint(14.61, 121.01)
            sent = console.send_mission()
            await settle()

            acked = usv.acknowledge(store, store.get("missions"))
            await settle()
            log = console.mission_log
            await console.stop()
            return sent, acked, log

        sent, acked, log = asyncio.run(scenario())
        assert acked == [sent.mission_key]
        assert [e.status for e in log] == ["Acknowledged", "Pending"]
        assert log[1] is sent
        assert log[0].waypoint_count == 2

    def test_completed_mission_stops_tracking(self, notify):
        async def scenario():
            store = InMemoryStore()
            console = ConsoleState(store, notify=notify)
            assert await console.start()

            console.add_waypoint(14.60, 121.00)
            sent = console.send_mission()
            await settle()
            record = store.get(f"missions/{sent.mission_key}")
            store.set(f"missions/{sent.mission_key}", {**record, "status": "completed"})
            await settle()

            limits = [s.limit for s in store._collections if s.path == MISSIONS_PATH]
            result = (console.mission_log, console.missions.tracked_keys, limits)
            await console.stop()
            return result

        log, tracked, limits = asyncio.run(scenario())
        assert [e.status for e in log] == ["Completed", "Pending"]
        assert tracked == ()
        assert limits == [MISSIONS_LIMIT]

    def test_send_before_ready_is_deferred(self, notify):
        store = InMemoryStore(auto_ready=False)
        console = ConsoleState(store, notify=notify)
        console.add_waypoint(1, 1)
        entry = console.send_mission()
        assert store.get("missions") is None
        store.mark_ready()
        assert store.get(f"missions/{entry.mission_key}")["status"] == "pending"

    def test_auth_failure_keeps_console_offline(self):
        async def scenario():
            store = InMemoryStore()
            store.fail_auth()
            console = ConsoleState(store)
            started = await console.start()
            return started, store.is_ready, console.connectivity.is_online

        assert asyncio.run(scenario()) == (False, False, False)

    def test_silence_leaves_state_unchanged(self):
        async def scenario():
            store = InMemoryStore()
            console = ConsoleState(store)
            assert await console.start()
            await settle()
            snapshot = console.snapshot
            online = console.connectivity.is_online
            await console.stop()
            return snapshot, online

        snapshot, online = asyncio.run(scenario())
        assert (snapshot.ph, snapshot.tds) == (0.0, 0.0)
        assert online is False
