"""Tests for the simulated USV."""

import asyncio

from config import telemetry_path
from mock_generator import MockModeConfig, MockScenario, MockUSV
from store_adapter import InMemoryStore


class TestScenarios:
    def test_normal_has_no_faults(self):
        cfg = MockModeConfig.from_scenario(MockScenario.NORMAL)
        assert cfg.sensor_failure_probability == 0.0
        assert cfg.drop_probability == 0.0
        assert cfg.gps_loss_probability == 0.0

    def test_chaos_enables_everything(self):
        cfg = MockModeConfig.from_scenario(MockScenario.CHAOS)
        assert cfg.sensor_failure_probability > 0
        assert cfg.stall_probability > 0
        assert cfg.drop_probability > 0
        assert cfg.gps_drift_active is True


class TestGeneration:
    def test_normal_readings_are_complete(self):
        usv = MockUSV(seed=1)
        readings = usv.generate_batch(50)
        assert len(readings) == 50
        for r in readings:
            assert {"ph", "temperature", "tds", "turbidity", "timestamp", "lat", "lon"} <= set(r)
            assert 6.0 < r["ph"] < 8.5

    def test_sensor_failures_drop_or_corrupt_fields(self):
        cfg = MockModeConfig.from_scenario(MockScenario.SENSOR_FAILURES)
        cfg.sensor_failure_probability = 1.0
        usv = MockUSV(config=cfg, seed=3)
        usv.generate()
        assert usv.stats["sensor_failures"] == 1

    def test_gps_loss_omits_position(self):
        cfg = MockModeConfig(scenario=MockScenario.GPS_ISSUES, gps_loss_probability=1.0)
        usv = MockUSV(config=cfg, seed=2)
        r = usv.generate()
        assert "lat" not in r and "lon" not in r

    def test_intermittent_drops(self):
        cfg = MockModeConfig(scenario=MockScenario.INTERMITTENT, drop_probability=1.0)
        usv = MockUSV(config=cfg, seed=4)
        assert usv.generate_batch(10) == []
        assert usv.stats["readings_dropped"] == 10

    def test_position_record(self):
        pos = MockUSV(seed=5).generate_position()
        assert set(pos) == {"lat", "lon", "alt", "heading", "groundspeed", "timestamp"}
        assert 0 <= pos["heading"] < 360


class TestStoreSide:
    def test_publish_step_trims_old_readings(self, store):
        usv = MockUSV(seed=6)
        usv.READINGS_RETAINED = 3
        for _ in range(5):
            usv.publish_step(store)
        assert len(store.get("readings")) == 3
        assert store.get(telemetry_path())["lat"] != 0

    def test_acknowledge_only_pending(self, store):
        usv = MockUSV(seed=8)
        store.set("missions/a", {"status": "pending", "waypoints": [{"lat": 1, "lon": 2, "seq": 0}]})
        store.set("missions/b", {"status": "completed", "waypoints": []})
        assert usv.acknowledge(store, store.get("missions")) == ["a"]
        assert store.get("missions/a")["status"] == "acknowledged"
        assert usv.acknowledge(store, store.get("missions")) == []

    def test_run_until_stopped(self):
        async def scenario():
            store = InMemoryStore()
            await store.connect()
            stop = asyncio.Event()
            usv = MockUSV(seed=9, data_interval=0.01)
            task = asyncio.create_task(usv.run(store, stop))
            await asyncio.sleep(0.1)
            stop.set()
            await task
            return store, usv

        store, usv = asyncio.run(scenario())
        assert usv.stats["readings_generated"] >= 1
        assert store.get("readings")
