"""Tests for the vehicle position trail."""

from datetime import datetime, timezone

import pytest

from position_tracker import (
    PositionTracker,
    TrackState,
    VehiclePosition,
    reduce_position,
    trail_distance_m,
)


class TestReducePosition:
    def test_replaces_position_and_appends(self):
        state = reduce_position(TrackState(), {"lat": 1.0, "lon": 2.0, "heading": 90})
        state = reduce_position(state, {"lat": 1.5, "lon": 2.5})
        assert state.position.lat == 1.5
        assert state.position.heading == 0.0
        assert state.trail == ((1.0, 2.0), (1.5, 2.5))

    def test_optional_fields_default(self):
        pos = VehiclePosition.from_record({"lat": 1.0, "lon": 2.0})
        assert (pos.alt, pos.heading, pos.groundspeed) == (0.0, 0.0, 0.0)
        assert pos.timestamp

    def test_timestamp_is_kept(self):
        pos = VehiclePosition.from_record({"lat": 1, "lon": 2, "timestamp": "2026-10-19T12:00:00Z"})
        assert pos.timestamp == "2026-10-19T12:00:00Z"

    @pytest.mark.parametrize("epoch", [1760000000, 1760000000000])
    def test_epoch_timestamp_becomes_iso(self, epoch):
        pos = VehiclePosition.from_record({"lat": 1, "lon": 2, "timestamp": epoch})
        assert datetime.fromisoformat(pos.timestamp) == datetime(2025, 10, 9, 8, 53, 20, tzinfo=timezone.utc)

    def test_unparsable_timestamp_becomes_now(self):
        pos = VehiclePosition.from_record({"lat": 1, "lon": 2, "timestamp": "yesterday"})
        assert datetime.fromisoformat(pos.timestamp).tzinfo is not None

    def test_absent_record_is_noop(self):
        state = TrackState()
        assert reduce_position(state, None) is state
        assert reduce_position(state, {}) is state

    def test_duplicates_still_grow_trail(self):
        state = TrackState()
        for _ in range(3):
            state = reduce_position(state, {"lat": 1.0, "lon": 1.0})
        assert len(state.trail) == 3


class TestTrailCapacity:
    def test_301_updates_evict_the_first(self):
        tracker = PositionTracker()
        for i in range(301):
            tracker.apply({"lat": float(i), "lon": float(-i)})
        assert len(tracker.trail) == 300
        assert tracker.trail[0] == (1.0, -1.0)
        assert tracker.trail[-1] == (300.0, -300.0)
        assert tracker.stats["points_evicted"] == 1

    def test_never_exceeds_capacity(self):
        tracker = PositionTracker(capacity=5)
        for i in range(20):
            tracker.apply({"lat": i, "lon": i})
            assert len(tracker.trail) <= 5
        assert [p[0] for p in tracker.trail] == [15, 16, 17, 18, 19]


class TestTrailDistance:
    def test_one_degree_of_longitude_at_equator(self):
        assert trail_distance_m([(0.0, 0.0), (0.0, 1.0)]) == pytest.approx(111195, rel=1e-3)

    def test_short_trails(self):
        assert trail_distance_m([]) == 0.0
        assert trail_distance_m([(1.0, 1.0)]) == 0.0

    def test_sums_segments(self):
        d = trail_distance_m([(0.0, 0.0), (0.0, 1.0), (0.0, 2.0)])
        assert d == pytest.approx(2 * 111195, rel=1e-3)
