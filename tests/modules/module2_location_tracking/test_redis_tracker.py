"""Tests for the Redis-backed LocationTracker (Module 2)."""

from datetime import timedelta

import fakeredis

from src.modules.module1_geospatial.schemas import Distance, Location
from src.modules.module2_location_tracking import RedisLocationTracker

from helpers import ManualClock


class TestRedisLocationTracker:
    """Test suite for RedisLocationTracker against an in-process Redis."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = ManualClock()
        self.client = fakeredis.FakeRedis()
        self.tracker = RedisLocationTracker(
            self.client,
            key_prefix="test:courier",
            staleness_seconds=300,
            eviction_seconds=900,
            clock=self.clock,
        )
        self.center = Location.of(48.8566, 2.3522)

    def test_report_round_trip(self):
        """Test that the stored position is read back intact."""
        self.tracker.report("c1", self.center, self.clock(), accuracy_m=5.0)

        position = self.tracker.current_position("c1")

        assert position.location == self.center
        assert position.reported_at == self.clock()
        assert position.accuracy_m == 5.0

    def test_out_of_order_report_ignored(self):
        """Test last-write-wins by device time."""
        newer = Location.of(48.86, 2.35)
        self.tracker.report("c1", newer, self.clock())

        assert self.tracker.report("c1", self.center, self.clock() - timedelta(seconds=30)) is False
        assert self.tracker.current_location("c1") == newer

    def test_find_nearby_sorted_and_fresh(self):
        """Test proximity results are sorted and exclude stale positions."""
        self.tracker.report("far", Location.of(48.8650, 2.3522), self.clock())
        self.tracker.report("near", Location.of(48.8570, 2.3522), self.clock())
        self.tracker.report("stale", Location.of(48.8567, 2.3522), self.clock() - timedelta(seconds=400))

        assert self.tracker.find_nearby(self.center, Distance.of_kilometers(2)) == ["near", "far"]

    def test_find_nearby_respects_radius(self):
        """Test exact filtering at the radius."""
        self.tracker.report("c1", Location.of(48.8666, 2.3522), self.clock())  # ~1.1 km

        assert self.tracker.find_nearby(self.center, Distance.of_meters(1000)) == []

    def test_evict_stale(self):
        """Test eviction removes both the hash and the index entry."""
        self.tracker.report("old", self.center, self.clock() - timedelta(seconds=1000))
        self.tracker.report("fresh", self.center, self.clock())

        assert self.tracker.evict_stale() == 1
        assert self.tracker.current_position("old") is None
        assert self.client.zscore(self.tracker.geo_key, "old") is None
        assert self.tracker.current_location("fresh") == self.center

    def test_forget(self):
        """Test dropping a courier."""
        self.tracker.report("c1", self.center, self.clock())

        assert self.tracker.forget("c1") is True
        assert self.tracker.forget("c1") is False
        assert self.tracker.current_position("c1") is None

    def test_keys_are_prefixed(self):
        """Test that all keys live under the configured prefix."""
        self.tracker.report("c1", self.center, self.clock())

        keys = {key.decode() for key in self.client.keys("*")}

        assert keys == {"test:courier:geo", "test:courier:pos:c1"}
