"""Tests for the expanding-ring spatial filter (Module 4)."""

from datetime import timedelta

import pytest

from src.domain.models import DeliveryPerson
from src.modules.module1_geospatial.schemas import Location
from src.modules.module2_location_tracking import InMemoryLocationTracker
from src.modules.module4_courier_assignment import SearchPolicy
from src.modules.module4_courier_assignment.spatial_filter import SpatialFilter

from helpers import START, TENANT, ManualClock

ORIGIN = Location.of(48.8566, 2.3522)


def at_km_north(km: float) -> Location:
    return Location.of(ORIGIN.latitude + km / 111.195, ORIGIN.longitude)


class TestSpatialFilter:
    """Test suite for SpatialFilter.rings."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = ManualClock()
        self.tracker = InMemoryLocationTracker(clock=self.clock)
        self.policy = SearchPolicy(initial_radius_m=1000, growth_factor=2, max_radius_m=4000)
        self.spatial_filter = SpatialFilter(self.tracker, self.policy)
        self.eligible = {}

    def add(self, courier_id: str, km: float, reported_at=None):
        self.eligible[courier_id] = DeliveryPerson(
            id=courier_id, tenant_id=TENANT, name=courier_id, available_since=START
        )
        self.tracker.report(courier_id, at_km_north(km), reported_at or self.clock())

    def test_rings_yield_only_new_candidates(self):
        """Test that wider rings do not repeat closer candidates."""
        self.add("near", 0.5)
        self.add("mid", 1.5)
        self.add("far", 3.5)

        rings = list(self.spatial_filter.rings(ORIGIN, self.eligible, set()))

        assert [r.meters for r, _ in rings] == [1000, 2000, 4000]
        assert [[c.courier_id for c in found] for _, found in rings] == [["near"], ["mid"], ["far"]]

    def test_empty_rings_skipped(self):
        """Test that rings adding nobody are not yielded."""
        self.add("far", 3.5)

        rings = list(self.spatial_filter.rings(ORIGIN, self.eligible, set()))

        assert len(rings) == 1
        assert rings[0][0].meters == 4000

    def test_excluded_couriers_skipped(self):
        """Test the exclude set."""
        self.add("a", 0.5)
        self.add("b", 0.6)

        rings = list(self.spatial_filter.rings(ORIGIN, self.eligible, {"a"}))

        assert [c.courier_id for c in rings[0][1]] == ["b"]

    def test_ineligible_couriers_ignored(self):
        """Test that tracked but ineligible couriers never surface."""
        self.tracker.report("busy", at_km_north(0.2), self.clock())

        assert list(self.spatial_filter.rings(ORIGIN, self.eligible, set())) == []

    def test_beyond_cap_ignored(self):
        """Test that couriers past the max radius are not candidates."""
        self.add("too_far", 5)

        assert list(self.spatial_filter.rings(ORIGIN, self.eligible, set())) == []

    def test_stale_courier_ignored(self):
        """Test that stale positions are excluded."""
        self.add("stale", 0.5, reported_at=self.clock() - timedelta(minutes=10))

        assert list(self.spatial_filter.rings(ORIGIN, self.eligible, set())) == []

    def test_candidate_carries_availability(self):
        """Test candidate fields."""
        self.add("a", 0.5)

        _, candidates = next(self.spatial_filter.rings(ORIGIN, self.eligible, set()))

        assert candidates[0].available_since == START
        assert candidates[0].distance.meters == pytest.approx(500, rel=0.01)
