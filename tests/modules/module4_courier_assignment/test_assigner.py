"""Tests for DeliveryAssignmentService (Module 4)."""

import pytest

from src.config.constants import CourierStatus, DeliveryStatus
from src.domain.models import Delivery, DeliveryPerson
from src.domain.repositories import build_in_memory_persistence
from src.exceptions import DeliveryAssignmentException, InvalidStateTransition
from src.modules.module1_geospatial.schemas import Location
from src.modules.module2_location_tracking import InMemoryLocationTracker
from src.modules.module4_courier_assignment import (
    CourierReservations,
    DeliveryAssignmentService,
    SearchPolicy,
)
from src.modules.module4_courier_assignment.constants import AssignmentFailure

from helpers import OTHER_TENANT, TENANT, ManualClock

ORIGIN = Location.of(48.8566, 2.3522)


def at_km_north(km: float) -> Location:
    return Location.of(ORIGIN.latitude + km / 111.195, ORIGIN.longitude)


class TestDeliveryAssignmentService:
    """Test suite for the assignment workflow."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = ManualClock()
        self.deliveries, self.couriers, self.unit_of_work = build_in_memory_persistence()
        self.tracker = InMemoryLocationTracker(clock=self.clock)
        self.reservations = CourierReservations(
            self.couriers, self.deliveries, self.unit_of_work, clock=self.clock
        )
        self.service = DeliveryAssignmentService(
            self.couriers,
            self.tracker,
            self.reservations,
            SearchPolicy(initial_radius_m=1000, growth_factor=2, max_radius_m=8000),
        )

    def add_courier(self, courier_id, km, tenant_id=TENANT, online=True):
        courier = DeliveryPerson(id=courier_id, tenant_id=tenant_id, name=courier_id)
        if online:
            courier.go_online(self.clock())
        self.couriers.save(courier)
        self.tracker.report(courier_id, at_km_north(km), self.clock())

    def new_delivery(self, tenant_id=TENANT):
        return self.deliveries.save(Delivery.create(tenant_id, ORIGIN, at_km_north(3), now=self.clock()))

    def test_closest_courier_wins(self):
        """Test that the nearest available courier is assigned."""
        self.add_courier("far", 0.9)
        self.add_courier("near", 0.3)

        result = self.service.assign(self.new_delivery())

        assert result.courier.id == "near"
        assert result.delivery.courier_id == "near"
        assert result.search_radius.meters == 1000
        assert result.candidates_tried == 1

    def test_ring_expands_until_found(self):
        """Test that the search widens when the first ring is empty."""
        self.add_courier("c1", 5)

        result = self.service.assign(self.new_delivery())

        assert result.courier.id == "c1"
        assert result.search_radius.meters == 8000

    def test_longest_waiting_wins_tie(self):
        """Test the availability tie-breaker through the whole workflow."""
        self.add_courier("early", 0.5)
        self.clock.advance(minutes=5)
        self.add_courier("late", 0.5)

        result = self.service.assign(self.new_delivery())

        assert result.courier.id == "early"

    def test_no_available_couriers(self):
        """Test failure when the tenant has no available courier."""
        self.add_courier("offline", 0.2, online=False)

        with pytest.raises(DeliveryAssignmentException) as exc_info:
            self.service.assign(self.new_delivery())

        assert exc_info.value.reason == AssignmentFailure.NO_AVAILABLE_COURIERS.value
        assert exc_info.value.candidates_tried == 0

    def test_no_courier_in_range(self):
        """Test failure when every courier is beyond the cap."""
        self.add_courier("remote", 20)

        with pytest.raises(DeliveryAssignmentException) as exc_info:
            self.service.assign(self.new_delivery())

        assert exc_info.value.reason == AssignmentFailure.NO_COURIER_IN_RANGE.value

    def test_tenant_isolation(self):
        """Test that another tenant's courier is never assigned."""
        self.add_courier("foreign", 0.1, tenant_id=OTHER_TENANT)
        self.add_courier("own", 2.5)

        result = self.service.assign(self.new_delivery())

        assert result.courier.id == "own"
        assert self.couriers.find_by_id("foreign").status == CourierStatus.AVAILABLE

    def test_falls_through_lost_reservation(self):
        """Test that a courier taken meanwhile is skipped."""
        self.add_courier("near", 0.2)
        self.add_courier("next", 0.4)
        # Taken between eligibility loading and reservation
        original = self.couriers.find_available

        def find_available_then_steal(tenant_id):
            found = original(tenant_id)
            self.reservations.try_reserve("near", self.new_delivery())
            return found

        self.couriers.find_available = find_available_then_steal

        result = self.service.assign(self.new_delivery())

        assert result.courier.id == "next"
        assert result.candidates_tried == 2

    def test_all_reservations_lost(self):
        """Test failure when every candidate was taken."""
        self.add_courier("only", 0.2)
        original = self.couriers.find_available

        def find_available_then_steal(tenant_id):
            found = original(tenant_id)
            self.reservations.try_reserve("only", self.new_delivery())
            return found

        self.couriers.find_available = find_available_then_steal

        with pytest.raises(DeliveryAssignmentException) as exc_info:
            self.service.assign(self.new_delivery())

        assert exc_info.value.reason == AssignmentFailure.ALL_RESERVATIONS_LOST.value
        assert exc_info.value.candidates_tried == 1

    def test_abort_stops_search(self):
        """Test the cancellation hook."""
        self.add_courier("c1", 0.2)

        with pytest.raises(DeliveryAssignmentException) as exc_info:
            self.service.assign(self.new_delivery(), should_abort=lambda: True)

        assert exc_info.value.reason == AssignmentFailure.ABORTED.value
        assert self.couriers.find_by_id("c1").status == CourierStatus.AVAILABLE

    def test_requires_pending_delivery(self):
        """Test that only PENDING deliveries can be assigned."""
        self.add_courier("c1", 0.2)
        delivery = self.new_delivery()
        self.service.assign(delivery)

        with pytest.raises(InvalidStateTransition):
            self.service.assign(self.deliveries.find_by_id(delivery.id))

    def test_delivery_persisted_assigned(self):
        """Test the stored delivery after assignment."""
        self.add_courier("c1", 0.2)
        delivery = self.new_delivery()

        self.service.assign(delivery)

        stored = self.deliveries.find_by_id(delivery.id)
        assert stored.status == DeliveryStatus.ASSIGNED
        assert stored.status_timestamps[DeliveryStatus.ASSIGNED] == self.clock()
