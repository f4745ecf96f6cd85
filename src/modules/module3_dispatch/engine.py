"""
DispatchEngine - the surface exposed to callers and Celery tasks.

Bundles the dispatch, tracking and roster services built once at startup
and keeps their lifecycles aligned (a delivery that leaves the active
statuses stops being tracked).
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from src.domain.models import Delivery, DeliveryPerson
from src.modules.module1_geospatial.registry import ServiceAreaRegistry
from src.modules.module1_geospatial.schemas import Location
from src.modules.module2_location_tracking.tracker import LocationTracker
from src.modules.module5_delivery_tracking import (
    CourierUpdateResult,
    DeliveryProgress,
    DeliveryTrackingService,
)

from .constants import (
    DEFAULT_CANCEL_REASON,
    DEFAULT_REDISPATCH_MAX_ATTEMPTS,
    DEFAULT_REDISPATCH_WINDOW_MINUTES,
)
from .dispatcher import DispatchService
from .roster import CourierRoster

logger = logging.getLogger(__name__)


class DispatchEngine:
    """
    Entry point of the dispatch system.

    Responsibilities:
    - Dispatch and cancel deliveries
    - Ingest courier location reports
    - Drive the delivery lifecycle after assignment
    - Run the periodic sweeps
    """

    def __init__(
        self,
        dispatch_service: DispatchService,
        tracking_service: DeliveryTrackingService,
        roster: CourierRoster,
        service_areas: ServiceAreaRegistry,
        tracker: LocationTracker,
        redispatch_window_minutes: int = DEFAULT_REDISPATCH_WINDOW_MINUTES,
        redispatch_max_attempts: int = DEFAULT_REDISPATCH_MAX_ATTEMPTS,
    ):
        self.dispatch_service = dispatch_service
        self.tracking_service = tracking_service
        self.roster = roster
        self.service_areas = service_areas
        self.tracker = tracker
        self.redispatch_window_minutes = redispatch_window_minutes
        self.redispatch_max_attempts = redispatch_max_attempts

        logger.info("DispatchEngine initialized")

    # ========================================================================
    # DISPATCH
    # ========================================================================

    def create_delivery(
        self,
        tenant_id: str,
        origin: Location,
        destination: Location,
        order_id: Optional[str] = None,
    ) -> Delivery:
        return self.dispatch_service.create_delivery(tenant_id, origin, destination, order_id)

    def dispatch(self, delivery_id: str, tenant_id: str) -> Delivery:
        """
        Assign a courier and plan the route of a PENDING delivery.

        Raises:
            OutsideServiceAreaException: Origin not covered by the tenant
            DeliveryAssignmentException: No courier could be reserved
        """
        return self.dispatch_service.dispatch(delivery_id, tenant_id)

    def cancel_dispatch(
        self, delivery_id: str, tenant_id: str, reason: str = DEFAULT_CANCEL_REASON
    ) -> Delivery:
        delivery = self.dispatch_service.cancel_dispatch(delivery_id, tenant_id, reason)
        self.tracking_service.stop_tracking(delivery_id)
        return delivery

    def get_delivery(self, delivery_id: str, tenant_id: str) -> Delivery:
        return self.dispatch_service.get_delivery(delivery_id, tenant_id)

    # ========================================================================
    # LOCATIONS
    # ========================================================================

    def report_courier_location(
        self,
        courier_id: str,
        location: Location,
        timestamp: Optional[datetime] = None,
        accuracy_m: Optional[float] = None,
        speed_mps: Optional[float] = None,
    ) -> CourierUpdateResult:
        return self.tracking_service.record_courier_update(
            courier_id, location, timestamp, accuracy_m, speed_mps
        )

    def get_courier_location(self, courier_id: str) -> Optional[Location]:
        return self.tracker.current_location(courier_id)

    def tracking_snapshot(self, delivery_id: str, tenant_id: str) -> DeliveryProgress:
        return self.tracking_service.tracking_snapshot(delivery_id, tenant_id)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def confirm_pickup(self, delivery_id: str, tenant_id: str) -> Delivery:
        return self.dispatch_service.confirm_pickup(delivery_id, tenant_id)

    def complete_delivery(self, delivery_id: str, tenant_id: str) -> Delivery:
        delivery = self.dispatch_service.complete_delivery(delivery_id, tenant_id)
        self.tracking_service.stop_tracking(delivery_id)
        return delivery

    def fail_delivery(self, delivery_id: str, tenant_id: str, reason: str) -> Delivery:
        delivery = self.dispatch_service.fail_delivery(delivery_id, tenant_id, reason)
        self.tracking_service.stop_tracking(delivery_id)
        return delivery

    # ========================================================================
    # COURIERS
    # ========================================================================

    def register_courier(self, tenant_id: str, name: str, capacity: int = 1) -> DeliveryPerson:
        return self.roster.register(tenant_id, name, capacity)

    def courier_online(self, courier_id: str, tenant_id: str) -> DeliveryPerson:
        return self.roster.go_online(courier_id, tenant_id)

    def courier_offline(self, courier_id: str, tenant_id: str) -> DeliveryPerson:
        return self.roster.go_offline(courier_id, tenant_id)

    # ========================================================================
    # SWEEPS
    # ========================================================================

    def evict_stale_positions(self) -> int:
        return self.tracker.evict_stale()

    def redispatch_failed(self) -> Dict[str, int]:
        return self.dispatch_service.redispatch_failed(
            window_minutes=self.redispatch_window_minutes,
            max_attempts=self.redispatch_max_attempts,
        )

    def retry_pending_compensations(self) -> int:
        return self.dispatch_service.retry_pending_compensations()

    def shutdown(self) -> None:
        self.dispatch_service.shutdown()
