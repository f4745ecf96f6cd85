"""
DeliveryTrackingService - follows deliveries through courier location updates.

Every accepted location report refreshes the progress of the courier's
active deliveries, infers PICKED_UP → IN_TRANSIT on the first movement
away from the pickup point and looks for anomalies (off route, stalled).
Anomalies are advisory: they emit events but never block the delivery,
and a failure while detecting them is logged and contained.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from src.config.constants import DeliveryStatus
from src.domain.events import CourierOffRouteEvent, CourierStalledEvent, DomainEventPublisher
from src.domain.models import Delivery
from src.domain.repositories import DeliveryRepository
from src.exceptions import ConcurrencyConflict, DeliveryNotFoundException
from src.modules.module1_geospatial.schemas import Distance, Location
from src.modules.module2_location_tracking.tracker import LocationTracker
from src.utils.clock import Clock, ensure_utc, utc_now
from src.utils.locks import KeyedLocks

from .schemas import CourierUpdateResult, DeliveryProgress, TrackingPolicy

logger = logging.getLogger(__name__)

# Anomalies are only meaningful while the courier carries the parcel
_CARRYING = (DeliveryStatus.PICKED_UP, DeliveryStatus.IN_TRANSIT)


@dataclass
class _AnomalyWindow:
    """Per-delivery detection state."""

    off_route_since: Optional[datetime] = None
    off_route_flagged: bool = False
    anchor: Optional[Location] = None
    anchor_at: Optional[datetime] = None
    stall_flagged: bool = False


class DeliveryTrackingService:
    """Consumes courier location updates on behalf of active deliveries."""

    def __init__(
        self,
        tracker: LocationTracker,
        delivery_repository: DeliveryRepository,
        event_publisher: DomainEventPublisher,
        policy: Optional[TrackingPolicy] = None,
        clock: Clock = utc_now,
    ):
        self.tracker = tracker
        self.delivery_repository = delivery_repository
        self.event_publisher = event_publisher
        self.policy = policy or TrackingPolicy()
        self.clock = clock
        self._windows: Dict[str, _AnomalyWindow] = {}
        self._locks = KeyedLocks()

    def record_courier_update(
        self,
        courier_id: str,
        location: Location,
        timestamp: Optional[datetime] = None,
        accuracy_m: Optional[float] = None,
        speed_mps: Optional[float] = None,
    ) -> CourierUpdateResult:
        """
        Forward a location report to the tracker and update active deliveries.

        Args:
            courier_id: Reporting courier
            location: Reported position
            timestamp: Device time of the fix (defaults to now)
            accuracy_m: Optional horizontal accuracy
            speed_mps: Optional ground speed

        Returns:
            CourierUpdateResult; ``applied`` is False for out-of-order reports,
            in which case no delivery is touched
        """
        moment = ensure_utc(timestamp) if timestamp is not None else self.clock()
        applied = self.tracker.report(courier_id, location, moment, accuracy_m, speed_mps)
        if not applied:
            return CourierUpdateResult(courier_id=courier_id, applied=False)

        updates = [
            self._track(delivery, courier_id, location, moment)
            for delivery in self.delivery_repository.find_active_by_courier(courier_id)
        ]
        return CourierUpdateResult(courier_id=courier_id, applied=True, deliveries=updates)

    def tracking_snapshot(self, delivery_id: str, tenant_id: str) -> DeliveryProgress:
        """Current progress of a delivery from the courier's latest known position."""
        delivery = self.delivery_repository.find_by_id(delivery_id)
        if delivery is None or delivery.tenant_id != tenant_id:
            raise DeliveryNotFoundException(delivery_id)

        location = None
        if delivery.courier_id is not None:
            location = self.tracker.current_location(delivery.courier_id)

        window = self._windows.get(delivery_id)
        return self._progress(
            delivery,
            location,
            self.clock(),
            off_route=bool(window and window.off_route_flagged),
            stalled=bool(window and window.stall_flagged),
        )

    def stop_tracking(self, delivery_id: str) -> None:
        """Forget anomaly state once a delivery leaves the active statuses."""
        with self._locks.hold(delivery_id):
            self._windows.pop(delivery_id, None)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _track(
        self, delivery: Delivery, courier_id: str, location: Location, moment: datetime
    ) -> DeliveryProgress:
        with self._locks.hold(delivery.id):
            if (
                delivery.status == DeliveryStatus.PICKED_UP
                and delivery.origin.distance_to(location).meters > self.policy.movement_threshold_m
            ):
                self._start_transit(delivery, moment)

            off_route, stalled = False, False
            try:
                off_route, stalled = self._detect_anomalies(delivery, courier_id, location, moment)
            except Exception as e:
                logger.warning(
                    f"Anomaly detection failed for delivery {delivery.id}: {e}",
                    exc_info=True,
                    extra={"event": "anomaly_detection_failed", "delivery_id": delivery.id},
                )

            return self._progress(delivery, location, moment, off_route, stalled)

    def _start_transit(self, delivery: Delivery, moment: datetime) -> None:
        try:
            delivery.mark_in_transit(moment)
            self.delivery_repository.save(delivery)
        except ConcurrencyConflict:
            # Someone else moved the delivery on (completed, failed); keep their state
            logger.info(
                f"Delivery {delivery.id} changed concurrently, transit inference skipped",
                extra={"event": "transit_inference_skipped", "delivery_id": delivery.id},
            )
            delivery.pull_events()
            return
        self.event_publisher.publish_all(delivery.pull_events())
        logger.info(
            f"Delivery {delivery.id} is in transit",
            extra={"event": "delivery_in_transit", "delivery_id": delivery.id},
        )

    def _detect_anomalies(
        self, delivery: Delivery, courier_id: str, location: Location, moment: datetime
    ) -> Tuple[bool, bool]:
        if delivery.status not in _CARRYING:
            return False, False

        window = self._windows.setdefault(delivery.id, _AnomalyWindow())
        return (
            self._check_off_route(window, delivery, courier_id, location, moment),
            self._check_stalled(window, delivery, courier_id, location, moment),
        )

    def _check_off_route(
        self,
        window: _AnomalyWindow,
        delivery: Delivery,
        courier_id: str,
        location: Location,
        moment: datetime,
    ) -> bool:
        if delivery.route is None:
            return False

        deviation = delivery.route.deviation_of(location)
        if deviation.meters <= self.policy.off_route_threshold_m:
            window.off_route_since = None
            window.off_route_flagged = False
            return False

        if window.off_route_since is None:
            window.off_route_since = moment
        elapsed = (moment - window.off_route_since).total_seconds()
        if elapsed < self.policy.off_route_grace_seconds:
            return False

        if not window.off_route_flagged:
            window.off_route_flagged = True
            self.event_publisher.publish(CourierOffRouteEvent(
                tenant_id=delivery.tenant_id,
                delivery_id=delivery.id,
                courier_id=courier_id,
                deviation_m=deviation.meters,
                off_route_seconds=elapsed,
                latitude=location.latitude,
                longitude=location.longitude,
                occurred_at=moment,
            ))
            logger.warning(
                f"Courier {courier_id} off route for delivery {delivery.id}: "
                f"{deviation} away for {elapsed:.0f}s",
                extra={"event": "courier_off_route", "delivery_id": delivery.id, "courier_id": courier_id},
            )
        return True

    def _check_stalled(
        self,
        window: _AnomalyWindow,
        delivery: Delivery,
        courier_id: str,
        location: Location,
        moment: datetime,
    ) -> bool:
        if (
            window.anchor is None
            or window.anchor.distance_to(location).meters > self.policy.movement_threshold_m
        ):
            window.anchor = location
            window.anchor_at = moment
            window.stall_flagged = False
            return False

        stalled_for = (moment - window.anchor_at).total_seconds()
        if stalled_for < self.policy.stall_threshold_seconds:
            return False

        if not window.stall_flagged:
            window.stall_flagged = True
            self.event_publisher.publish(CourierStalledEvent(
                tenant_id=delivery.tenant_id,
                delivery_id=delivery.id,
                courier_id=courier_id,
                stalled_seconds=stalled_for,
                latitude=location.latitude,
                longitude=location.longitude,
                occurred_at=moment,
            ))
            logger.warning(
                f"Courier {courier_id} stalled for {stalled_for:.0f}s on delivery {delivery.id}",
                extra={"event": "courier_stalled", "delivery_id": delivery.id, "courier_id": courier_id},
            )
        return True

    def _progress(
        self,
        delivery: Delivery,
        location: Optional[Location],
        moment: datetime,
        off_route: bool = False,
        stalled: bool = False,
    ) -> DeliveryProgress:
        remaining = None
        progress = 1.0 if delivery.status == DeliveryStatus.DELIVERED else 0.0
        eta = None

        if location is not None and delivery.status.is_active:
            remaining = self.remaining_distance(delivery, location)
            total = delivery.planned_distance
            if delivery.status == DeliveryStatus.ASSIGNED:
                # Still heading to pickup: nothing of the trip is done yet
                progress = 0.0
            elif total.meters > 0:
                progress = max(0.0, min(1.0, 1.0 - remaining.meters / total.meters))
            else:
                progress = 1.0
            eta = moment + timedelta(hours=remaining.kilometers / self.policy.average_speed_kmh)

        return DeliveryProgress(
            delivery_id=delivery.id,
            status=delivery.status,
            courier_id=delivery.courier_id,
            courier_location=location,
            remaining_distance=remaining,
            progress=progress,
            estimated_arrival=eta,
            is_overdue=delivery.is_overdue(moment),
            off_route=off_route,
            stalled=stalled,
            recorded_at=moment,
        )

    @staticmethod
    def remaining_distance(delivery: Delivery, location: Location) -> Distance:
        """Distance left for the courier at ``location`` to finish the delivery."""
        if delivery.status == DeliveryStatus.ASSIGNED:
            return location.distance_to(delivery.origin) + delivery.direct_distance
        return location.distance_to(delivery.destination)

    @property
    def tracked_deliveries(self) -> List[str]:
        return list(self._windows)
