"""
DeliveryAssignmentService - Main coordinator for Module 4

Coordinates the 3-phase courier assignment:
1. Phase 1: Expanding-ring spatial search around the delivery origin
2. Phase 2: Ranking (distance, then longest wait)
3. Phase 3: Reservation, falling through to the next candidate on a lost race
"""

import logging
from typing import Callable, Optional

from src.config.constants import DeliveryStatus
from src.domain.models import Delivery
from src.domain.repositories import DeliveryPersonRepository
from src.exceptions import DeliveryAssignmentException, InvalidStateTransition
from src.modules.module2_location_tracking.tracker import LocationTracker

from .constants import AssignmentFailure
from .ranking import rank_candidates
from .reservation import CourierReservations
from .schemas import AssignmentResult, SearchPolicy
from .spatial_filter import SpatialFilter

logger = logging.getLogger(__name__)


class DeliveryAssignmentService:
    """
    Picks and reserves the best courier for a delivery.

    Workflow:
    1. Load AVAILABLE couriers of the tenant with capacity left
    2. Search rings of growing radius around the origin
    3. Rank each ring's new candidates
    4. Reserve the first candidate that is still free
    """

    def __init__(
        self,
        courier_repository: DeliveryPersonRepository,
        tracker: LocationTracker,
        reservations: CourierReservations,
        policy: Optional[SearchPolicy] = None,
    ):
        self.courier_repository = courier_repository
        self.reservations = reservations
        self.policy = policy or SearchPolicy()
        self.spatial_filter = SpatialFilter(tracker, self.policy)

    def assign(
        self,
        delivery: Delivery,
        should_abort: Optional[Callable[[], bool]] = None,
    ) -> AssignmentResult:
        """
        Assign a courier to a PENDING delivery.

        Args:
            delivery: The delivery to assign (not mutated)
            should_abort: Checked before every reservation attempt; returning
                True stops the search

        Returns:
            AssignmentResult with the committed delivery and courier

        Raises:
            DeliveryAssignmentException: No courier could be reserved
        """
        if delivery.status != DeliveryStatus.PENDING:
            raise InvalidStateTransition("Delivery", delivery.id, delivery.status, DeliveryStatus.ASSIGNED)

        logger.info(
            f"Starting assignment for delivery {delivery.id} of tenant {delivery.tenant_id}",
            extra={"event": "assignment_started", "delivery_id": delivery.id, "tenant_id": delivery.tenant_id},
        )

        # ============================================================
        # PHASE 1: ELIGIBLE COURIERS
        # ============================================================
        eligible = {
            courier.id: courier
            for courier in self.courier_repository.find_available(delivery.tenant_id)
        }
        if not eligible:
            self._fail(delivery, AssignmentFailure.NO_AVAILABLE_COURIERS, 0)

        # ============================================================
        # PHASE 2 + 3: RINGS, RANKING, RESERVATION
        # ============================================================
        tried = set()
        for radius, candidates in self.spatial_filter.rings(delivery.origin, eligible, tried):
            for candidate in rank_candidates(candidates):
                if should_abort is not None and should_abort():
                    self._fail(delivery, AssignmentFailure.ABORTED, len(tried))

                tried.add(candidate.courier_id)
                reserved = self.reservations.try_reserve(
                    candidate.courier_id, delivery, candidate.distance
                )
                if reserved is None:
                    continue

                assigned, courier = reserved
                logger.info(
                    f"Delivery {delivery.id} assigned to courier {courier.id} "
                    f"({candidate.distance} away, radius {radius}, {len(tried)} tried)",
                    extra={
                        "event": "assignment_completed",
                        "metric_type": "assignment",
                        "delivery_id": delivery.id,
                        "courier_id": courier.id,
                        "distance_m": candidate.distance.meters,
                        "candidates_tried": len(tried),
                    },
                )
                return AssignmentResult(
                    delivery=assigned,
                    courier=courier,
                    distance_to_origin=candidate.distance,
                    search_radius=radius,
                    candidates_tried=len(tried),
                )

        reason = AssignmentFailure.ALL_RESERVATIONS_LOST if tried else AssignmentFailure.NO_COURIER_IN_RANGE
        self._fail(delivery, reason, len(tried))

    def _fail(self, delivery: Delivery, reason: AssignmentFailure, tried: int) -> None:
        log = logger.info if reason == AssignmentFailure.ABORTED else logger.error
        log(
            f"Assignment failed for delivery {delivery.id}: {reason.value}",
            extra={
                "event": "assignment_failed",
                "delivery_id": delivery.id,
                "tenant_id": delivery.tenant_id,
                "reason": reason.value,
                "candidates_tried": tried,
            },
        )
        raise DeliveryAssignmentException(delivery.id, reason.value, tried)
