"""
DispatchService - delivery lifecycle coordinator.

Coordinates the dispatch of a delivery:
1. Phase 1: Service area check on the origin
2. Phase 2: Courier assignment (reservation committed with the delivery)
3. Phase 3: Route optimization with a timeout and a direct-line fallback
4. Phase 4: Persistence and event publication

and the rest of the lifecycle (pickup, completion, failure, cancellation,
re-dispatch of deliveries that found no courier).
"""

import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from src.config.constants import (
    ACTIVE_DELIVERY_STATUSES,
    AVERAGE_CITY_SPEED_KMH,
    DeliveryStatus,
    FailureReason,
)
from src.domain.events import DomainEventPublisher, RouteOptimizationDegradedEvent
from src.domain.models import Delivery
from src.domain.repositories import DeliveryPersonRepository, DeliveryRepository, UnitOfWork
from src.exceptions import (
    CourierNotFoundException,
    DeliveryAssignmentException,
    DeliveryNotFoundException,
    DispatchError,
    InvalidStateTransition,
    OutsideServiceAreaException,
    RouteOptimizationDegraded,
)
from src.modules.module1_geospatial.registry import ServiceAreaRegistry
from src.modules.module1_geospatial.route import DirectLineRouteOptimizer, Route, RouteOptimizer
from src.modules.module1_geospatial.schemas import Location
from src.modules.module4_courier_assignment.assigner import DeliveryAssignmentService
from src.modules.module4_courier_assignment.constants import AssignmentFailure
from src.modules.module4_courier_assignment.reservation import CourierReservations
from src.utils.clock import Clock, utc_now
from src.utils.locks import KeyedLocks

from .constants import (
    DEFAULT_CANCEL_REASON,
    DEFAULT_COMPENSATION_ATTEMPTS,
    DEFAULT_COMPENSATION_BACKOFF_SECONDS,
    DEFAULT_REDISPATCH_MAX_ATTEMPTS,
    DEFAULT_REDISPATCH_WINDOW_MINUTES,
    DEFAULT_ROUTE_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


class DispatchService:
    """
    Drives deliveries through PENDING → ASSIGNED → PICKED_UP → IN_TRANSIT → DELIVERED.

    FAILED is reachable from every non-terminal state, CANCELLED from
    PENDING and ASSIGNED. Work on one delivery is serialized by a
    per-delivery lock; courier exclusivity is handled by the reservation
    step.
    """

    def __init__(
        self,
        delivery_repository: DeliveryRepository,
        courier_repository: DeliveryPersonRepository,
        unit_of_work: UnitOfWork,
        service_areas: ServiceAreaRegistry,
        assignment_service: DeliveryAssignmentService,
        reservations: CourierReservations,
        route_optimizer: RouteOptimizer,
        event_publisher: DomainEventPublisher,
        route_timeout_seconds: float = DEFAULT_ROUTE_TIMEOUT_SECONDS,
        average_speed_kmh: float = AVERAGE_CITY_SPEED_KMH,
        compensation_max_attempts: int = DEFAULT_COMPENSATION_ATTEMPTS,
        compensation_backoff_seconds: float = DEFAULT_COMPENSATION_BACKOFF_SECONDS,
        executor: Optional[Executor] = None,
        clock: Clock = utc_now,
    ):
        """
        Initialize the dispatch service with its collaborators.

        Args:
            delivery_repository: Delivery persistence port
            courier_repository: Courier persistence port
            unit_of_work: Atomic multi-entity commit
            service_areas: Tenant coverage lookups
            assignment_service: Courier matching (Module 4)
            reservations: Courier reserve/release (Module 4)
            route_optimizer: Routing engine port
            event_publisher: Event bus port
            route_timeout_seconds: Budget for one optimizer call
            average_speed_kmh: Speed used by the fallback route estimate
            compensation_max_attempts: Inline attempts to release a courier
            compensation_backoff_seconds: Linear backoff step between attempts
            executor: Pool running optimizer calls (created if omitted)
        """
        self.delivery_repository = delivery_repository
        self.courier_repository = courier_repository
        self.unit_of_work = unit_of_work
        self.service_areas = service_areas
        self.assignment_service = assignment_service
        self.reservations = reservations
        self.route_optimizer = route_optimizer
        self.event_publisher = event_publisher
        self.route_timeout_seconds = route_timeout_seconds
        self.fallback_optimizer = DirectLineRouteOptimizer(average_speed_kmh, degraded=True)
        self.compensation_max_attempts = compensation_max_attempts
        self.compensation_backoff_seconds = compensation_backoff_seconds
        self.clock = clock

        self._executor = executor if executor is not None else ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="route-optimizer"
        )
        self._delivery_locks = KeyedLocks()
        self._cancellations: Dict[str, threading.Event] = {}
        self._pending_compensations: Dict[Tuple[str, str], int] = {}
        self._compensation_lock = threading.Lock()

        logger.info("DispatchService initialized")

    # ========================================================================
    # INTAKE
    # ========================================================================

    def create_delivery(
        self,
        tenant_id: str,
        origin: Location,
        destination: Location,
        order_id: Optional[str] = None,
    ) -> Delivery:
        """Register a new PENDING delivery."""
        delivery = Delivery.create(tenant_id, origin, destination, order_id=order_id, now=self.clock())
        self.delivery_repository.save(delivery)
        logger.info(
            f"Delivery {delivery.id} created for tenant {tenant_id}",
            extra={"event": "delivery_created", "delivery_id": delivery.id, "tenant_id": tenant_id},
        )
        return delivery

    def get_delivery(self, delivery_id: str, tenant_id: str) -> Delivery:
        return self._load(delivery_id, tenant_id)

    # ========================================================================
    # DISPATCH
    # ========================================================================

    def dispatch(self, delivery_id: str, tenant_id: str) -> Delivery:
        """
        Assign a courier and a route to a PENDING delivery.

        Args:
            delivery_id: Delivery to dispatch
            tenant_id: Tenant owning the delivery

        Returns:
            The ASSIGNED delivery (or CANCELLED if a cancellation won the race)

        Raises:
            DeliveryNotFoundException: Unknown delivery for this tenant
            OutsideServiceAreaException: Origin not covered; delivery stays PENDING
            DeliveryAssignmentException: No courier; delivery is now FAILED
        """
        start_time = time.monotonic()

        with self._delivery_locks.hold(delivery_id):
            delivery = self._load(delivery_id, tenant_id)

            if self._cancel_requested(delivery_id) and delivery.status == DeliveryStatus.PENDING:
                return self._cancel_locked(delivery, DEFAULT_CANCEL_REASON)
            if delivery.status != DeliveryStatus.PENDING:
                raise InvalidStateTransition("Delivery", delivery_id, delivery.status, DeliveryStatus.ASSIGNED)

            logger.info(
                f"Dispatching delivery {delivery_id} for tenant {tenant_id}",
                extra={"event": "dispatch_started", "delivery_id": delivery_id, "tenant_id": tenant_id},
            )

            # ============================================================
            # PHASE 1: SERVICE AREA
            # ============================================================
            if not self.service_areas.is_covered(tenant_id, delivery.origin):
                logger.warning(
                    f"Delivery {delivery_id} origin {delivery.origin} is outside "
                    f"the service areas of tenant {tenant_id}",
                    extra={"event": "dispatch_outside_service_area", "delivery_id": delivery_id, "tenant_id": tenant_id},
                )
                raise OutsideServiceAreaException(tenant_id, delivery_id)

            # ============================================================
            # PHASE 2: ASSIGNMENT
            # ============================================================
            try:
                result = self.assignment_service.assign(
                    delivery, should_abort=lambda: self._cancel_requested(delivery_id)
                )
            except DeliveryAssignmentException as exc:
                if exc.reason == AssignmentFailure.ABORTED.value:
                    return self._cancel_locked(delivery, DEFAULT_CANCEL_REASON)
                delivery.mark_failed(str(exc), FailureReason.NO_COURIER_AVAILABLE, self.clock())
                self.delivery_repository.save(delivery)
                self._publish(delivery)
                raise

            delivery, courier = result.delivery, result.courier
            self._publish(courier)

            if self._cancel_requested(delivery_id):
                # Cancelled while the reservation was being committed
                return self._cancel_locked(delivery, DEFAULT_CANCEL_REASON)

            # ============================================================
            # PHASE 3: ROUTE
            # ============================================================
            route = self._plan_route(delivery)
            delivery.attach_route(route, self.clock())

            # ============================================================
            # PHASE 4: PERSIST + EVENTS
            # ============================================================
            self.delivery_repository.save(delivery)
            self._publish(delivery)

        processing_time_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            f"Delivery {delivery_id} dispatched to courier {delivery.courier_id} "
            f"in {processing_time_ms}ms",
            extra={
                "event": "dispatch_completed",
                "metric_type": "dispatch",
                "delivery_id": delivery_id,
                "courier_id": delivery.courier_id,
                "degraded_route": delivery.degraded_route,
                "duration_ms": processing_time_ms,
            },
        )
        return delivery

    def _plan_route(self, delivery: Delivery) -> Route:
        """
        Route the delivery with the optimizer, or the direct line on failure.

        The optimizer call gets ``route_timeout_seconds``. A call that times
        out keeps running in its pool thread until the optimizer returns;
        ``future.cancel()`` only stops a call still queued behind busy
        threads. A hung optimizer therefore occupies one pool thread per
        timed-out call, and later calls wait in the queue and degrade.
        """
        future = self._executor.submit(
            self.route_optimizer.optimize, delivery.origin, delivery.destination, ()
        )
        try:
            return future.result(timeout=self.route_timeout_seconds)
        except FuturesTimeoutError:
            future.cancel()
            reason = f"optimizer timed out after {self.route_timeout_seconds}s"
        except RouteOptimizationDegraded as e:
            reason = f"optimizer degraded: {e}"
        except Exception as e:
            reason = f"optimizer failed: {e}"

        route = self.fallback_optimizer.optimize(delivery.origin, delivery.destination)
        logger.warning(
            f"Route optimization degraded for delivery {delivery.id}: {reason}",
            extra={
                "event": "route_optimization_degraded",
                "degraded_mode": True,
                "delivery_id": delivery.id,
                "reason": reason,
            },
        )
        delivery.events.record(RouteOptimizationDegradedEvent(
            tenant_id=delivery.tenant_id,
            delivery_id=delivery.id,
            reason=reason,
            fallback_distance_m=route.total_distance.meters,
            occurred_at=self.clock(),
        ))
        return route

    # ========================================================================
    # CANCELLATION
    # ========================================================================

    def cancel_dispatch(
        self, delivery_id: str, tenant_id: str, reason: str = DEFAULT_CANCEL_REASON
    ) -> Delivery:
        """
        Cancel a delivery that is PENDING, being dispatched, or ASSIGNED.

        An in-flight dispatch is signalled to stop before reserving; if a
        courier was already reserved it is released as a compensating
        action, retried until confirmed.

        Returns:
            The CANCELLED delivery
        """
        # Validate ownership before signalling anything
        self._load(delivery_id, tenant_id)

        flag = self._cancellations.setdefault(delivery_id, threading.Event())
        flag.set()
        try:
            with self._delivery_locks.hold(delivery_id):
                delivery = self._load(delivery_id, tenant_id)
                if delivery.status == DeliveryStatus.CANCELLED:
                    return delivery
                return self._cancel_locked(delivery, reason)
        finally:
            self._cancellations.pop(delivery_id, None)

    def _cancel_requested(self, delivery_id: str) -> bool:
        flag = self._cancellations.get(delivery_id)
        return flag is not None and flag.is_set()

    def _cancel_locked(self, delivery: Delivery, reason: str) -> Delivery:
        courier_id = delivery.cancel(reason, self.clock())
        self.delivery_repository.save(delivery)
        self._publish(delivery)
        logger.info(
            f"Delivery {delivery.id} cancelled: {reason}",
            extra={"event": "delivery_cancelled", "delivery_id": delivery.id, "courier_id": courier_id},
        )
        if courier_id is not None:
            self._compensate(courier_id, delivery.id)
        return delivery

    def _compensate(self, courier_id: str, delivery_id: str) -> bool:
        """Release a courier, retrying; unconfirmed releases are queued for the sweep."""
        for attempt in range(1, self.compensation_max_attempts + 1):
            try:
                courier = self.reservations.release(courier_id, delivery_id)
            except CourierNotFoundException:
                logger.error(
                    f"Courier {courier_id} vanished before release of delivery {delivery_id}",
                    extra={"event": "compensation_courier_missing", "courier_id": courier_id},
                )
                return True
            except Exception as e:
                logger.warning(
                    f"Release of courier {courier_id} failed (attempt {attempt}): {e}",
                    extra={"event": "compensation_retry", "courier_id": courier_id, "delivery_id": delivery_id},
                )
                time.sleep(self.compensation_backoff_seconds * attempt)
                continue

            self._publish(courier)
            return True

        with self._compensation_lock:
            self._pending_compensations[(courier_id, delivery_id)] = self.compensation_max_attempts
        logger.error(
            f"Release of courier {courier_id} unconfirmed after "
            f"{self.compensation_max_attempts} attempts, queued for retry",
            extra={"event": "compensation_queued", "courier_id": courier_id, "delivery_id": delivery_id},
        )
        return False

    def retry_pending_compensations(self) -> int:
        """
        Retry queued courier releases once each.

        Returns:
            Number of releases confirmed by this pass
        """
        with self._compensation_lock:
            pending = list(self._pending_compensations)

        confirmed = 0
        for courier_id, delivery_id in pending:
            try:
                courier = self.reservations.release(courier_id, delivery_id)
            except CourierNotFoundException:
                courier = None
            except Exception as e:
                with self._compensation_lock:
                    self._pending_compensations[(courier_id, delivery_id)] += 1
                logger.warning(
                    f"Queued release of courier {courier_id} failed again: {e}",
                    extra={"event": "compensation_retry", "courier_id": courier_id, "delivery_id": delivery_id},
                )
                continue

            with self._compensation_lock:
                self._pending_compensations.pop((courier_id, delivery_id), None)
            if courier is not None:
                self._publish(courier)
            confirmed += 1
        return confirmed

    @property
    def pending_compensations(self) -> List[Tuple[str, str]]:
        with self._compensation_lock:
            return list(self._pending_compensations)

    # ========================================================================
    # LIFECYCLE AFTER ASSIGNMENT
    # ========================================================================

    def confirm_pickup(self, delivery_id: str, tenant_id: str) -> Delivery:
        """ASSIGNED → PICKED_UP; the courier goes EN_ROUTE."""
        with self._delivery_locks.hold(delivery_id):
            delivery = self._load(delivery_id, tenant_id)
            now = self.clock()
            delivery.mark_picked_up(now)
            with self.reservations.locks.hold(delivery.courier_id):
                courier = self._courier(delivery.courier_id)
                courier.start_route(now)
                self.unit_of_work.commit(deliveries=[delivery], couriers=[courier])
            self._publish(delivery, courier)
        return delivery

    def complete_delivery(self, delivery_id: str, tenant_id: str) -> Delivery:
        """IN_TRANSIT → DELIVERED; the courier slot is freed in the same commit."""
        with self._delivery_locks.hold(delivery_id):
            delivery = self._load(delivery_id, tenant_id)
            now = self.clock()
            delivery.mark_delivered(now)
            self._commit_with_release(delivery, now)
        logger.info(
            f"Delivery {delivery_id} delivered by courier {delivery.courier_id}",
            extra={"event": "delivery_completed", "delivery_id": delivery_id, "courier_id": delivery.courier_id},
        )
        return delivery

    def fail_delivery(self, delivery_id: str, tenant_id: str, reason: str) -> Delivery:
        """Any non-terminal state → FAILED, releasing the courier if one was reserved."""
        with self._delivery_locks.hold(delivery_id):
            delivery = self._load(delivery_id, tenant_id)
            now = self.clock()
            delivery.mark_failed(reason, FailureReason.DELIVERY_FAILED, now)
            if delivery.courier_id is None:
                self.delivery_repository.save(delivery)
                self._publish(delivery)
            else:
                self._commit_with_release(delivery, now)
        return delivery

    def _commit_with_release(self, delivery: Delivery, now: datetime) -> None:
        with self.reservations.locks.hold(delivery.courier_id):
            courier = self._courier(delivery.courier_id)
            courier.release(delivery.id, now)
            self.unit_of_work.commit(deliveries=[delivery], couriers=[courier])
        self._publish(delivery, courier)

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_active_deliveries_for_courier(self, courier_id: str) -> List[Delivery]:
        return self.delivery_repository.find_active_by_courier(courier_id)

    def find_overdue_deliveries(self, tenant_id: str, now: Optional[datetime] = None) -> List[Delivery]:
        moment = now or self.clock()
        overdue = []
        for status in ACTIVE_DELIVERY_STATUSES:
            overdue.extend(
                delivery
                for delivery in self.delivery_repository.find_by_tenant_and_status(tenant_id, status)
                if delivery.is_overdue(moment)
            )
        return overdue

    # ========================================================================
    # SWEEPS
    # ========================================================================

    def redispatch_failed(
        self,
        window_minutes: int = DEFAULT_REDISPATCH_WINDOW_MINUTES,
        max_attempts: int = DEFAULT_REDISPATCH_MAX_ATTEMPTS,
        now: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """
        Retry deliveries that recently FAILED for lack of a courier.

        Args:
            window_minutes: Only deliveries failed within this window qualify
            max_attempts: Deliveries with this many failed attempts are left FAILED

        Returns:
            Counters: redispatched, failed, skipped
        """
        moment = now or self.clock()
        cutoff = moment - timedelta(minutes=window_minutes)
        summary = {"redispatched": 0, "failed": 0, "skipped": 0}

        for delivery in self.delivery_repository.find_failed_since(cutoff):
            if (
                delivery.failure_kind != FailureReason.NO_COURIER_AVAILABLE
                or delivery.dispatch_attempts >= max_attempts
            ):
                summary["skipped"] += 1
                continue

            # Requeue and dispatch under one lock: no other path sees the PENDING state
            with self._delivery_locks.hold(delivery.id):
                current = self.delivery_repository.find_by_id(delivery.id)
                if current is None or current.status != DeliveryStatus.FAILED:
                    summary["skipped"] += 1
                    continue
                if not self.service_areas.is_covered(current.tenant_id, current.origin):
                    # Left FAILED; qualifies again if coverage returns within the window
                    summary["skipped"] += 1
                    continue

                current.requeue(self.clock())
                self.delivery_repository.save(current)
                self._publish(current)

                try:
                    self.dispatch(current.id, current.tenant_id)
                    summary["redispatched"] += 1
                except OutsideServiceAreaException as e:
                    current.mark_failed(str(e), FailureReason.OUTSIDE_SERVICE_AREA, self.clock())
                    self.delivery_repository.save(current)
                    self._publish(current)
                    summary["failed"] += 1
                except DispatchError as e:
                    summary["failed"] += 1
                    logger.info(
                        f"Re-dispatch of delivery {current.id} failed: {e}",
                        extra={"event": "redispatch_failed", "delivery_id": current.id},
                    )
        if any(summary.values()):
            logger.info(
                f"Re-dispatch sweep: {summary}",
                extra={"event": "redispatch_sweep", "metric_type": "sweep", **summary},
            )
        return summary

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _load(self, delivery_id: str, tenant_id: str) -> Delivery:
        delivery = self.delivery_repository.find_by_id(delivery_id)
        if delivery is None or delivery.tenant_id != tenant_id:
            raise DeliveryNotFoundException(delivery_id)
        return delivery

    def _courier(self, courier_id: str):
        courier = self.courier_repository.find_by_id(courier_id)
        if courier is None:
            raise CourierNotFoundException(courier_id)
        return courier

    def _publish(self, *entities) -> None:
        for entity in entities:
            self.event_publisher.publish_all(entity.pull_events())

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
