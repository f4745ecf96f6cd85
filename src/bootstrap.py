"""
Application wiring.

Builds every component once, hands each its ports, and exposes the
resulting DispatchEngine as a process-wide singleton for the Celery tasks.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from src.config import Settings, settings as default_settings
from src.domain.events import (
    CompositeEventPublisher,
    DomainEventPublisher,
    LoggingEventPublisher,
)
from src.domain.repositories import build_in_memory_persistence
from src.modules.module1_geospatial import (
    InMemoryServiceAreaRepository,
    NearestNeighbourRouteOptimizer,
    RouteOptimizer,
    ServiceAreaRegistry,
)
from src.modules.module2_location_tracking import (
    InMemoryLocationTracker,
    LocationTracker,
    RedisLocationTracker,
)
from src.modules.module3_dispatch import (
    CeleryEventPublisher,
    CourierRoster,
    DispatchEngine,
    DispatchService,
)
from src.modules.module4_courier_assignment import (
    CourierReservations,
    DeliveryAssignmentService,
    SearchPolicy,
)
from src.modules.module5_delivery_tracking import DeliveryTrackingService, TrackingPolicy
from src.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)


def build_tracker(config: Settings, clock: Clock = utc_now) -> LocationTracker:
    """Create the location tracker selected by ``location_tracker_backend``."""
    options = dict(
        staleness_seconds=config.staleness_threshold_seconds,
        eviction_seconds=config.eviction_threshold_seconds,
        max_future_skew_seconds=config.max_future_skew_seconds,
        clock=clock,
    )
    if config.location_tracker_backend == "redis":
        return RedisLocationTracker.from_url(
            config.redis_url, key_prefix=config.location_key_prefix, **options
        )
    return InMemoryLocationTracker(**options)


def build_event_publisher(config: Settings) -> DomainEventPublisher:
    publishers: List[DomainEventPublisher] = [LoggingEventPublisher()]
    if config.relay_events_via_celery:
        publishers.append(CeleryEventPublisher())
    return CompositeEventPublisher(publishers)


def build_engine(
    config: Optional[Settings] = None,
    tracker: Optional[LocationTracker] = None,
    event_publisher: Optional[DomainEventPublisher] = None,
    route_optimizer: Optional[RouteOptimizer] = None,
    clock: Clock = utc_now,
) -> DispatchEngine:
    """
    Wire a complete DispatchEngine.

    Args:
        config: Settings to use (process settings if omitted)
        tracker: Location tracker (built from settings if omitted)
        event_publisher: Event bus (structured log, plus Celery relay if enabled)
        route_optimizer: Routing engine (nearest-neighbour ordering if omitted)
        clock: Time source shared by every component

    Returns:
        Ready-to-use DispatchEngine
    """
    # Adapters may define __len__, so an empty one is falsy
    if config is None:
        config = default_settings
    if tracker is None:
        tracker = build_tracker(config, clock)
    if event_publisher is None:
        event_publisher = build_event_publisher(config)
    if route_optimizer is None:
        route_optimizer = NearestNeighbourRouteOptimizer(config.average_speed_kmh)

    delivery_repository, courier_repository, unit_of_work = build_in_memory_persistence()
    service_areas = ServiceAreaRegistry(InMemoryServiceAreaRepository(), event_publisher, clock)

    reservations = CourierReservations(
        courier_repository, delivery_repository, unit_of_work, clock=clock
    )
    assignment_service = DeliveryAssignmentService(
        courier_repository,
        tracker,
        reservations,
        SearchPolicy(
            initial_radius_m=config.search_initial_radius_m,
            growth_factor=config.search_radius_growth_factor,
            max_radius_m=config.search_max_radius_m,
        ),
    )
    dispatch_service = DispatchService(
        delivery_repository=delivery_repository,
        courier_repository=courier_repository,
        unit_of_work=unit_of_work,
        service_areas=service_areas,
        assignment_service=assignment_service,
        reservations=reservations,
        route_optimizer=route_optimizer,
        event_publisher=event_publisher,
        route_timeout_seconds=config.route_optimizer_timeout_seconds,
        average_speed_kmh=config.average_speed_kmh,
        compensation_max_attempts=config.compensation_max_attempts,
        compensation_backoff_seconds=config.compensation_backoff_seconds,
        executor=ThreadPoolExecutor(
            max_workers=config.route_optimizer_workers, thread_name_prefix="route-optimizer"
        ),
        clock=clock,
    )
    tracking_service = DeliveryTrackingService(
        tracker,
        delivery_repository,
        event_publisher,
        TrackingPolicy(
            movement_threshold_m=config.movement_threshold_m,
            off_route_threshold_m=config.off_route_threshold_m,
            off_route_grace_seconds=config.off_route_grace_seconds,
            stall_threshold_seconds=config.stall_threshold_seconds,
            average_speed_kmh=config.average_speed_kmh,
        ),
        clock,
    )
    roster = CourierRoster(
        courier_repository, tracker, event_publisher, locks=reservations.locks, clock=clock
    )

    logger.info(
        f"Dispatch engine built with {type(tracker).__name__}",
        extra={"event": "engine_built", "tracker_backend": config.location_tracker_backend},
    )
    return DispatchEngine(
        dispatch_service,
        tracking_service,
        roster,
        service_areas,
        tracker,
        redispatch_window_minutes=config.redispatch_window_minutes,
        redispatch_max_attempts=config.redispatch_max_attempts,
    )


# Singleton instance
_engine_instance: Optional[DispatchEngine] = None


def get_engine() -> DispatchEngine:
    """Get or create the process-wide engine."""
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = build_engine()
    return _engine_instance


def set_engine(engine: Optional[DispatchEngine]) -> None:
    """Replace the process-wide engine (tests, custom wiring)."""
    global _engine_instance
    _engine_instance = engine
