"""
Celery tasks of the dispatch engine.

Intake tasks create service areas, couriers and deliveries inside the
worker that owns the engine; the other tasks drive dispatch, location
ingestion, the periodic sweeps and the event relay.

Domain errors (``DispatchError``) are business outcomes and come back as
failure payloads. Anything else is retried with exponential backoff.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.config.constants import DEFAULT_COURIER_CAPACITY, DeliveryStatus
from src.domain.models import Delivery
from src.exceptions import DispatchError
from src.logging_config import get_logger
from src.modules.module1_geospatial.boundary import Boundary
from src.modules.module1_geospatial.schemas import City, Location

from .celery_app import celery_app, BaseTask

logger = logging.getLogger(__name__)

RETRY_BACKOFF_MAX_SECONDS = 60


def _engine():
    from src.bootstrap import get_engine

    return get_engine()


def _retry(task, exc: Exception):
    countdown = min(RETRY_BACKOFF_MAX_SECONDS, 2 ** task.request.retries)
    logger.error(f"Task {task.name} failed, retrying in {countdown}s: {exc}")
    return task.retry(exc=exc, countdown=countdown)


def _delivery_payload(delivery: Delivery) -> Dict[str, Any]:
    return {
        "delivery_id": delivery.id,
        "tenant_id": delivery.tenant_id,
        "delivery_status": delivery.status.value,
        "courier_id": delivery.courier_id,
        "degraded_route": delivery.degraded_route,
        "planned_distance_m": delivery.planned_distance.meters,
        "estimated_arrival": (
            delivery.estimated_arrival.isoformat() if delivery.estimated_arrival else None
        ),
    }


def _failure_payload(error: Exception, **context: Any) -> Dict[str, Any]:
    return {
        "status": "failed",
        "error": type(error).__name__,
        "message": str(error),
        **context,
    }


def _dispatch(task, delivery_id: str, tenant_id: str) -> Dict[str, Any]:
    logger.info(f"Dispatching delivery={delivery_id}, tenant={tenant_id}")

    try:
        delivery = _engine().dispatch(delivery_id, tenant_id)
        outcome = "cancelled" if delivery.status == DeliveryStatus.CANCELLED else "dispatched"
        return {"status": outcome, **_delivery_payload(delivery)}

    except DispatchError as e:
        logger.info(f"Dispatch of delivery {delivery_id} ended without courier: {e}")
        return _failure_payload(e, delivery_id=delivery_id)

    except Exception as e:
        raise _retry(task, e)


# ============================================================================
# INTAKE
# ============================================================================

@celery_app.task(bind=True, base=BaseTask, name="create_service_area")
def create_service_area(
    self,
    tenant_id: str,
    city: Dict[str, Any],
    coordinates: List[List[float]],
    allow_overlap: bool = False,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Register an active service area.

    Args:
        tenant_id: Owning tenant
        city: ``{"name", "country_code", "center": {"latitude", "longitude"}}``
        coordinates: Boundary vertices as [latitude, longitude] pairs
        allow_overlap: Accept overlaps with the tenant's active areas
    """
    try:
        area = _engine().service_areas.create_service_area(
            tenant_id,
            City.model_validate(city),
            Boundary.from_coordinates(coordinates),
            allow_overlap=allow_overlap,
        )
        return {
            "status": "created",
            "service_area_id": area.id,
            "tenant_id": tenant_id,
            "area_square_meters": area.area_square_meters(),
        }

    except (DispatchError, ValueError) as e:
        return _failure_payload(e, tenant_id=tenant_id)


@celery_app.task(bind=True, base=BaseTask, name="register_courier")
def register_courier(
    self,
    tenant_id: str,
    name: str,
    capacity: int = DEFAULT_COURIER_CAPACITY,
    online: bool = False,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Register a courier, optionally starting their shift right away."""
    try:
        engine = _engine()
        courier = engine.register_courier(tenant_id, name, capacity)
        if online:
            courier = engine.courier_online(courier.id, tenant_id)
        return {"status": "registered", "courier_id": courier.id, "courier_status": courier.status.value}

    except (DispatchError, ValueError) as e:
        return _failure_payload(e, tenant_id=tenant_id)


@celery_app.task(bind=True, base=BaseTask, name="set_courier_shift")
def set_courier_shift(
    self,
    courier_id: str,
    tenant_id: str,
    online: bool,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Start (``online=True``) or end a courier's shift."""
    try:
        engine = _engine()
        if online:
            courier = engine.courier_online(courier_id, tenant_id)
        else:
            courier = engine.courier_offline(courier_id, tenant_id)
        return {"status": "updated", "courier_id": courier.id, "courier_status": courier.status.value}

    except DispatchError as e:
        return _failure_payload(e, courier_id=courier_id)


@celery_app.task(bind=True, base=BaseTask, name="create_delivery")
def create_delivery(
    self,
    tenant_id: str,
    origin: List[float],
    destination: List[float],
    order_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Register a PENDING delivery from [latitude, longitude] pairs.

    Dispatch it afterwards with ``dispatch_delivery``.
    """
    try:
        delivery = _engine().create_delivery(
            tenant_id, Location.of(*origin), Location.of(*destination), order_id=order_id
        )
        return {"status": "created", **_delivery_payload(delivery)}

    except (DispatchError, ValueError) as e:
        return _failure_payload(e, tenant_id=tenant_id)


# ============================================================================
# DISPATCH
# ============================================================================

@celery_app.task(bind=True, base=BaseTask, name="dispatch_delivery")
def dispatch_delivery(
    self,
    delivery_id: str,
    tenant_id: str,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Celery task dispatching a PENDING delivery.

    Args:
        delivery_id: Delivery identifier
        tenant_id: Owning tenant
        correlation_id: Trace id propagated to logs

    Returns:
        Dict with ``status`` "dispatched" (or "cancelled" if a cancellation won
        the race) and the delivery, or a failure payload for domain errors
    """
    return _dispatch(self, delivery_id, tenant_id)


@celery_app.task(bind=True, base=BaseTask, name="cancel_dispatch")
def cancel_dispatch(
    self,
    delivery_id: str,
    tenant_id: str,
    reason: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Celery task cancelling a delivery and releasing its courier.

    Returns:
        Dict with the cancelled delivery, or a failure payload for domain errors
    """
    logger.info(f"Cancelling delivery={delivery_id}, tenant={tenant_id}")

    try:
        engine = _engine()
        if reason:
            delivery = engine.cancel_dispatch(delivery_id, tenant_id, reason)
        else:
            delivery = engine.cancel_dispatch(delivery_id, tenant_id)
        return {"status": "cancelled", **_delivery_payload(delivery)}

    except DispatchError as e:
        return _failure_payload(e, delivery_id=delivery_id)

    except Exception as e:
        raise _retry(self, e)


@celery_app.task(bind=True, base=BaseTask, name="report_courier_location")
def report_courier_location(
    self,
    courier_id: str,
    latitude: float,
    longitude: float,
    timestamp: Optional[str] = None,
    accuracy_m: Optional[float] = None,
    speed_mps: Optional[float] = None,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Celery task ingesting a courier location report.

    Args:
        courier_id: Reporting courier
        latitude: Latitude in decimal degrees
        longitude: Longitude in decimal degrees
        timestamp: ISO-8601 device time of the fix (defaults to now)
        accuracy_m: Optional horizontal accuracy
        speed_mps: Optional ground speed

    Returns:
        Dict telling whether the report was applied and the updated deliveries
    """
    try:
        location = Location.of(latitude, longitude)
        reported_at = datetime.fromisoformat(timestamp) if timestamp else None
        result = _engine().report_courier_location(
            courier_id, location, reported_at, accuracy_m, speed_mps
        )
        return result.model_dump(mode="json")

    except (DispatchError, ValueError) as e:
        # Malformed reports are dropped, never retried
        logger.warning(f"Location report from courier {courier_id} rejected: {e}")
        return {"status": "failed", "courier_id": courier_id, "error": type(e).__name__, "message": str(e)}

    except Exception as e:
        raise _retry(self, e)


@celery_app.task(bind=True, base=BaseTask, name="evict_stale_positions")
def evict_stale_positions(self) -> Dict[str, Any]:
    """Periodic sweep dropping positions older than the eviction threshold."""
    evicted = _engine().evict_stale_positions()
    if evicted:
        logger.info(
            f"Evicted {evicted} stale courier positions",
            extra={"event": "positions_evicted", "metric_type": "sweep", "count": evicted},
        )
    return {"evicted": evicted}


@celery_app.task(bind=True, base=BaseTask, name="redispatch_failed_deliveries")
def redispatch_failed_deliveries(self) -> Dict[str, Any]:
    """Periodic sweep re-dispatching deliveries that recently found no courier."""
    return _engine().redispatch_failed()


@celery_app.task(bind=True, base=BaseTask, name="retry_pending_compensations")
def retry_pending_compensations(self) -> Dict[str, Any]:
    """Periodic sweep retrying courier releases left unconfirmed by cancellations."""
    engine = _engine()
    confirmed = engine.retry_pending_compensations()
    return {
        "confirmed": confirmed,
        "pending": len(engine.dispatch_service.pending_compensations),
    }


@celery_app.task(name="relay_domain_event")
def relay_domain_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Hand a domain event to downstream consumers.

    Events reach this task through the Celery event publisher; the relay
    writes them to the structured event log consumed by the event bus
    shipper.
    """
    get_logger("dispatch.events.relay").info(event.get("event_type", "DomainEvent"), **event)
    return {"event_id": event.get("event_id"), "relayed": True}
