"""
Exception hierarchy of the dispatch engine.

Every error raised on purpose by the engine derives from DispatchError so
callers (Celery tasks, an eventual HTTP layer) can tell domain failures
from unexpected crashes.
"""

from typing import Optional


class DispatchError(Exception):
    """Base class for all domain errors."""


class InvalidGeometry(DispatchError, ValueError):
    """Degenerate or malformed geometric input (never repaired silently)."""


class OutsideServiceAreaException(DispatchError):
    """The delivery origin is not covered by any active service area of the tenant."""

    def __init__(self, tenant_id: str, delivery_id: Optional[str] = None):
        self.tenant_id = tenant_id
        self.delivery_id = delivery_id
        super().__init__(
            f"Delivery {delivery_id} origin is outside every active service area "
            f"of tenant {tenant_id}"
        )


class DeliveryAssignmentException(DispatchError):
    """No courier could be reserved for the delivery."""

    def __init__(self, delivery_id: str, reason: str, candidates_tried: int = 0):
        self.delivery_id = delivery_id
        self.reason = reason
        self.candidates_tried = candidates_tried
        super().__init__(
            f"Could not assign delivery {delivery_id}: {reason} "
            f"({candidates_tried} candidates tried)"
        )


class RouteOptimizationDegraded(DispatchError):
    """The route optimizer timed out or failed; a fallback route is used."""


class ServiceAreaConflictException(DispatchError):
    """A new service area overlaps an active one of the same tenant."""

    def __init__(self, tenant_id: str, conflicting_ids):
        self.tenant_id = tenant_id
        self.conflicting_ids = list(conflicting_ids)
        super().__init__(
            f"Service area overlaps active areas {self.conflicting_ids} of tenant {tenant_id}"
        )


class DeliveryNotFoundException(DispatchError):
    def __init__(self, delivery_id: str):
        self.delivery_id = delivery_id
        super().__init__(f"Delivery not found: {delivery_id}")


class CourierNotFoundException(DispatchError):
    def __init__(self, courier_id: str):
        self.courier_id = courier_id
        super().__init__(f"Delivery person not found: {courier_id}")


class ServiceAreaNotFoundException(DispatchError):
    def __init__(self, service_area_id: str):
        self.service_area_id = service_area_id
        super().__init__(f"Service area not found: {service_area_id}")


class InvalidStateTransition(DispatchError):
    """A lifecycle transition not allowed by the state machine."""

    def __init__(self, entity: str, entity_id: str, current, target):
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.target = target
        super().__init__(
            f"{entity} {entity_id} cannot move from {getattr(current, 'value', current)} "
            f"to {getattr(target, 'value', target)}"
        )


class ConcurrencyConflict(DispatchError):
    """A commit was rejected because a record changed since it was read."""
