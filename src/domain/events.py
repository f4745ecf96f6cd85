"""
Domain events and their publication port.

Entities record events in an EventBuffer they own; application services
pull the buffered events after a successful commit and hand them to a
DomainEventPublisher.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.config.constants import CourierStatus, DeliveryStatus
from src.logging_config import get_logger
from src.utils.clock import utc_now
from src.utils.context import get_correlation_id

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="DomainEvent")


# ============================================================================
# EVENT TYPES
# ============================================================================

class DomainEvent(BaseModel):
    """Base payload shared by all events."""

    model_config = ConfigDict(frozen=True)

    event_type: str = "DomainEvent"
    event_id: str = Field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = Field(default_factory=utc_now)
    tenant_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class ServiceAreaCreatedEvent(DomainEvent):
    event_type: str = "ServiceAreaCreated"
    service_area_id: str
    city: str


class ServiceAreaActivatedEvent(DomainEvent):
    event_type: str = "ServiceAreaActivated"
    service_area_id: str


class ServiceAreaDeactivatedEvent(DomainEvent):
    event_type: str = "ServiceAreaDeactivated"
    service_area_id: str


class CourierStatusChangedEvent(DomainEvent):
    event_type: str = "CourierStatusChanged"
    courier_id: str
    old_status: CourierStatus
    new_status: CourierStatus


class DeliveryAssignedEvent(DomainEvent):
    event_type: str = "DeliveryAssigned"
    delivery_id: str
    courier_id: str
    distance_to_origin_m: Optional[float] = None


class DeliveryStatusChangedEvent(DomainEvent):
    event_type: str = "DeliveryStatusChanged"
    delivery_id: str
    old_status: DeliveryStatus
    new_status: DeliveryStatus
    courier_id: Optional[str] = None


class DeliveryFailedEvent(DomainEvent):
    event_type: str = "DeliveryFailed"
    delivery_id: str
    reason: str


class DeliveryCancelledEvent(DomainEvent):
    event_type: str = "DeliveryCancelled"
    delivery_id: str
    reason: str
    released_courier_id: Optional[str] = None


class RouteOptimizationDegradedEvent(DomainEvent):
    event_type: str = "RouteOptimizationDegraded"
    delivery_id: str
    reason: str
    fallback_distance_m: float


class CourierOffRouteEvent(DomainEvent):
    event_type: str = "CourierOffRoute"
    delivery_id: str
    courier_id: str
    deviation_m: float
    off_route_seconds: float
    latitude: float
    longitude: float


class CourierStalledEvent(DomainEvent):
    event_type: str = "CourierStalled"
    delivery_id: str
    courier_id: str
    stalled_seconds: float
    latitude: float
    longitude: float


# ============================================================================
# EVENT BUFFER (owned by entities)
# ============================================================================

class EventBuffer:
    """Ordered list of events recorded by one entity and not yet published."""

    def __init__(self) -> None:
        self._events: List[DomainEvent] = []

    def record(self, event: DomainEvent) -> None:
        self._events.append(event)

    def pull(self) -> List[DomainEvent]:
        """Return and forget the buffered events."""
        events, self._events = self._events, []
        return events

    def __len__(self) -> int:
        return len(self._events)

    def __deepcopy__(self, memo) -> "EventBuffer":
        # Persisted copies never carry unpublished events
        return EventBuffer()


# ============================================================================
# PUBLISHERS
# ============================================================================

class DomainEventPublisher(ABC):
    """Port to the event bus used by downstream consumers."""

    @abstractmethod
    def publish(self, event: DomainEvent) -> None:
        """Publish one event."""

    def publish_all(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            self.publish(event)


class InMemoryEventPublisher(DomainEventPublisher):
    """Collects events in memory; used by tests and single-process runs."""

    def __init__(self) -> None:
        self._events: List[DomainEvent] = []
        self._lock = threading.Lock()

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> List[DomainEvent]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_class: Type[E]) -> List[E]:
        return [event for event in self.events if isinstance(event, event_class)]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class LoggingEventPublisher(DomainEventPublisher):
    """Writes every event as a structured log entry."""

    def __init__(self) -> None:
        self._log = get_logger("dispatch.events")

    def publish(self, event: DomainEvent) -> None:
        self._log.info(
            event.event_type,
            correlation_id=get_correlation_id(),
            **event.to_payload(),
        )


class CompositeEventPublisher(DomainEventPublisher):
    """Fans an event out to several publishers; one failing does not stop the others."""

    def __init__(self, publishers: Iterable[DomainEventPublisher]):
        self._publishers = list(publishers)

    def publish(self, event: DomainEvent) -> None:
        for publisher in self._publishers:
            try:
                publisher.publish(event)
            except Exception as e:
                logger.error(
                    f"Event publisher {type(publisher).__name__} failed for "
                    f"{event.event_type}: {e}",
                    exc_info=True,
                    extra={"event": "event_publish_failed", "event_type": event.event_type},
                )
