"""
CourierRoster - courier registration and shift changes.

Shares the courier locks of the reservation step so a courier cannot go
offline while a dispatch is reserving it.
"""

import logging
from typing import Optional

from src.config.constants import DEFAULT_COURIER_CAPACITY
from src.domain.events import DomainEventPublisher
from src.domain.models import DeliveryPerson, new_id
from src.domain.repositories import DeliveryPersonRepository
from src.exceptions import CourierNotFoundException
from src.modules.module2_location_tracking.tracker import LocationTracker
from src.utils.clock import Clock, utc_now
from src.utils.locks import KeyedLocks

logger = logging.getLogger(__name__)


class CourierRoster:
    """Registers couriers and switches them on and off shift."""

    def __init__(
        self,
        courier_repository: DeliveryPersonRepository,
        tracker: LocationTracker,
        event_publisher: DomainEventPublisher,
        locks: Optional[KeyedLocks] = None,
        clock: Clock = utc_now,
    ):
        self.courier_repository = courier_repository
        self.tracker = tracker
        self.event_publisher = event_publisher
        self.locks = KeyedLocks() if locks is None else locks
        self.clock = clock

    def register(
        self,
        tenant_id: str,
        name: str,
        capacity: int = DEFAULT_COURIER_CAPACITY,
        courier_id: Optional[str] = None,
    ) -> DeliveryPerson:
        """Create an OFFLINE courier for a tenant."""
        courier = DeliveryPerson(
            id=courier_id or new_id(),
            tenant_id=tenant_id,
            name=name,
            capacity=capacity,
        )
        self.courier_repository.save(courier)
        logger.info(
            f"Courier {courier.id} registered for tenant {tenant_id}",
            extra={"event": "courier_registered", "courier_id": courier.id, "tenant_id": tenant_id},
        )
        return courier

    def get(self, courier_id: str, tenant_id: str) -> DeliveryPerson:
        courier = self.courier_repository.find_by_id(courier_id)
        if courier is None or courier.tenant_id != tenant_id:
            raise CourierNotFoundException(courier_id)
        return courier

    def go_online(self, courier_id: str, tenant_id: str) -> DeliveryPerson:
        """Make a courier AVAILABLE for new deliveries."""
        with self.locks.hold(courier_id):
            courier = self.get(courier_id, tenant_id)
            courier.go_online(self.clock())
            self.courier_repository.save(courier)
        self.event_publisher.publish_all(courier.pull_events())
        return courier

    def go_offline(self, courier_id: str, tenant_id: str) -> DeliveryPerson:
        """
        End a courier's shift and drop its tracked position.

        Raises:
            InvalidStateTransition: If the courier still holds deliveries
        """
        with self.locks.hold(courier_id):
            courier = self.get(courier_id, tenant_id)
            courier.go_offline(self.clock())
            self.courier_repository.save(courier)
        self.tracker.forget(courier_id)
        self.event_publisher.publish_all(courier.pull_events())
        logger.info(
            f"Courier {courier_id} went offline",
            extra={"event": "courier_offline", "courier_id": courier_id, "tenant_id": tenant_id},
        )
        return courier
