"""
Persistence ports for deliveries and couriers, plus in-memory adapters.

Adapters hand out copies: mutating a loaded entity has no effect until it
is saved or committed. Writes are optimistic: the entity's ``version``
must match the stored one, otherwise ConcurrencyConflict is raised.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Sequence, TypeVar

from src.config.constants import ACTIVE_DELIVERY_STATUSES, CourierStatus, DeliveryStatus
from src.exceptions import ConcurrencyConflict

from .models import Delivery, DeliveryPerson

logger = logging.getLogger(__name__)

Entity = TypeVar("Entity", Delivery, DeliveryPerson)


# ============================================================================
# PORTS
# ============================================================================

class DeliveryRepository(ABC):

    @abstractmethod
    def find_by_id(self, delivery_id: str) -> Optional[Delivery]:
        """Return a copy of the delivery or None."""

    @abstractmethod
    def save(self, delivery: Delivery) -> Delivery:
        """Insert or update a delivery (version-checked)."""

    @abstractmethod
    def find_by_tenant_and_status(self, tenant_id: str, status: DeliveryStatus) -> List[Delivery]:
        """Deliveries of a tenant in a given status."""

    @abstractmethod
    def find_by_status(self, status: DeliveryStatus) -> List[Delivery]:
        """Deliveries of every tenant in a given status (used by sweeps)."""

    @abstractmethod
    def find_active_by_courier(self, courier_id: str) -> List[Delivery]:
        """ASSIGNED, PICKED_UP or IN_TRANSIT deliveries held by a courier."""

    def find_failed_since(self, cutoff: datetime) -> List[Delivery]:
        return [
            delivery for delivery in self.find_by_status(DeliveryStatus.FAILED)
            if delivery.updated_at >= cutoff
        ]


class DeliveryPersonRepository(ABC):

    @abstractmethod
    def find_by_id(self, courier_id: str) -> Optional[DeliveryPerson]:
        """Return a copy of the courier or None."""

    @abstractmethod
    def save(self, courier: DeliveryPerson) -> DeliveryPerson:
        """Insert or update a courier (version-checked)."""

    @abstractmethod
    def find_by_tenant_and_status(self, tenant_id: str, status: CourierStatus) -> List[DeliveryPerson]:
        """Couriers of a tenant in a given status."""

    def find_available(self, tenant_id: str) -> List[DeliveryPerson]:
        """AVAILABLE couriers of the tenant that still have capacity."""
        return [
            courier for courier in self.find_by_tenant_and_status(tenant_id, CourierStatus.AVAILABLE)
            if courier.has_capacity
        ]


class UnitOfWork(ABC):
    """Atomic multi-entity commit."""

    @abstractmethod
    def commit(
        self,
        deliveries: Sequence[Delivery] = (),
        couriers: Sequence[DeliveryPerson] = (),
    ) -> None:
        """
        Persist all given entities or none of them.

        Raises:
            ConcurrencyConflict: If any entity changed since it was loaded
        """


# ============================================================================
# IN-MEMORY ADAPTERS
# ============================================================================

class InMemoryStore:
    """Shared state behind the in-memory repositories and unit of work."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.deliveries: Dict[str, Delivery] = {}
        self.couriers: Dict[str, DeliveryPerson] = {}

    def check(self, table: Dict[str, Entity], entity: Entity) -> None:
        stored = table.get(entity.id)
        if stored is not None and stored.version != entity.version:
            raise ConcurrencyConflict(
                f"{type(entity).__name__} {entity.id} was modified concurrently "
                f"(expected version {entity.version}, found {stored.version})"
            )

    def write(self, table: Dict[str, Entity], entity: Entity) -> None:
        entity.version += 1
        table[entity.id] = copy.deepcopy(entity)


def _copy(entity: Optional[Entity]) -> Optional[Entity]:
    return copy.deepcopy(entity) if entity is not None else None


class InMemoryDeliveryRepository(DeliveryRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    def find_by_id(self, delivery_id: str) -> Optional[Delivery]:
        with self._store.lock:
            return _copy(self._store.deliveries.get(delivery_id))

    def save(self, delivery: Delivery) -> Delivery:
        with self._store.lock:
            self._store.check(self._store.deliveries, delivery)
            self._store.write(self._store.deliveries, delivery)
        return delivery

    def find_by_tenant_and_status(self, tenant_id: str, status: DeliveryStatus) -> List[Delivery]:
        return self._select(lambda d: d.tenant_id == tenant_id and d.status == status)

    def find_by_status(self, status: DeliveryStatus) -> List[Delivery]:
        return self._select(lambda d: d.status == status)

    def find_active_by_courier(self, courier_id: str) -> List[Delivery]:
        return self._select(
            lambda d: d.courier_id == courier_id and d.status in ACTIVE_DELIVERY_STATUSES
        )

    def _select(self, predicate) -> List[Delivery]:
        with self._store.lock:
            return [copy.deepcopy(d) for d in self._store.deliveries.values() if predicate(d)]


class InMemoryDeliveryPersonRepository(DeliveryPersonRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    def find_by_id(self, courier_id: str) -> Optional[DeliveryPerson]:
        with self._store.lock:
            return _copy(self._store.couriers.get(courier_id))

    def save(self, courier: DeliveryPerson) -> DeliveryPerson:
        with self._store.lock:
            self._store.check(self._store.couriers, courier)
            self._store.write(self._store.couriers, courier)
        return courier

    def find_by_tenant_and_status(self, tenant_id: str, status: CourierStatus) -> List[DeliveryPerson]:
        with self._store.lock:
            return [
                copy.deepcopy(c) for c in self._store.couriers.values()
                if c.tenant_id == tenant_id and c.status == status
            ]


class InMemoryUnitOfWork(UnitOfWork):

    def __init__(self, store: InMemoryStore):
        self._store = store

    def commit(
        self,
        deliveries: Sequence[Delivery] = (),
        couriers: Sequence[DeliveryPerson] = (),
    ) -> None:
        with self._store.lock:
            # Validate everything before writing anything
            for delivery in deliveries:
                self._store.check(self._store.deliveries, delivery)
            for courier in couriers:
                self._store.check(self._store.couriers, courier)

            for delivery in deliveries:
                self._store.write(self._store.deliveries, delivery)
            for courier in couriers:
                self._store.write(self._store.couriers, courier)

        logger.debug(
            f"Committed {len(deliveries)} deliveries and {len(couriers)} couriers",
            extra={"event": "unit_of_work_commit"},
        )


def build_in_memory_persistence(store: Optional[InMemoryStore] = None):
    """
    Create the three in-memory adapters sharing one store.

    Returns:
        Tuple of (delivery_repository, courier_repository, unit_of_work)
    """
    store = InMemoryStore() if store is None else store
    return (
        InMemoryDeliveryRepository(store),
        InMemoryDeliveryPersonRepository(store),
        InMemoryUnitOfWork(store),
    )
