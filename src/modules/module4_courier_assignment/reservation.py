"""
Courier Reservation - Phase 3 of Module 4

The only mutual-exclusion point of the dispatch path. A reservation holds
the courier's own lock while it re-reads the courier, checks it can still
take the delivery and commits courier and delivery together. The unit of
work's version check additionally rejects a commit if another process
changed either record in between.
"""

import copy
import logging
from typing import Optional, Tuple

from src.domain.models import Delivery, DeliveryPerson
from src.domain.repositories import DeliveryPersonRepository, DeliveryRepository, UnitOfWork
from src.exceptions import ConcurrencyConflict, CourierNotFoundException
from src.modules.module1_geospatial.schemas import Distance
from src.utils.clock import Clock, utc_now
from src.utils.locks import KeyedLocks

logger = logging.getLogger(__name__)


class CourierReservations:
    """Reserve and release couriers one at a time."""

    def __init__(
        self,
        courier_repository: DeliveryPersonRepository,
        delivery_repository: DeliveryRepository,
        unit_of_work: UnitOfWork,
        locks: Optional[KeyedLocks] = None,
        clock: Clock = utc_now,
    ):
        self.courier_repository = courier_repository
        self.delivery_repository = delivery_repository
        self.unit_of_work = unit_of_work
        self.locks = KeyedLocks() if locks is None else locks
        self.clock = clock

    def try_reserve(
        self,
        courier_id: str,
        delivery: Delivery,
        distance_to_origin: Optional[Distance] = None,
    ) -> Optional[Tuple[Delivery, DeliveryPerson]]:
        """
        Atomically move a courier onto a delivery.

        Args:
            courier_id: Candidate courier
            delivery: PENDING delivery as loaded by the caller (left untouched)
            distance_to_origin: Candidate distance, recorded on the event

        Returns:
            (assigned delivery, reserving courier) or None if the courier was
            taken, went offline or is full

        Raises:
            ConcurrencyConflict: If the delivery itself changed since it was loaded
        """
        with self.locks.hold(courier_id):
            courier = self.courier_repository.find_by_id(courier_id)
            if courier is None or courier.tenant_id != delivery.tenant_id or not courier.can_take_delivery:
                logger.debug(
                    f"Courier {courier_id} no longer available for delivery {delivery.id}",
                    extra={"event": "reservation_lost", "courier_id": courier_id, "delivery_id": delivery.id},
                )
                return None

            now = self.clock()
            assigned = copy.deepcopy(delivery)
            courier.reserve(assigned.id, now)
            assigned.mark_assigned(courier.id, now, distance_to_origin)

            try:
                self.unit_of_work.commit(deliveries=[assigned], couriers=[courier])
            except ConcurrencyConflict:
                stored = self.delivery_repository.find_by_id(delivery.id)
                if stored is None or stored.version != delivery.version:
                    raise
                logger.debug(
                    f"Courier {courier_id} changed concurrently, reservation lost",
                    extra={"event": "reservation_lost", "courier_id": courier_id, "delivery_id": delivery.id},
                )
                return None

        logger.info(
            f"Courier {courier_id} reserved for delivery {delivery.id}",
            extra={"event": "courier_reserved", "courier_id": courier_id, "delivery_id": delivery.id},
        )
        return assigned, courier

    def release(self, courier_id: str, delivery_id: str) -> DeliveryPerson:
        """
        Free the slot a courier holds for a delivery.

        Idempotent: releasing a delivery the courier no longer holds is a
        no-op that still returns the courier.

        Raises:
            CourierNotFoundException: If the courier does not exist
            ConcurrencyConflict: If the courier changed during the release
        """
        with self.locks.hold(courier_id):
            courier = self.courier_repository.find_by_id(courier_id)
            if courier is None:
                raise CourierNotFoundException(courier_id)
            if courier.release(delivery_id, self.clock()):
                self.courier_repository.save(courier)
                logger.info(
                    f"Courier {courier_id} released from delivery {delivery_id}",
                    extra={"event": "courier_released", "courier_id": courier_id, "delivery_id": delivery_id},
                )
        return courier
