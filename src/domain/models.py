"""
Dispatch entities: Delivery and DeliveryPerson.

Both carry a ``version`` counter bumped by the unit of work on every
commit; a commit against a stale version is rejected. Status changes
record domain events in the entity's own EventBuffer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set
from uuid import uuid4

from src.config.constants import (
    DEFAULT_COURIER_CAPACITY,
    CourierStatus,
    DeliveryStatus,
    FailureReason,
)
from src.exceptions import InvalidStateTransition
from src.modules.module1_geospatial.route import Route
from src.modules.module1_geospatial.schemas import Distance, Location
from src.utils.clock import utc_now

from .events import (
    CourierStatusChangedEvent,
    DeliveryAssignedEvent,
    DeliveryCancelledEvent,
    DeliveryFailedEvent,
    DeliveryStatusChangedEvent,
    DomainEvent,
    EventBuffer,
)

# Allowed delivery transitions
DELIVERY_TRANSITIONS: Dict[DeliveryStatus, Set[DeliveryStatus]] = {
    DeliveryStatus.PENDING: {DeliveryStatus.ASSIGNED, DeliveryStatus.FAILED, DeliveryStatus.CANCELLED},
    DeliveryStatus.ASSIGNED: {DeliveryStatus.PICKED_UP, DeliveryStatus.FAILED, DeliveryStatus.CANCELLED},
    DeliveryStatus.PICKED_UP: {DeliveryStatus.IN_TRANSIT, DeliveryStatus.FAILED},
    DeliveryStatus.IN_TRANSIT: {DeliveryStatus.DELIVERED, DeliveryStatus.FAILED},
    DeliveryStatus.DELIVERED: set(),
    DeliveryStatus.FAILED: set(),
    DeliveryStatus.CANCELLED: set(),
}

# Allowed courier transitions
COURIER_TRANSITIONS: Dict[CourierStatus, Set[CourierStatus]] = {
    CourierStatus.OFFLINE: {CourierStatus.AVAILABLE},
    CourierStatus.AVAILABLE: {CourierStatus.ASSIGNED, CourierStatus.EN_ROUTE, CourierStatus.OFFLINE},
    CourierStatus.ASSIGNED: {CourierStatus.EN_ROUTE, CourierStatus.AVAILABLE},
    CourierStatus.EN_ROUTE: {CourierStatus.AVAILABLE, CourierStatus.ASSIGNED},
}


def new_id() -> str:
    return str(uuid4())


@dataclass(eq=False)
class DeliveryPerson:
    """A courier able to carry up to ``capacity`` deliveries at once."""

    id: str
    tenant_id: str
    name: str
    status: CourierStatus = CourierStatus.OFFLINE
    capacity: int = DEFAULT_COURIER_CAPACITY
    active_delivery_ids: List[str] = field(default_factory=list)
    available_since: Optional[datetime] = None
    current_location: Optional[Location] = None
    version: int = 0
    events: EventBuffer = field(default_factory=EventBuffer, repr=False)

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValueError("capacity must be at least 1")

    @property
    def remaining_capacity(self) -> int:
        return self.capacity - len(self.active_delivery_ids)

    @property
    def has_capacity(self) -> bool:
        return self.remaining_capacity > 0

    @property
    def can_take_delivery(self) -> bool:
        return self.status == CourierStatus.AVAILABLE and self.has_capacity

    def go_online(self, now: Optional[datetime] = None) -> None:
        if self.status != CourierStatus.OFFLINE:
            return
        self._change_status(CourierStatus.AVAILABLE, now or utc_now())

    def go_offline(self, now: Optional[datetime] = None) -> None:
        if self.status == CourierStatus.OFFLINE:
            return
        if self.active_delivery_ids:
            raise InvalidStateTransition("DeliveryPerson", self.id, self.status, CourierStatus.OFFLINE)
        self._change_status(CourierStatus.OFFLINE, now or utc_now())

    def reserve(self, delivery_id: str, now: Optional[datetime] = None) -> None:
        """
        Take a delivery.

        The courier stays AVAILABLE while it has free slots and becomes
        ASSIGNED once full.

        Raises:
            InvalidStateTransition: If the courier is not AVAILABLE or is full
        """
        if not self.can_take_delivery:
            raise InvalidStateTransition("DeliveryPerson", self.id, self.status, CourierStatus.ASSIGNED)
        self.active_delivery_ids.append(delivery_id)
        if not self.has_capacity:
            self._change_status(CourierStatus.ASSIGNED, now or utc_now())

    def release(self, delivery_id: str, now: Optional[datetime] = None) -> bool:
        """
        Drop a delivery (completed, failed or cancelled).

        Returns:
            False if the delivery was not held by this courier
        """
        if delivery_id not in self.active_delivery_ids:
            return False
        self.active_delivery_ids.remove(delivery_id)
        moment = now or utc_now()
        if self.status in (CourierStatus.ASSIGNED, CourierStatus.EN_ROUTE) and not self.active_delivery_ids:
            self._change_status(CourierStatus.AVAILABLE, moment)
        elif self.status == CourierStatus.ASSIGNED and self.has_capacity:
            self._change_status(CourierStatus.AVAILABLE, moment)
        return True

    def start_route(self, now: Optional[datetime] = None) -> None:
        """Courier picked up a parcel and is now travelling."""
        if self.status == CourierStatus.EN_ROUTE:
            return
        if not self.active_delivery_ids:
            raise InvalidStateTransition("DeliveryPerson", self.id, self.status, CourierStatus.EN_ROUTE)
        self._change_status(CourierStatus.EN_ROUTE, now or utc_now())

    def _change_status(self, new_status: CourierStatus, now: datetime) -> None:
        if new_status not in COURIER_TRANSITIONS[self.status]:
            raise InvalidStateTransition("DeliveryPerson", self.id, self.status, new_status)
        old_status = self.status
        self.status = new_status
        if new_status == CourierStatus.AVAILABLE:
            self.available_since = now
        elif new_status == CourierStatus.OFFLINE:
            self.available_since = None
        self.events.record(CourierStatusChangedEvent(
            tenant_id=self.tenant_id,
            courier_id=self.id,
            old_status=old_status,
            new_status=new_status,
            occurred_at=now,
        ))

    def pull_events(self) -> List[DomainEvent]:
        return self.events.pull()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DeliveryPerson):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)


@dataclass(eq=False)
class Delivery:
    """A parcel to move from ``origin`` to ``destination`` for a tenant."""

    id: str
    tenant_id: str
    origin: Location
    destination: Location
    order_id: Optional[str] = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    courier_id: Optional[str] = None
    route: Optional[Route] = None
    degraded_route: bool = False
    failure_reason: Optional[str] = None
    failure_kind: Optional[FailureReason] = None
    dispatch_attempts: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    status_timestamps: Dict[DeliveryStatus, datetime] = field(default_factory=dict)
    version: int = 0
    events: EventBuffer = field(default_factory=EventBuffer, repr=False)

    def __post_init__(self) -> None:
        self.status_timestamps.setdefault(self.status, self.created_at)

    @classmethod
    def create(
        cls,
        tenant_id: str,
        origin: Location,
        destination: Location,
        order_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "Delivery":
        moment = now or utc_now()
        return cls(
            id=new_id(),
            tenant_id=tenant_id,
            origin=origin,
            destination=destination,
            order_id=order_id,
            created_at=moment,
            updated_at=moment,
        )

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def direct_distance(self) -> Distance:
        return self.origin.distance_to(self.destination)

    @property
    def planned_distance(self) -> Distance:
        return self.route.total_distance if self.route is not None else self.direct_distance

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def estimated_arrival(self) -> Optional[datetime]:
        """Assignment time plus the route's estimated duration."""
        assigned_at = self.status_timestamps.get(DeliveryStatus.ASSIGNED)
        if self.route is None or assigned_at is None:
            return None
        return assigned_at + self.route.estimated_duration

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        eta = self.estimated_arrival
        if eta is None or self.is_terminal:
            return False
        return (now or utc_now()) > eta

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def mark_assigned(
        self,
        courier_id: str,
        now: Optional[datetime] = None,
        distance_to_origin: Optional[Distance] = None,
    ) -> None:
        moment = now or utc_now()
        self._transition(DeliveryStatus.ASSIGNED, moment)
        self.courier_id = courier_id
        self.events.record(DeliveryAssignedEvent(
            tenant_id=self.tenant_id,
            delivery_id=self.id,
            courier_id=courier_id,
            distance_to_origin_m=distance_to_origin.meters if distance_to_origin else None,
            occurred_at=moment,
        ))

    def attach_route(self, route: Route, now: Optional[datetime] = None) -> None:
        if self.status != DeliveryStatus.ASSIGNED:
            raise InvalidStateTransition("Delivery", self.id, self.status, "route")
        self.route = route
        self.degraded_route = route.degraded
        self.updated_at = now or utc_now()

    def mark_picked_up(self, now: Optional[datetime] = None) -> None:
        self._transition(DeliveryStatus.PICKED_UP, now or utc_now())

    def mark_in_transit(self, now: Optional[datetime] = None) -> None:
        self._transition(DeliveryStatus.IN_TRANSIT, now or utc_now())

    def mark_delivered(self, now: Optional[datetime] = None) -> None:
        self._transition(DeliveryStatus.DELIVERED, now or utc_now())

    def mark_failed(
        self,
        reason: str,
        kind: FailureReason = FailureReason.DELIVERY_FAILED,
        now: Optional[datetime] = None,
    ) -> None:
        moment = now or utc_now()
        self._transition(DeliveryStatus.FAILED, moment)
        self.failure_reason = reason
        self.failure_kind = kind
        if kind == FailureReason.NO_COURIER_AVAILABLE:
            self.dispatch_attempts += 1
        self.events.record(DeliveryFailedEvent(
            tenant_id=self.tenant_id, delivery_id=self.id, reason=reason, occurred_at=moment,
        ))

    def cancel(self, reason: str, now: Optional[datetime] = None) -> Optional[str]:
        """
        Cancel the delivery.

        Returns:
            The id of the courier that must be released, if any
        """
        moment = now or utc_now()
        released = self.courier_id
        self._transition(DeliveryStatus.CANCELLED, moment)
        self.events.record(DeliveryCancelledEvent(
            tenant_id=self.tenant_id,
            delivery_id=self.id,
            reason=reason,
            released_courier_id=released,
            occurred_at=moment,
        ))
        return released

    def requeue(self, now: Optional[datetime] = None) -> None:
        """
        Put a delivery that failed for lack of couriers back to PENDING.

        Only deliveries whose courier was never committed qualify.
        """
        if self.status != DeliveryStatus.FAILED or self.failure_kind != FailureReason.NO_COURIER_AVAILABLE:
            raise InvalidStateTransition("Delivery", self.id, self.status, DeliveryStatus.PENDING)
        moment = now or utc_now()
        old_status = self.status
        self.status = DeliveryStatus.PENDING
        self.failure_reason = None
        self.failure_kind = None
        self.updated_at = moment
        self.status_timestamps[DeliveryStatus.PENDING] = moment
        self.events.record(DeliveryStatusChangedEvent(
            tenant_id=self.tenant_id,
            delivery_id=self.id,
            old_status=old_status,
            new_status=DeliveryStatus.PENDING,
            occurred_at=moment,
        ))

    def _transition(self, new_status: DeliveryStatus, now: datetime) -> None:
        if new_status not in DELIVERY_TRANSITIONS[self.status]:
            raise InvalidStateTransition("Delivery", self.id, self.status, new_status)
        old_status = self.status
        self.status = new_status
        self.updated_at = now
        self.status_timestamps[new_status] = now
        self.events.record(DeliveryStatusChangedEvent(
            tenant_id=self.tenant_id,
            delivery_id=self.id,
            old_status=old_status,
            new_status=new_status,
            courier_id=self.courier_id,
            occurred_at=now,
        ))

    def pull_events(self) -> List[DomainEvent]:
        return self.events.pull()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Delivery):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)
