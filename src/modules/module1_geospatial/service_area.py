"""
ServiceArea aggregate: the polygon inside which a tenant accepts deliveries.

The boundary is fixed at creation. Changing the geometry means creating a
new area and deactivating the old one (see ServiceAreaRegistry).
"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from src.domain.events import (
    DomainEvent,
    EventBuffer,
    ServiceAreaActivatedEvent,
    ServiceAreaCreatedEvent,
    ServiceAreaDeactivatedEvent,
)
from src.utils.clock import Clock, utc_now

from .boundary import Boundary
from .schemas import City, Location

logger = logging.getLogger(__name__)


def new_service_area_id() -> str:
    return str(uuid4())


class ServiceArea:
    """Tenant-owned polygon with an activation flag."""

    def __init__(
        self,
        service_area_id: str,
        tenant_id: str,
        city: City,
        boundary: Boundary,
        active: bool,
        created_at: datetime,
        updated_at: datetime,
        clock: Clock = utc_now,
    ):
        self._id = service_area_id
        self._tenant_id = tenant_id
        self._city = city
        self._boundary = boundary
        self._active = active
        self._created_at = created_at
        self._updated_at = updated_at
        self._clock = clock
        self._events = EventBuffer()

    @classmethod
    def create(
        cls,
        tenant_id: str,
        city: City,
        boundary: Boundary,
        clock: Clock = utc_now,
    ) -> "ServiceArea":
        """
        Create a new, active service area.

        Args:
            tenant_id: Owning tenant
            city: City the area belongs to
            boundary: Validated polygon

        Returns:
            The new ServiceArea with a ServiceAreaCreated event buffered
        """
        if not tenant_id:
            raise ValueError("tenant_id is required")
        if city is None or boundary is None:
            raise ValueError("city and boundary are required")

        now = clock()
        area = cls(
            service_area_id=new_service_area_id(),
            tenant_id=tenant_id,
            city=city,
            boundary=boundary,
            active=True,
            created_at=now,
            updated_at=now,
            clock=clock,
        )
        area._events.record(ServiceAreaCreatedEvent(
            tenant_id=tenant_id,
            service_area_id=area.id,
            city=city.display_name,
            occurred_at=now,
        ))
        logger.info(
            f"Service area {area.id} created for tenant {tenant_id} in {city.display_name}",
            extra={"event": "service_area_created", "service_area_id": area.id, "tenant_id": tenant_id},
        )
        return area

    @classmethod
    def reconstitute(
        cls,
        service_area_id: str,
        tenant_id: str,
        city: City,
        boundary: Boundary,
        active: bool,
        created_at: datetime,
        updated_at: datetime,
        clock: Clock = utc_now,
    ) -> "ServiceArea":
        """Restore a persisted service area without emitting events."""
        return cls(service_area_id, tenant_id, city, boundary, active, created_at, updated_at, clock)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self._id

    @property
    def tenant_id(self) -> str:
        return self._tenant_id

    @property
    def city(self) -> City:
        return self._city

    @property
    def boundary(self) -> Boundary:
        return self._boundary

    @property
    def active(self) -> bool:
        return self._active

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        return self._updated_at

    # ------------------------------------------------------------------
    # Behavior
    # ------------------------------------------------------------------

    def contains(self, location: Optional[Location]) -> bool:
        if location is None:
            raise TypeError("location cannot be None")
        return self._boundary.contains(location)

    def overlaps_with(self, other: "ServiceArea") -> bool:
        return self._boundary.intersects(other.boundary)

    def area_square_meters(self) -> float:
        return self._boundary.area_square_meters()

    def activate(self) -> bool:
        """
        Activate the area.

        Returns:
            True if the state changed, False if it was already active
        """
        if self._active:
            return False
        self._active = True
        self._updated_at = self._clock()
        self._events.record(ServiceAreaActivatedEvent(
            tenant_id=self._tenant_id, service_area_id=self._id, occurred_at=self._updated_at,
        ))
        return True

    def deactivate(self) -> bool:
        """
        Deactivate the area.

        Returns:
            True if the state changed, False if it was already inactive
        """
        if not self._active:
            return False
        self._active = False
        self._updated_at = self._clock()
        self._events.record(ServiceAreaDeactivatedEvent(
            tenant_id=self._tenant_id, service_area_id=self._id, occurred_at=self._updated_at,
        ))
        return True

    def pull_events(self) -> List[DomainEvent]:
        return self._events.pull()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ServiceArea):
            return NotImplemented
        return self._id == other._id

    def __hash__(self) -> int:
        return hash(self._id)

    def __repr__(self) -> str:
        return (
            f"ServiceArea(id={self._id!r}, tenant_id={self._tenant_id!r}, "
            f"city={self._city.display_name!r}, active={self._active})"
        )
