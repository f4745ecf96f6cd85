"""
Service area registry.

Application service managing the lifecycle of service areas and the
per-tenant coverage view used on the dispatch path. The coverage view is
read-mostly: it is cached per tenant and rebuilt whenever an area of that
tenant is created, activated or deactivated through the registry.
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

from src.domain.events import DomainEventPublisher
from src.exceptions import ServiceAreaConflictException, ServiceAreaNotFoundException
from src.utils.clock import Clock, utc_now

from .boundary import Boundary
from .repository import ServiceAreaRepository
from .schemas import City, Location
from .service_area import ServiceArea

logger = logging.getLogger(__name__)


class ServiceAreaRegistry:
    """Creates, (de)activates and looks up tenant service areas."""

    def __init__(
        self,
        repository: ServiceAreaRepository,
        event_publisher: Optional[DomainEventPublisher] = None,
        clock: Clock = utc_now,
    ):
        self.repository = repository
        self.event_publisher = event_publisher
        self.clock = clock
        self._coverage: Dict[str, Tuple[ServiceArea, ...]] = {}
        # Bumped by every invalidation; a read started under an older value is not cached
        self._generation = 0
        self._coverage_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_service_area(
        self,
        tenant_id: str,
        city: City,
        boundary: Boundary,
        allow_overlap: bool = False,
    ) -> ServiceArea:
        """
        Register a new active service area for a tenant.

        Args:
            tenant_id: Owning tenant
            city: City of the area
            boundary: Polygon of the area
            allow_overlap: Accept overlaps with the tenant's active areas

        Returns:
            The persisted ServiceArea

        Raises:
            ServiceAreaConflictException: If the boundary overlaps an active area
                of the same tenant and overlaps are not allowed
        """
        if not allow_overlap:
            self._ensure_no_conflict(tenant_id, boundary)

        area = ServiceArea.create(tenant_id, city, boundary, clock=self.clock)
        self.repository.save(area)
        self._after_change(area)
        return area

    def activate(self, tenant_id: str, service_area_id: str, allow_overlap: bool = False) -> ServiceArea:
        area = self._get(tenant_id, service_area_id)
        if not area.active and not allow_overlap:
            self._ensure_no_conflict(tenant_id, area.boundary, exclude_id=area.id)
        if area.activate():
            self.repository.save(area)
        self._after_change(area)
        return area

    def deactivate(self, tenant_id: str, service_area_id: str) -> ServiceArea:
        area = self._get(tenant_id, service_area_id)
        if area.deactivate():
            self.repository.save(area)
        self._after_change(area)
        return area

    def replace_boundary(self, tenant_id: str, service_area_id: str, boundary: Boundary) -> ServiceArea:
        """
        Swap the geometry of an area.

        Boundaries are immutable, so this creates a new area with the new
        polygon and deactivates the old one.

        Returns:
            The new ServiceArea
        """
        old_area = self._get(tenant_id, service_area_id)
        self._ensure_no_conflict(tenant_id, boundary, exclude_id=old_area.id)

        if old_area.deactivate():
            self.repository.save(old_area)
        self._after_change(old_area)

        new_area = ServiceArea.create(tenant_id, old_area.city, boundary, clock=self.clock)
        self.repository.save(new_area)
        self._after_change(new_area)

        logger.info(
            f"Service area {old_area.id} replaced by {new_area.id} for tenant {tenant_id}",
            extra={
                "event": "service_area_replaced",
                "tenant_id": tenant_id,
                "old_service_area_id": old_area.id,
                "new_service_area_id": new_area.id,
            },
        )
        return new_area

    # ------------------------------------------------------------------
    # Coverage (dispatch path)
    # ------------------------------------------------------------------

    def active_areas(self, tenant_id: str) -> Tuple[ServiceArea, ...]:
        with self._coverage_lock:
            areas = self._coverage.get(tenant_id)
            generation = self._generation
        if areas is not None:
            return areas

        areas = tuple(self.repository.find_active_by_tenant_id(tenant_id))
        with self._coverage_lock:
            if generation == self._generation:
                self._coverage[tenant_id] = areas
        return areas

    def find_covering(self, tenant_id: str, location: Location) -> List[ServiceArea]:
        """Active areas of the tenant containing the location (edges included)."""
        return [
            area for area in self.active_areas(tenant_id)
            if area.active and area.contains(location)
        ]

    def is_covered(self, tenant_id: str, location: Location) -> bool:
        return bool(self.find_covering(tenant_id, location))

    def invalidate(self, tenant_id: Optional[str] = None) -> None:
        """Drop cached coverage for one tenant, or for all tenants."""
        with self._coverage_lock:
            self._generation += 1
            if tenant_id is None:
                self._coverage.clear()
            else:
                self._coverage.pop(tenant_id, None)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get(self, tenant_id: str, service_area_id: str) -> ServiceArea:
        area = self.repository.find_by_id(service_area_id)
        if area is None or area.tenant_id != tenant_id:
            raise ServiceAreaNotFoundException(service_area_id)
        return area

    def _ensure_no_conflict(
        self, tenant_id: str, boundary: Boundary, exclude_id: Optional[str] = None
    ) -> None:
        conflicts = [
            area.id
            for area in self.repository.find_by_tenant_id_intersecting_boundary(tenant_id, boundary)
            if area.id != exclude_id
        ]
        if conflicts:
            logger.warning(
                f"Service area conflict for tenant {tenant_id}: overlaps {conflicts}",
                extra={"event": "service_area_conflict", "tenant_id": tenant_id},
            )
            raise ServiceAreaConflictException(tenant_id, conflicts)

    def _after_change(self, area: ServiceArea) -> None:
        self.invalidate(area.tenant_id)
        events = area.pull_events()
        if events and self.event_publisher is not None:
            self.event_publisher.publish_all(events)
