"""
ServiceArea persistence port and its in-memory adapter.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .boundary import Boundary
from .schemas import City, Distance, Location
from .service_area import ServiceArea


class ServiceAreaRepository(ABC):
    """Port for storing and querying service areas."""

    @abstractmethod
    def save(self, service_area: ServiceArea) -> ServiceArea:
        """Insert or replace a service area."""

    @abstractmethod
    def find_by_id(self, service_area_id: str) -> Optional[ServiceArea]:
        """Return the area or None."""

    @abstractmethod
    def find_by_tenant_id(self, tenant_id: str) -> List[ServiceArea]:
        """All areas of a tenant, active or not."""

    @abstractmethod
    def find_active_by_tenant_id(self, tenant_id: str) -> List[ServiceArea]:
        """Active areas of a tenant."""

    @abstractmethod
    def find_by_city(self, city: City) -> List[ServiceArea]:
        """Areas of every tenant in a city."""

    @abstractmethod
    def delete(self, service_area_id: str) -> bool:
        """Remove an area; True if it existed."""

    def find_containing_location(self, location: Location) -> List[ServiceArea]:
        """Active areas of any tenant containing the location."""
        return [area for area in self._all_active() if area.contains(location)]

    def find_by_tenant_id_containing_location(
        self, tenant_id: str, location: Location
    ) -> List[ServiceArea]:
        return [
            area for area in self.find_active_by_tenant_id(tenant_id)
            if area.contains(location)
        ]

    def find_within_distance(self, location: Location, distance: Distance) -> List[ServiceArea]:
        """Active areas whose city center lies within ``distance`` of the location."""
        return [
            area for area in self._all_active()
            if area.city.center.distance_to(location) <= distance
        ]

    def find_intersecting_boundary(self, boundary: Boundary) -> List[ServiceArea]:
        return [area for area in self._all_active() if area.boundary.intersects(boundary)]

    def find_by_tenant_id_intersecting_boundary(
        self, tenant_id: str, boundary: Boundary
    ) -> List[ServiceArea]:
        return [
            area for area in self.find_active_by_tenant_id(tenant_id)
            if area.boundary.intersects(boundary)
        ]

    @abstractmethod
    def _all_active(self) -> List[ServiceArea]:
        """Active areas across tenants."""


class InMemoryServiceAreaRepository(ServiceAreaRepository):
    """Dictionary-backed repository."""

    def __init__(self) -> None:
        self._areas: Dict[str, ServiceArea] = {}
        self._lock = threading.Lock()

    def save(self, service_area: ServiceArea) -> ServiceArea:
        with self._lock:
            self._areas[service_area.id] = service_area
        return service_area

    def find_by_id(self, service_area_id: str) -> Optional[ServiceArea]:
        return self._areas.get(service_area_id)

    def find_by_tenant_id(self, tenant_id: str) -> List[ServiceArea]:
        return [area for area in self._snapshot() if area.tenant_id == tenant_id]

    def find_active_by_tenant_id(self, tenant_id: str) -> List[ServiceArea]:
        return [
            area for area in self._snapshot()
            if area.tenant_id == tenant_id and area.active
        ]

    def find_by_city(self, city: City) -> List[ServiceArea]:
        return [area for area in self._snapshot() if area.city == city]

    def delete(self, service_area_id: str) -> bool:
        with self._lock:
            return self._areas.pop(service_area_id, None) is not None

    def _all_active(self) -> List[ServiceArea]:
        return [area for area in self._snapshot() if area.active]

    def _snapshot(self) -> List[ServiceArea]:
        with self._lock:
            return list(self._areas.values())
