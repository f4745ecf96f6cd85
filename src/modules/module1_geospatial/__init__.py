"""
Module 1 - Geospatial primitives

Value objects and polygon geometry for tenant service areas.

This module provides:
- Location / Distance / City value objects (haversine distances)
- Boundary polygons with edge-inclusive containment, intersection and area
- The ServiceArea aggregate, its repository port and a coverage registry
- Routes and the RouteOptimizer port
"""

from .schemas import City, Distance, Location
from .boundary import Boundary
from .service_area import ServiceArea
from .repository import InMemoryServiceAreaRepository, ServiceAreaRepository
from .registry import ServiceAreaRegistry
from .route import (
    DirectLineRouteOptimizer,
    NearestNeighbourRouteOptimizer,
    Route,
    RouteOptimizer,
    Waypoint,
)

__all__ = [
    "City",
    "Distance",
    "Location",
    "Boundary",
    "ServiceArea",
    "ServiceAreaRepository",
    "InMemoryServiceAreaRepository",
    "ServiceAreaRegistry",
    "Route",
    "RouteOptimizer",
    "DirectLineRouteOptimizer",
    "NearestNeighbourRouteOptimizer",
    "Waypoint",
]
