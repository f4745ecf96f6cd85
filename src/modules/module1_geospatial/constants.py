"""
Constants for Module 1 - Geospatial primitives
"""

from enum import Enum

from src.config.constants import EARTH_RADIUS_M, METERS_PER_DEGREE

# Coordinates are stored with 8 decimals (~1 mm at the equator)
COORDINATE_PRECISION = 8

# Distances are stored with centimeter precision
DISTANCE_PRECISION = 2

# Tolerance (in squared degrees) for collinearity / on-edge tests
EDGE_TOLERANCE = 1e-12

MIN_BOUNDARY_VERTICES = 3

__all__ = [
    "EARTH_RADIUS_M",
    "METERS_PER_DEGREE",
    "COORDINATE_PRECISION",
    "DISTANCE_PRECISION",
    "EDGE_TOLERANCE",
    "MIN_BOUNDARY_VERTICES",
    "WaypointType",
]


class WaypointType(str, Enum):
    """Role of a point along a route."""
    START = "start"
    PICKUP = "pickup"
    INTERMEDIATE = "intermediate"
    DELIVERY = "delivery"
    END = "end"
