"""
Utility functions for Module 1 - Geospatial primitives

Planar helpers work on (x, y) = (longitude, latitude) pairs in degrees.
Distances are returned in meters.
"""

import math
from typing import Sequence, Tuple

from .constants import EARTH_RADIUS_M, EDGE_TOLERANCE

Point = Tuple[float, float]


def haversine_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    radius: float = EARTH_RADIUS_M
) -> float:
    """
    Calculate the great-circle distance between two points on Earth
    using the Haversine formula.

    Formula:
        d = 2R × arcsin(√(sin²((φ₂-φ₁)/2) + cos(φ₁)cos(φ₂)sin²((λ₂-λ₁)/2)))

    Args:
        lat1: Latitude of point 1 in degrees
        lon1: Longitude of point 1 in degrees
        lat2: Latitude of point 2 in degrees
        lon2: Longitude of point 2 in degrees
        radius: Earth radius in meters (default: 6371000)

    Returns:
        Distance in meters

    Example:
        >>> haversine_distance(48.8566, 2.3522, 51.5074, -0.1278)
        343556.0  # Paris to London in m
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = phi2 - phi1
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2 +
        math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    # Rounding can push a marginally above 1 for antipodal points
    c = 2 * math.asin(math.sqrt(min(1.0, a)))

    return radius * c


def spherical_polygon_area(
    ring: Sequence[Point],
    radius: float = EARTH_RADIUS_M
) -> float:
    """
    Area of a simple polygon on a sphere.

    Uses the line-integral form of the spherical excess:
        A = |Σ (λ₂-λ₁)(2 + sin φ₁ + sin φ₂)| × R² / 2

    The result does not depend on vertex orientation and stays consistent
    for convex and non-convex rings.

    Args:
        ring: Vertices as (longitude, latitude) pairs, implicitly closed
        radius: Sphere radius in meters

    Returns:
        Area in square meters
    """
    total = 0.0
    count = len(ring)
    for index in range(count):
        lon1, lat1 = ring[index]
        lon2, lat2 = ring[(index + 1) % count]
        total += math.radians(lon2 - lon1) * (
            2 + math.sin(math.radians(lat1)) + math.sin(math.radians(lat2))
        )
    return abs(total * radius * radius / 2.0)


def planar_signed_area(ring: Sequence[Point]) -> float:
    """Shoelace area in squared degrees (positive when counter-clockwise)."""
    total = 0.0
    count = len(ring)
    for index in range(count):
        x1, y1 = ring[index]
        x2, y2 = ring[(index + 1) % count]
        total += x1 * y2 - x2 * y1
    return total / 2.0


def cross(origin: Point, a: Point, b: Point) -> float:
    """Z component of (a - origin) × (b - origin)."""
    return (a[0] - origin[0]) * (b[1] - origin[1]) - (a[1] - origin[1]) * (b[0] - origin[0])


def point_on_segment(point: Point, start: Point, end: Point, tolerance: float = EDGE_TOLERANCE) -> bool:
    """True if ``point`` lies on the closed segment [start, end]."""
    if abs(cross(start, end, point)) > tolerance:
        return False
    return (
        min(start[0], end[0]) - tolerance <= point[0] <= max(start[0], end[0]) + tolerance
        and min(start[1], end[1]) - tolerance <= point[1] <= max(start[1], end[1]) + tolerance
    )


def _direction(value: float, tolerance: float) -> int:
    if value > tolerance:
        return 1
    if value < -tolerance:
        return -1
    return 0


def segments_intersect(
    p1: Point,
    p2: Point,
    q1: Point,
    q2: Point,
    tolerance: float = EDGE_TOLERANCE
) -> bool:
    """
    True if the closed segments [p1, p2] and [q1, q2] share at least one point.

    Touching endpoints and collinear overlaps count as intersections.
    """
    d1 = _direction(cross(q1, q2, p1), tolerance)
    d2 = _direction(cross(q1, q2, p2), tolerance)
    d3 = _direction(cross(p1, p2, q1), tolerance)
    d4 = _direction(cross(p1, p2, q2), tolerance)

    if d1 * d2 < 0 and d3 * d4 < 0:
        return True

    if d1 == 0 and point_on_segment(p1, q1, q2, tolerance):
        return True
    if d2 == 0 and point_on_segment(p2, q1, q2, tolerance):
        return True
    if d3 == 0 and point_on_segment(q1, p1, p2, tolerance):
        return True
    if d4 == 0 and point_on_segment(q2, p1, p2, tolerance):
        return True

    return False


def ray_crosses(point: Point, start: Point, end: Point) -> bool:
    """
    Odd-even rule step: does a ray cast from ``point`` towards +x cross the edge?
    """
    x, y = point
    xi, yi = start
    xj, yj = end
    if (yi > y) == (yj > y):
        return False
    return x < (xj - xi) * (y - yi) / (yj - yi) + xi


def local_projection(lat: float, lon: float, origin_lat: float, origin_lon: float) -> Point:
    """
    Equirectangular projection of (lat, lon) around an origin.

    Returns:
        (east, north) offsets in meters; accurate for city-scale spans
    """
    scale = math.radians(1.0) * EARTH_RADIUS_M
    east = (lon - origin_lon) * scale * math.cos(math.radians(origin_lat))
    north = (lat - origin_lat) * scale
    return east, north


def point_to_segment_distance(
    lat: float,
    lon: float,
    start: Tuple[float, float],
    end: Tuple[float, float]
) -> float:
    """
    Shortest distance in meters from a point to a segment.

    Args:
        lat, lon: The point
        start, end: Segment endpoints as (latitude, longitude)

    Returns:
        Distance in meters, computed in a local projection centered on the point
    """
    ax, ay = local_projection(start[0], start[1], lat, lon)
    bx, by = local_projection(end[0], end[1], lat, lon)
    dx, dy = bx - ax, by - ay
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return math.hypot(ax, ay)
    # Parameter of the projection of the origin (the point) on the segment
    t = max(0.0, min(1.0, -(ax * dx + ay * dy) / length_sq))
    return math.hypot(ax + t * dx, ay + t * dy)


def degrees_for_meters(meters: float, latitude: float) -> Tuple[float, float]:
    """
    Approximate (latitude, longitude) degree spans covering ``meters``.

    Used for bounding-box pre-filters; the longitude span widens toward the poles.
    """
    lat_span = math.degrees(meters / EARTH_RADIUS_M)
    cos_lat = math.cos(math.radians(latitude))
    if cos_lat < 1e-9:
        return lat_span, 360.0
    return lat_span, min(360.0, lat_span / cos_lat)
