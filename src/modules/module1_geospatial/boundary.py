"""
Polygon boundary of a service area.

Vertices are (latitude, longitude) Locations; the ring is implicitly closed
between the last and the first vertex. Planar tests treat longitude as x
and latitude as y, which is exact enough at city scale. Rings crossing the
antimeridian are not supported.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

from src.exceptions import InvalidGeometry

from .constants import EDGE_TOLERANCE, MIN_BOUNDARY_VERTICES
from .schemas import Location
from .utils import (
    Point,
    cross,
    planar_signed_area,
    point_on_segment,
    ray_crosses,
    segments_intersect,
    spherical_polygon_area,
)

BoundingBox = Tuple[float, float, float, float]  # min_lon, min_lat, max_lon, max_lat


@dataclass(frozen=True)
class Boundary:
    """Immutable simple polygon."""

    vertices: Tuple[Location, ...]
    _ring: Tuple[Point, ...] = field(init=False, repr=False, compare=False)
    _bbox: BoundingBox = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        vertices = tuple(self.vertices) if self.vertices is not None else ()
        if len(vertices) < MIN_BOUNDARY_VERTICES:
            raise InvalidGeometry(
                f"Boundary needs at least {MIN_BOUNDARY_VERTICES} vertices, got {len(vertices)}"
            )
        for index, vertex in enumerate(vertices):
            if not isinstance(vertex, Location):
                raise InvalidGeometry(f"Vertex {index} is not a Location: {vertex!r}")

        ring = tuple(vertex.as_xy() for vertex in vertices)
        _validate_ring(ring)

        xs = [x for x, _ in ring]
        ys = [y for _, y in ring]
        object.__setattr__(self, "vertices", vertices)
        object.__setattr__(self, "_ring", ring)
        object.__setattr__(self, "_bbox", (min(xs), min(ys), max(xs), max(ys)))

    @classmethod
    def of(cls, vertices: Iterable[Location]) -> "Boundary":
        if vertices is None:
            raise InvalidGeometry("Boundary vertices cannot be None")
        return cls(tuple(vertices))

    @classmethod
    def from_coordinates(cls, coordinates: Iterable[Tuple[float, float]]) -> "Boundary":
        """Build a boundary from (latitude, longitude) pairs."""
        try:
            vertices = [Location(latitude=lat, longitude=lon) for lat, lon in coordinates]
        except ValueError as exc:
            raise InvalidGeometry(f"Invalid boundary coordinate: {exc}") from exc
        return cls.of(vertices)

    def bounding_box(self) -> BoundingBox:
        return self._bbox

    def contains(self, point: Location) -> bool:
        """
        Point-in-polygon test.

        Points lying exactly on an edge or a vertex are considered inside.

        Args:
            point: Location to test

        Returns:
            True if the point is inside or on the boundary
        """
        xy = point.as_xy()
        min_x, min_y, max_x, max_y = self._bbox
        if not (
            min_x - EDGE_TOLERANCE <= xy[0] <= max_x + EDGE_TOLERANCE
            and min_y - EDGE_TOLERANCE <= xy[1] <= max_y + EDGE_TOLERANCE
        ):
            return False

        inside = False
        for start, end in self._edges():
            if point_on_segment(xy, start, end):
                return True
            if ray_crosses(xy, start, end):
                inside = not inside
        return inside

    def intersects(self, other: "Boundary") -> bool:
        """
        True if the two polygons share at least one point.

        Covers crossing edges, touching edges or vertices, and one polygon
        fully containing the other.
        """
        if not _boxes_overlap(self._bbox, other._bbox):
            return False

        for start, end in self._edges():
            for other_start, other_end in other._edges():
                if segments_intersect(start, end, other_start, other_end):
                    return True

        # No edge contact: either disjoint or one contains the other
        return other.contains(self.vertices[0]) or self.contains(other.vertices[0])

    def area_square_meters(self) -> float:
        return spherical_polygon_area(self._ring)

    def centroid(self) -> Location:
        """Vertex average; inside the polygon for convex shapes only."""
        count = len(self.vertices)
        return Location(
            latitude=sum(v.latitude for v in self.vertices) / count,
            longitude=sum(v.longitude for v in self.vertices) / count,
        )

    def _edges(self) -> List[Tuple[Point, Point]]:
        ring = self._ring
        return [(ring[i], ring[(i + 1) % len(ring)]) for i in range(len(ring))]

    def __len__(self) -> int:
        return len(self.vertices)


def _boxes_overlap(a: BoundingBox, b: BoundingBox) -> bool:
    return not (
        a[2] < b[0] - EDGE_TOLERANCE
        or b[2] < a[0] - EDGE_TOLERANCE
        or a[3] < b[1] - EDGE_TOLERANCE
        or b[3] < a[1] - EDGE_TOLERANCE
    )


def _validate_ring(ring: Sequence[Point]) -> None:
    """Reject zero-length edges, spikes, zero area and self-intersections."""
    count = len(ring)

    for i in range(count):
        if ring[i] == ring[(i + 1) % count]:
            raise InvalidGeometry(
                f"Zero-length edge between vertices {i} and {(i + 1) % count}"
            )

    # Collinear back-tracking at a vertex (a spike of zero width)
    for i in range(count):
        prev_point = ring[i - 1]
        vertex = ring[i]
        next_point = ring[(i + 1) % count]
        if abs(cross(vertex, prev_point, next_point)) <= EDGE_TOLERANCE:
            dot = (
                (prev_point[0] - vertex[0]) * (next_point[0] - vertex[0])
                + (prev_point[1] - vertex[1]) * (next_point[1] - vertex[1])
            )
            if dot > 0:
                raise InvalidGeometry(f"Degenerate spike at vertex {i}")

    if abs(planar_signed_area(ring)) <= EDGE_TOLERANCE:
        raise InvalidGeometry("Boundary has zero area")

    edges = [(ring[i], ring[(i + 1) % count]) for i in range(count)]
    for i in range(count):
        for j in range(i + 2, count):
            if i == 0 and j == count - 1:
                continue  # adjacent through the closing edge
            if segments_intersect(edges[i][0], edges[i][1], edges[j][0], edges[j][1]):
                raise InvalidGeometry(f"Boundary is self-intersecting (edges {i} and {j})")
