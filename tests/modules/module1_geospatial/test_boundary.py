"""Tests for Boundary polygons (Module 1)."""

from dataclasses import FrozenInstanceError

import pytest

from src.exceptions import InvalidGeometry
from src.modules.module1_geospatial.boundary import Boundary
from src.modules.module1_geospatial.schemas import Location


def unit_square() -> Boundary:
    return Boundary.from_coordinates([(0, 0), (0, 1), (1, 1), (1, 0)])


class TestBoundaryContains:
    """Test suite for point-in-polygon membership."""

    def setup_method(self):
        """Set up test fixtures."""
        self.square = unit_square()

    def test_interior_point(self):
        """Test a point strictly inside the square."""
        assert self.square.contains(Location.of(0.5, 0.5))

    def test_point_on_edge_is_inside(self):
        """Test that edge points are members."""
        assert self.square.contains(Location.of(0.0, 0.5))
        assert self.square.contains(Location.of(0.5, 1.0))

    def test_vertex_is_inside(self):
        """Test that vertices are members."""
        for lat, lon in [(0, 0), (0, 1), (1, 1), (1, 0)]:
            assert self.square.contains(Location.of(lat, lon))

    def test_far_point_is_outside(self):
        """Test a point far from the polygon."""
        assert not self.square.contains(Location.of(10, 10))

    def test_point_just_outside(self):
        """Test a point barely beyond an edge."""
        assert not self.square.contains(Location.of(0.5, 1.0001))

    def test_concave_polygon_notch(self):
        """Test a point inside the bounding box but in the notch of an L shape."""
        l_shape = Boundary.from_coordinates([
            (0, 0), (0, 2), (1, 2), (1, 1), (2, 1), (2, 0),
        ])

        assert l_shape.contains(Location.of(0.5, 1.5))
        assert l_shape.contains(Location.of(1.5, 0.5))
        assert not l_shape.contains(Location.of(1.5, 1.5))

    def test_reflex_vertex_is_inside(self):
        """Test the inner corner of an L shape."""
        l_shape = Boundary.from_coordinates([
            (0, 0), (0, 2), (1, 2), (1, 1), (2, 1), (2, 0),
        ])

        assert l_shape.contains(Location.of(1, 1))


class TestBoundaryArea:
    """Test suite for geodesic area."""

    def test_one_degree_square_at_equator(self):
        """Test the area of a 1°×1° cell on the equator."""
        area = unit_square().area_square_meters()

        assert area == pytest.approx(1.2364e10, rel=0.01)

    def test_orientation_does_not_change_area(self):
        """Test clockwise and counter-clockwise rings give the same area."""
        clockwise = unit_square()
        counter = Boundary.from_coordinates([(0, 0), (1, 0), (1, 1), (0, 1)])

        assert clockwise.area_square_meters() == pytest.approx(counter.area_square_meters())

    def test_concave_area_is_sum_of_parts(self):
        """Test an L shape equals the sum of its three unit cells."""
        l_shape = Boundary.from_coordinates([
            (0, 0), (0, 2), (1, 2), (1, 1), (2, 1), (2, 0),
        ])
        cells = [
            Boundary.from_coordinates([(0, 0), (0, 1), (1, 1), (1, 0)]),
            Boundary.from_coordinates([(0, 1), (0, 2), (1, 2), (1, 1)]),
            Boundary.from_coordinates([(1, 0), (1, 1), (2, 1), (2, 0)]),
        ]

        expected = sum(cell.area_square_meters() for cell in cells)
        assert l_shape.area_square_meters() == pytest.approx(expected, rel=1e-6)

    def test_area_shrinks_towards_pole(self):
        """Test that a degree cell at 60° is about half the equatorial one."""
        equator = unit_square().area_square_meters()
        north = Boundary.from_coordinates([(60, 0), (60, 1), (61, 1), (61, 0)]).area_square_meters()

        assert north / equator == pytest.approx(0.49, abs=0.02)


class TestBoundaryValidation:
    """Test suite for geometry validation."""

    def test_too_few_vertices(self):
        """Test that two vertices are rejected."""
        with pytest.raises(InvalidGeometry):
            Boundary.from_coordinates([(0, 0), (1, 1)])

    def test_empty(self):
        """Test that no vertices are rejected."""
        with pytest.raises(InvalidGeometry):
            Boundary.of([])

    def test_none(self):
        """Test that None is rejected."""
        with pytest.raises(InvalidGeometry):
            Boundary.of(None)

    def test_self_intersecting_bowtie(self):
        """Test that a bow-tie ring is rejected."""
        with pytest.raises(InvalidGeometry):
            Boundary.from_coordinates([(0, 0), (1, 1), (0, 1), (1, 0)])

    def test_collinear_vertices(self):
        """Test that a zero-area ring is rejected."""
        with pytest.raises(InvalidGeometry):
            Boundary.from_coordinates([(0, 0), (1, 1), (2, 2)])

    def test_duplicate_consecutive_vertex(self):
        """Test that a zero-length edge is rejected."""
        with pytest.raises(InvalidGeometry):
            Boundary.from_coordinates([(0, 0), (0, 1), (0, 1), (1, 1)])

    def test_explicitly_closed_ring(self):
        """Test that repeating the first vertex at the end is rejected."""
        with pytest.raises(InvalidGeometry):
            Boundary.from_coordinates([(0, 0), (0, 1), (1, 1), (0, 0)])

    def test_out_of_range_coordinate(self):
        """Test that invalid latitudes surface as InvalidGeometry."""
        with pytest.raises(InvalidGeometry):
            Boundary.from_coordinates([(0, 0), (0, 1), (95, 1)])

    def test_invalid_geometry_is_a_value_error(self):
        """Test that callers catching ValueError also catch InvalidGeometry."""
        with pytest.raises(ValueError):
            Boundary.from_coordinates([(0, 0)])

    def test_vertices_are_immutable(self):
        """Test that a boundary cannot be mutated after construction."""
        boundary = unit_square()

        with pytest.raises(FrozenInstanceError):
            boundary.vertices = ()
        assert len(boundary) == 4


class TestBoundaryIntersects:
    """Test suite for polygon intersection."""

    def setup_method(self):
        """Set up test fixtures."""
        self.square = unit_square()

    def test_intersects_itself(self):
        """Test that a polygon intersects itself."""
        assert self.square.intersects(self.square)

    def test_crossing_edges(self):
        """Test two overlapping squares."""
        shifted = Boundary.from_coordinates([(0.5, 0.5), (0.5, 1.5), (1.5, 1.5), (1.5, 0.5)])

        assert self.square.intersects(shifted)
        assert shifted.intersects(self.square)

    def test_full_containment(self):
        """Test a small polygon strictly inside a larger one."""
        inner = Boundary.from_coordinates([(0.4, 0.4), (0.4, 0.6), (0.6, 0.6), (0.6, 0.4)])

        assert self.square.intersects(inner)
        assert inner.intersects(self.square)

    def test_touching_edge(self):
        """Test squares sharing one edge."""
        neighbour = Boundary.from_coordinates([(0, 1), (0, 2), (1, 2), (1, 1)])

        assert self.square.intersects(neighbour)

    def test_disjoint(self):
        """Test far apart polygons."""
        far = Boundary.from_coordinates([(5, 5), (5, 6), (6, 6), (6, 5)])

        assert not self.square.intersects(far)

    def test_disjoint_inside_bounding_box(self):
        """Test a polygon in the notch of an L shape (bounding boxes overlap)."""
        l_shape = Boundary.from_coordinates([
            (0, 0), (0, 2), (1, 2), (1, 1), (2, 1), (2, 0),
        ])
        notch = Boundary.from_coordinates([(1.2, 1.2), (1.2, 1.8), (1.8, 1.8), (1.8, 1.2)])

        assert not l_shape.intersects(notch)


class TestBoundaryHelpers:
    """Test suite for bounding box and centroid."""

    def test_bounding_box(self):
        """Test (min_lon, min_lat, max_lon, max_lat) order."""
        boundary = Boundary.from_coordinates([(10, 20), (10, 22), (11, 22), (11, 20)])

        assert boundary.bounding_box() == (20, 10, 22, 11)

    def test_centroid_of_square(self):
        """Test the vertex average of a square."""
        centroid = unit_square().centroid()

        assert centroid == Location.of(0.5, 0.5)
