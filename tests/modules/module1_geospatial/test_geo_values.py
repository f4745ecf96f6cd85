"""Tests for geospatial value objects and helpers (Module 1)."""

import pytest
from pydantic import ValidationError

from src.modules.module1_geospatial.schemas import City, Distance, Location
from src.modules.module1_geospatial.utils import (
    degrees_for_meters,
    haversine_distance,
    point_to_segment_distance,
)


class TestLocation:
    """Test suite for Location."""

    def test_equality_by_value(self):
        """Test that two locations with the same coordinates are equal."""
        assert Location.of(48.8566, 2.3522) == Location.of(48.8566, 2.3522)
        assert hash(Location.of(48.8566, 2.3522)) == hash(Location.of(48.8566, 2.3522))

    def test_latitude_range(self):
        """Test latitude bounds."""
        with pytest.raises(ValidationError):
            Location.of(90.5, 0)

    def test_longitude_range(self):
        """Test longitude bounds."""
        with pytest.raises(ValidationError):
            Location.of(0, -180.5)

    def test_immutable(self):
        """Test that coordinates cannot be reassigned."""
        location = Location.of(1, 2)

        with pytest.raises(ValidationError):
            location.latitude = 3

    def test_distance_paris_london(self):
        """Test a known great-circle distance."""
        paris = Location.of(48.8566, 2.3522)
        london = Location.of(51.5074, -0.1278)

        assert paris.distance_to(london).kilometers == pytest.approx(343.5, rel=0.01)

    def test_distance_is_symmetric(self):
        """Test d(a, b) == d(b, a)."""
        a = Location.of(48.85, 2.35)
        b = Location.of(48.87, 2.30)

        assert a.distance_to(b) == b.distance_to(a)

    def test_distance_to_self(self):
        """Test that a location is at zero distance from itself."""
        location = Location.of(10, 10)

        assert location.distance_to(location) == Distance.zero()


class TestDistance:
    """Test suite for Distance."""

    def test_negative_rejected(self):
        """Test that distances are non-negative."""
        with pytest.raises(ValidationError):
            Distance(meters=-1)

    def test_addition(self):
        """Test that addition stays a Distance."""
        total = Distance.of_meters(400) + Distance.of_kilometers(1.2)

        assert total == Distance.of_meters(1600)

    def test_ordering(self):
        """Test comparisons."""
        assert Distance.of_meters(10) < Distance.of_meters(20)
        assert Distance.of_meters(20) >= Distance.of_meters(20)
        assert max(Distance.of_meters(5), Distance.of_meters(7)) == Distance.of_meters(7)

    def test_scaling(self):
        """Test multiplication by a factor."""
        assert Distance.of_meters(100) * 2.5 == Distance.of_meters(250)

        with pytest.raises(ValueError):
            Distance.of_meters(100) * -1

    def test_str(self):
        """Test human-readable formatting."""
        assert str(Distance.of_meters(850)) == "850 m"
        assert str(Distance.of_meters(2500)) == "2.50 km"


class TestCity:
    """Test suite for City."""

    def test_country_code_normalized(self):
        """Test upper-casing of the country code."""
        city = City(name="Lyon", country_code="fr", center=Location.of(45.76, 4.83))

        assert city.country_code == "FR"
        assert city.display_name == "Lyon, FR"

    def test_blank_name_rejected(self):
        """Test that whitespace-only names are rejected."""
        with pytest.raises(ValidationError):
            City(name="   ", country_code="FR", center=Location.of(45.76, 4.83))

    def test_equality_ignores_center(self):
        """Test that cities are identified by name and country."""
        a = City(name="Lyon", country_code="FR", center=Location.of(45.76, 4.83))
        b = City(name="Lyon", country_code="FR", center=Location.of(45.70, 4.80))

        assert a == b
        assert len({a, b}) == 1


class TestGeoHelpers:
    """Test suite for the geometry helpers."""

    def test_haversine_one_degree_of_latitude(self):
        """Test that one degree of latitude is about 111 km."""
        assert haversine_distance(0, 0, 1, 0) == pytest.approx(111_195, rel=0.001)

    def test_point_to_segment_projection(self):
        """Test distance to the interior of a segment."""
        # Segment along the equator, point 0.01° north of its middle
        distance = point_to_segment_distance(0.01, 0.5, (0.0, 0.0), (0.0, 1.0))

        assert distance == pytest.approx(1112, rel=0.01)

    def test_point_to_segment_endpoint(self):
        """Test distance beyond the end of a segment."""
        distance = point_to_segment_distance(0.0, 1.01, (0.0, 0.0), (0.0, 1.0))

        assert distance == pytest.approx(1112, rel=0.01)

    def test_degrees_for_meters_widens_with_latitude(self):
        """Test that longitude spans grow toward the poles."""
        lat_span, lon_span_equator = degrees_for_meters(1000, 0)
        _, lon_span_north = degrees_for_meters(1000, 60)

        assert lat_span == pytest.approx(0.009, rel=0.01)
        assert lon_span_north == pytest.approx(2 * lon_span_equator, rel=0.01)
