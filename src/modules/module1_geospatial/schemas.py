"""
Pydantic value objects for Module 1 - Geospatial primitives
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import COORDINATE_PRECISION, DISTANCE_PRECISION
from .utils import haversine_distance


class Distance(BaseModel):
    """Non-negative distance in meters."""

    model_config = ConfigDict(frozen=True)

    meters: float = Field(..., ge=0, description="Distance in meters")

    @field_validator("meters")
    @classmethod
    def round_meters(cls, v: float) -> float:
        return round(v, DISTANCE_PRECISION)

    @classmethod
    def of_meters(cls, meters: float) -> "Distance":
        return cls(meters=meters)

    @classmethod
    def of_kilometers(cls, kilometers: float) -> "Distance":
        return cls(meters=kilometers * 1000.0)

    @classmethod
    def zero(cls) -> "Distance":
        return cls(meters=0.0)

    @property
    def kilometers(self) -> float:
        return self.meters / 1000.0

    def __add__(self, other: "Distance") -> "Distance":
        if not isinstance(other, Distance):
            return NotImplemented
        return Distance(meters=self.meters + other.meters)

    def __mul__(self, factor: float) -> "Distance":
        if factor < 0:
            raise ValueError("Distance factor cannot be negative")
        return Distance(meters=self.meters * factor)

    def __lt__(self, other: "Distance") -> bool:
        if not isinstance(other, Distance):
            return NotImplemented
        return self.meters < other.meters

    def __le__(self, other: "Distance") -> bool:
        if not isinstance(other, Distance):
            return NotImplemented
        return self.meters <= other.meters

    def __gt__(self, other: "Distance") -> bool:
        if not isinstance(other, Distance):
            return NotImplemented
        return self.meters > other.meters

    def __ge__(self, other: "Distance") -> bool:
        if not isinstance(other, Distance):
            return NotImplemented
        return self.meters >= other.meters

    def __str__(self) -> str:
        if self.meters >= 1000:
            return f"{self.kilometers:.2f} km"
        return f"{self.meters:.0f} m"


class Location(BaseModel):
    """Geographic point in decimal degrees (WGS84)."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90, description="Latitude in decimal degrees")
    longitude: float = Field(..., ge=-180, le=180, description="Longitude in decimal degrees")

    @field_validator("latitude", "longitude")
    @classmethod
    def round_coordinate(cls, v: float) -> float:
        return round(v, COORDINATE_PRECISION)

    @classmethod
    def of(cls, latitude: float, longitude: float) -> "Location":
        return cls(latitude=latitude, longitude=longitude)

    def distance_to(self, other: "Location") -> Distance:
        """Great-circle distance to another location."""
        return Distance(meters=haversine_distance(
            self.latitude, self.longitude,
            other.latitude, other.longitude,
        ))

    def as_xy(self):
        """(longitude, latitude) pair used by planar polygon routines."""
        return (self.longitude, self.latitude)

    def __str__(self) -> str:
        return f"({self.latitude:.6f}, {self.longitude:.6f})"


class City(BaseModel):
    """City a service area belongs to."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="City name")
    country_code: str = Field(..., min_length=2, max_length=2, description="ISO 3166-1 alpha-2 code")
    center: Location = Field(..., description="Reference point of the city")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("City name cannot be blank")
        return v.strip()

    @field_validator("country_code")
    @classmethod
    def normalize_country_code(cls, v: str) -> str:
        return v.upper()

    @property
    def display_name(self) -> str:
        return f"{self.name}, {self.country_code}"

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, City):
            return NotImplemented
        return self.name == other.name and self.country_code == other.country_code

    def __hash__(self) -> int:
        return hash((self.name, self.country_code))
