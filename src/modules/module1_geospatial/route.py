"""
Routes and the RouteOptimizer port.

Real optimizers (third-party routing engines) live behind RouteOptimizer.
Two local strategies are provided: a direct-line route that keeps the
waypoint order (used as the degraded fallback) and a nearest-neighbour
ordering of intermediate stops.
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import List, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.config.constants import AVERAGE_CITY_SPEED_KMH

from .constants import WaypointType
from .schemas import Distance, Location
from .utils import point_to_segment_distance


class Waypoint(BaseModel):
    """One stop on a route."""

    model_config = ConfigDict(frozen=True)

    location: Location
    type: WaypointType
    sequence: int = Field(..., ge=0)


class Route(BaseModel):
    """Ordered polyline with distance and duration estimates."""

    model_config = ConfigDict(frozen=True)

    waypoints: Tuple[Waypoint, ...] = Field(..., min_length=2)
    total_distance: Distance
    estimated_duration: timedelta
    degraded: bool = Field(default=False, description="Built by the fallback strategy")

    @field_validator("waypoints")
    @classmethod
    def validate_sequence(cls, v: Tuple[Waypoint, ...]) -> Tuple[Waypoint, ...]:
        sequences = [waypoint.sequence for waypoint in v]
        if sequences != sorted(sequences) or len(set(sequences)) != len(sequences):
            raise ValueError("Waypoint sequence numbers must be strictly increasing")
        return v

    @classmethod
    def through(
        cls,
        locations: Sequence[Location],
        average_speed_kmh: float = AVERAGE_CITY_SPEED_KMH,
        degraded: bool = False,
    ) -> "Route":
        """
        Build a straight-segment route through the given locations in order.

        The first point is the START, the last the END and the rest
        INTERMEDIATE stops. Duration assumes a constant average speed.
        """
        if len(locations) < 2:
            raise ValueError("A route needs at least two locations")

        waypoints = []
        last_index = len(locations) - 1
        for index, location in enumerate(locations):
            if index == 0:
                waypoint_type = WaypointType.START
            elif index == last_index:
                waypoint_type = WaypointType.END
            else:
                waypoint_type = WaypointType.INTERMEDIATE
            waypoints.append(Waypoint(location=location, type=waypoint_type, sequence=index))

        total = Distance.zero()
        for start, end in zip(locations, locations[1:]):
            total = total + start.distance_to(end)

        return cls(
            waypoints=tuple(waypoints),
            total_distance=total,
            estimated_duration=estimate_duration(total, average_speed_kmh),
            degraded=degraded,
        )

    @property
    def origin(self) -> Location:
        return self.waypoints[0].location

    @property
    def destination(self) -> Location:
        return self.waypoints[-1].location

    def locations(self) -> List[Location]:
        return [waypoint.location for waypoint in self.waypoints]

    def deviation_of(self, location: Location) -> Distance:
        """Shortest distance from a location to the route polyline."""
        points = [(loc.latitude, loc.longitude) for loc in self.locations()]
        best = min(
            point_to_segment_distance(location.latitude, location.longitude, start, end)
            for start, end in zip(points, points[1:])
        )
        return Distance(meters=best)


def estimate_duration(distance: Distance, average_speed_kmh: float = AVERAGE_CITY_SPEED_KMH) -> timedelta:
    if average_speed_kmh <= 0:
        raise ValueError("average_speed_kmh must be positive")
    return timedelta(hours=distance.kilometers / average_speed_kmh)


class RouteOptimizer(ABC):
    """Port to a routing engine."""

    @abstractmethod
    def optimize(
        self,
        origin: Location,
        destination: Location,
        waypoints: Sequence[Location] = (),
    ) -> Route:
        """
        Compute a route from origin to destination through the waypoints.

        Args:
            origin: Start of the route
            destination: End of the route
            waypoints: Intermediate stops (the optimizer may reorder them)

        Returns:
            The computed Route
        """


class DirectLineRouteOptimizer(RouteOptimizer):
    """Straight segments in the given order; never fails, never blocks."""

    def __init__(self, average_speed_kmh: float = AVERAGE_CITY_SPEED_KMH, degraded: bool = False):
        self.average_speed_kmh = average_speed_kmh
        self.degraded = degraded

    def optimize(
        self,
        origin: Location,
        destination: Location,
        waypoints: Sequence[Location] = (),
    ) -> Route:
        return Route.through(
            [origin, *waypoints, destination],
            average_speed_kmh=self.average_speed_kmh,
            degraded=self.degraded,
        )


class NearestNeighbourRouteOptimizer(RouteOptimizer):
    """Greedy ordering: always visit the closest remaining stop next."""

    def __init__(self, average_speed_kmh: float = AVERAGE_CITY_SPEED_KMH):
        self.average_speed_kmh = average_speed_kmh

    def optimize(
        self,
        origin: Location,
        destination: Location,
        waypoints: Sequence[Location] = (),
    ) -> Route:
        remaining = list(waypoints)
        ordered = [origin]
        current = origin
        while remaining:
            closest = min(remaining, key=lambda stop: current.distance_to(stop).meters)
            remaining.remove(closest)
            ordered.append(closest)
            current = closest
        ordered.append(destination)
        return Route.through(ordered, average_speed_kmh=self.average_speed_kmh)
