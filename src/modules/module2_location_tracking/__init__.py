"""
Module 2 - Location tracking

Authoritative store of the latest position of every courier in service,
updated concurrently by location reports and queried by proximity.
"""

from .schemas import LocationReport, NearbyCourier, TrackedPosition
from .tracker import InMemoryLocationTracker, LocationTracker
from .redis_tracker import RedisLocationTracker

__all__ = [
    "LocationReport",
    "NearbyCourier",
    "TrackedPosition",
    "LocationTracker",
    "InMemoryLocationTracker",
    "RedisLocationTracker",
]
