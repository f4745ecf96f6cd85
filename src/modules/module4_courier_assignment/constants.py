"""
Constants for Module 4 - Courier assignment
"""

from enum import Enum

# Expanding-ring search defaults (meters)
DEFAULT_INITIAL_RADIUS_M = 2000.0
DEFAULT_GROWTH_FACTOR = 2.0
DEFAULT_MAX_RADIUS_M = 16000.0


class AssignmentFailure(str, Enum):
    """Why no courier could be reserved."""
    NO_AVAILABLE_COURIERS = "no_available_couriers"
    NO_COURIER_IN_RANGE = "no_courier_in_range"
    ALL_RESERVATIONS_LOST = "all_reservations_lost"
    ABORTED = "aborted"
