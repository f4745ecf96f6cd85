"""
Application constants and enumerations.
"""

from enum import Enum

# Earth model
EARTH_RADIUS_M = 6_371_000.0
METERS_PER_DEGREE = 111_320.0

# Fallback routing
AVERAGE_CITY_SPEED_KMH = 30.0

# Courier capacity
DEFAULT_COURIER_CAPACITY = 1


class CourierStatus(str, Enum):
    """Availability of a delivery person."""
    OFFLINE = "offline"
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    EN_ROUTE = "en_route"


class DeliveryStatus(str, Enum):
    """Lifecycle of a delivery."""
    PENDING = "pending"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_DELIVERY_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_DELIVERY_STATUSES


TERMINAL_DELIVERY_STATUSES = frozenset(
    {DeliveryStatus.DELIVERED, DeliveryStatus.FAILED, DeliveryStatus.CANCELLED}
)

# Statuses in which a courier is committed to the delivery
ACTIVE_DELIVERY_STATUSES = frozenset(
    {DeliveryStatus.ASSIGNED, DeliveryStatus.PICKED_UP, DeliveryStatus.IN_TRANSIT}
)


class FailureReason(str, Enum):
    """Why a delivery ended up FAILED."""
    NO_COURIER_AVAILABLE = "no_courier_available"
    DELIVERY_FAILED = "delivery_failed"
    OUTSIDE_SERVICE_AREA = "outside_service_area"
