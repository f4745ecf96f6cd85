from .settings import Settings, settings, get_settings
from .constants import (
    EARTH_RADIUS_M,
    AVERAGE_CITY_SPEED_KMH,
    CourierStatus,
    DeliveryStatus,
    FailureReason,
)

__all__ = [
    "Settings",
    "settings",
    "get_settings",
    "EARTH_RADIUS_M",
    "AVERAGE_CITY_SPEED_KMH",
    "CourierStatus",
    "DeliveryStatus",
    "FailureReason",
]
