"""
Module 5 - Delivery tracking

Turns courier location updates into delivery progress, transit
inference and advisory anomaly events (off route, stalled).
"""

from .schemas import CourierUpdateResult, DeliveryProgress, TrackingPolicy
from .tracking_service import DeliveryTrackingService

__all__ = [
    "CourierUpdateResult",
    "DeliveryProgress",
    "TrackingPolicy",
    "DeliveryTrackingService",
]
