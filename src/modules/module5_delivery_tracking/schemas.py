"""
Pydantic schemas for Module 5 - Delivery tracking
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.config.constants import AVERAGE_CITY_SPEED_KMH, DeliveryStatus
from src.modules.module1_geospatial.schemas import Distance, Location

from .constants import (
    DEFAULT_MOVEMENT_THRESHOLD_M,
    DEFAULT_OFF_ROUTE_GRACE_SECONDS,
    DEFAULT_OFF_ROUTE_THRESHOLD_M,
    DEFAULT_STALL_THRESHOLD_SECONDS,
)


class TrackingPolicy(BaseModel):
    """Thresholds driving status inference and anomaly detection."""

    model_config = ConfigDict(frozen=True)

    movement_threshold_m: float = Field(default=DEFAULT_MOVEMENT_THRESHOLD_M, ge=0)
    off_route_threshold_m: float = Field(default=DEFAULT_OFF_ROUTE_THRESHOLD_M, gt=0)
    off_route_grace_seconds: float = Field(default=DEFAULT_OFF_ROUTE_GRACE_SECONDS, ge=0)
    stall_threshold_seconds: float = Field(default=DEFAULT_STALL_THRESHOLD_SECONDS, gt=0)
    average_speed_kmh: float = Field(default=AVERAGE_CITY_SPEED_KMH, gt=0)


class DeliveryProgress(BaseModel):
    """Point-in-time view of a delivery in progress."""

    delivery_id: str
    status: DeliveryStatus
    courier_id: Optional[str] = None
    courier_location: Optional[Location] = None
    remaining_distance: Optional[Distance] = None
    progress: float = Field(default=0.0, ge=0, le=1, description="Share of the trip completed")
    estimated_arrival: Optional[datetime] = None
    is_overdue: bool = False
    off_route: bool = False
    stalled: bool = False
    recorded_at: datetime

    @property
    def status_message(self) -> str:
        return STATUS_MESSAGES[self.status]


class CourierUpdateResult(BaseModel):
    """Outcome of one courier location update."""

    courier_id: str
    applied: bool
    deliveries: List[DeliveryProgress] = Field(default_factory=list)


STATUS_MESSAGES = {
    DeliveryStatus.PENDING: "Waiting for a courier",
    DeliveryStatus.ASSIGNED: "Courier is heading to pickup",
    DeliveryStatus.PICKED_UP: "Package picked up",
    DeliveryStatus.IN_TRANSIT: "Package is on the way",
    DeliveryStatus.DELIVERED: "Package delivered",
    DeliveryStatus.FAILED: "Delivery failed",
    DeliveryStatus.CANCELLED: "Delivery cancelled",
}
