"""
Pydantic schemas for Module 2 - Location tracking
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.modules.module1_geospatial.schemas import Distance, Location
from src.utils.clock import ensure_utc


class LocationReport(BaseModel):
    """Position report sent by a courier device."""

    model_config = ConfigDict(frozen=True)

    courier_id: str = Field(..., min_length=1)
    location: Location
    timestamp: datetime = Field(..., description="When the device took the fix")
    accuracy_m: Optional[float] = Field(None, ge=0, description="Horizontal accuracy in meters")
    speed_mps: Optional[float] = Field(None, ge=0, description="Ground speed in m/s")

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class TrackedPosition(BaseModel):
    """Latest accepted report of a courier. Replaced wholesale, never mutated."""

    model_config = ConfigDict(frozen=True)

    courier_id: str
    location: Location
    reported_at: datetime
    received_at: datetime
    accuracy_m: Optional[float] = None
    speed_mps: Optional[float] = None


class NearbyCourier(BaseModel):
    """Result row of a proximity query."""

    model_config = ConfigDict(frozen=True)

    courier_id: str
    distance: Distance
    position: TrackedPosition
