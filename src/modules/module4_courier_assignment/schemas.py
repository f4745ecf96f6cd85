"""
Pydantic schemas for Module 4 - Courier assignment
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.domain.models import Delivery, DeliveryPerson
from src.modules.module1_geospatial.schemas import Distance

from .constants import DEFAULT_GROWTH_FACTOR, DEFAULT_INITIAL_RADIUS_M, DEFAULT_MAX_RADIUS_M


class SearchPolicy(BaseModel):
    """Expanding-ring search parameters."""

    model_config = ConfigDict(frozen=True)

    initial_radius_m: float = Field(default=DEFAULT_INITIAL_RADIUS_M, gt=0)
    growth_factor: float = Field(default=DEFAULT_GROWTH_FACTOR, gt=1)
    max_radius_m: float = Field(default=DEFAULT_MAX_RADIUS_M, gt=0)

    @model_validator(mode="after")
    def validate_cap(self) -> "SearchPolicy":
        if self.max_radius_m < self.initial_radius_m:
            raise ValueError("max_radius_m must be >= initial_radius_m")
        return self

    def radii(self) -> List[Distance]:
        """Search radii from the initial one up to (and including) the cap."""
        radii = []
        radius = self.initial_radius_m
        while radius < self.max_radius_m:
            radii.append(Distance(meters=radius))
            radius *= self.growth_factor
        radii.append(Distance(meters=self.max_radius_m))
        return radii


class CandidateCourier(BaseModel):
    """A courier eligible for a delivery, with its distance to the origin."""

    model_config = ConfigDict(frozen=True)

    courier_id: str
    distance: Distance
    available_since: Optional[datetime] = None


@dataclass(frozen=True)
class AssignmentResult:
    """Outcome of a successful assignment (both entities already committed)."""

    delivery: Delivery
    courier: DeliveryPerson
    distance_to_origin: Distance
    search_radius: Distance
    candidates_tried: int
