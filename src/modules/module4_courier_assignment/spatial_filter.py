"""
Spatial Filter - Phase 1 of Module 4

Finds eligible couriers around the delivery origin by querying the
LocationTracker with a radius that widens geometrically up to a cap.
"""

import logging
from typing import Dict, Iterator, List, Set, Tuple

from src.domain.models import DeliveryPerson
from src.modules.module1_geospatial.schemas import Distance, Location
from src.modules.module2_location_tracking.tracker import LocationTracker

from .schemas import CandidateCourier, SearchPolicy

logger = logging.getLogger(__name__)


class SpatialFilter:
    """
    Expanding-ring candidate search.

    A courier C is a candidate at radius r if:
        - C is in the eligible set (tenant, availability, capacity)
        - the tracker holds a fresh position for C
        - d(C, origin) ≤ r
    """

    def __init__(self, tracker: LocationTracker, policy: SearchPolicy):
        """
        Initialize spatial filter.

        Args:
            tracker: Source of courier positions
            policy: Radius growth policy
        """
        self.tracker = tracker
        self.policy = policy

    def rings(
        self,
        origin: Location,
        eligible: Dict[str, DeliveryPerson],
        exclude: Set[str],
    ) -> Iterator[Tuple[Distance, List[CandidateCourier]]]:
        """
        Yield (radius, new candidates) for each search ring.

        Candidates already yielded (or listed in ``exclude``) are not
        repeated in wider rings; rings adding nobody are skipped.

        Args:
            origin: Delivery pickup point
            eligible: Couriers allowed to take the delivery, by id
            exclude: Courier ids to skip (mutated by the caller between rings)
        """
        seen: Set[str] = set()
        for radius in self.policy.radii():
            nearby = self.tracker.nearby_positions(origin, radius)
            candidates = [
                CandidateCourier(
                    courier_id=row.courier_id,
                    distance=row.distance,
                    available_since=eligible[row.courier_id].available_since,
                )
                for row in nearby
                if row.courier_id in eligible
                and row.courier_id not in exclude
                and row.courier_id not in seen
            ]
            seen.update(c.courier_id for c in candidates)
            logger.debug(
                f"Search ring {radius}: {len(nearby)} nearby, {len(candidates)} new candidates"
            )
            if candidates:
                yield radius, candidates
