"""
Candidate Ranking - Phase 2 of Module 4

Closest courier first; among equally distant couriers, the one waiting
longest for work; courier id as the final deterministic tie-breaker.
"""

from datetime import datetime, timezone
from typing import List, Sequence

from .schemas import CandidateCourier

# Couriers without an availability timestamp rank after those with one
_NEVER = datetime.max.replace(tzinfo=timezone.utc)


def ranking_key(candidate: CandidateCourier):
    return (
        candidate.distance.meters,
        candidate.available_since or _NEVER,
        candidate.courier_id,
    )


def rank_candidates(candidates: Sequence[CandidateCourier]) -> List[CandidateCourier]:
    """
    Order candidates by preference.

    Args:
        candidates: Couriers found by the spatial filter

    Returns:
        New list, best candidate first
    """
    return sorted(candidates, key=ranking_key)
