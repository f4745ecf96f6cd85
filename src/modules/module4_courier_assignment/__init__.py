"""
Module 4 - Courier assignment

Matches a delivery with the best free courier of its tenant.

This module provides:
- Expanding-ring spatial search over the LocationTracker
- Ranking by distance, then by time spent waiting for work
- Race-safe courier reservation committed together with the delivery
"""

from .assigner import DeliveryAssignmentService
from .reservation import CourierReservations
from .schemas import AssignmentResult, CandidateCourier, SearchPolicy
from .ranking import rank_candidates

__all__ = [
    "DeliveryAssignmentService",
    "CourierReservations",
    "AssignmentResult",
    "CandidateCourier",
    "SearchPolicy",
    "rank_candidates",
]
