"""
Module 3 - Dispatch

Coordinates the delivery lifecycle and exposes it to callers and Celery.

This module provides:
- DispatchService: service area check, assignment, routing, persistence
- DispatchEngine: the facade used by tasks and callers
- CourierRoster: courier registration and shifts
- Celery tasks for intake, dispatch, location ingestion and periodic sweeps
"""

from .dispatcher import DispatchService
from .engine import DispatchEngine
from .roster import CourierRoster
from .celery_app import celery_app
from .event_relay import CeleryEventPublisher
from .tasks import (
    cancel_dispatch,
    create_delivery,
    create_service_area,
    dispatch_delivery,
    evict_stale_positions,
    redispatch_failed_deliveries,
    register_courier,
    relay_domain_event,
    report_courier_location,
    retry_pending_compensations,
    set_courier_shift,
)

__all__ = [
    "DispatchService",
    "DispatchEngine",
    "CourierRoster",
    "celery_app",
    "CeleryEventPublisher",
    "cancel_dispatch",
    "create_delivery",
    "create_service_area",
    "dispatch_delivery",
    "evict_stale_positions",
    "redispatch_failed_deliveries",
    "register_courier",
    "relay_domain_event",
    "report_courier_location",
    "retry_pending_compensations",
    "set_courier_shift",
]
