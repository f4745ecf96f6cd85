"""
Constants for Module 3 - Dispatch
"""

DEFAULT_ROUTE_TIMEOUT_SECONDS = 3.0

DEFAULT_COMPENSATION_ATTEMPTS = 5
DEFAULT_COMPENSATION_BACKOFF_SECONDS = 0.2

DEFAULT_REDISPATCH_WINDOW_MINUTES = 15
DEFAULT_REDISPATCH_MAX_ATTEMPTS = 3

DEFAULT_CANCEL_REASON = "cancelled by request"

# Celery queues
INTAKE_QUEUE = "intake"
DISPATCH_QUEUE = "dispatch"
TRACKING_QUEUE = "tracking"
SWEEP_QUEUE = "sweeps"
EVENTS_QUEUE = "events"
DEFAULT_QUEUE = "default"

# Task name -> queue
TASK_QUEUES = {
    "create_service_area": INTAKE_QUEUE,
    "register_courier": INTAKE_QUEUE,
    "set_courier_shift": INTAKE_QUEUE,
    "create_delivery": INTAKE_QUEUE,
    "dispatch_delivery": DISPATCH_QUEUE,
    "cancel_dispatch": DISPATCH_QUEUE,
    "report_courier_location": TRACKING_QUEUE,
    "evict_stale_positions": SWEEP_QUEUE,
    "redispatch_failed_deliveries": SWEEP_QUEUE,
    "retry_pending_compensations": SWEEP_QUEUE,
    "relay_domain_event": EVENTS_QUEUE,
}

# Periodic sweep task -> settings attribute holding its interval in seconds
SWEEP_INTERVALS = {
    "evict_stale_positions": "eviction_sweep_interval_seconds",
    "redispatch_failed_deliveries": "redispatch_sweep_interval_seconds",
    "retry_pending_compensations": "compensation_sweep_interval_seconds",
}
