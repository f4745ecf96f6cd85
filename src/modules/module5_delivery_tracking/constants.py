"""
Constants for Module 5 - Delivery tracking
"""

# Moving less than this counts as standing still
DEFAULT_MOVEMENT_THRESHOLD_M = 50.0

# Distance from the planned route beyond which a courier is off route
DEFAULT_OFF_ROUTE_THRESHOLD_M = 250.0

# How long a courier may stay off route before it is flagged
DEFAULT_OFF_ROUTE_GRACE_SECONDS = 120.0

# How long a carrying courier may stand still before it is flagged
DEFAULT_STALL_THRESHOLD_SECONDS = 300.0
