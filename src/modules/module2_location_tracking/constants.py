"""
Constants for Module 2 - Location tracking
"""

# A position older than this is ignored by proximity queries
DEFAULT_STALENESS_SECONDS = 300.0

# A position older than this is removed by the eviction sweep
DEFAULT_EVICTION_SECONDS = 900.0

# Device clocks running ahead of the server by more than this are rejected
DEFAULT_MAX_FUTURE_SKEW_SECONDS = 30.0

# Redis keys
GEO_INDEX_SUFFIX = "geo"
POSITION_KEY_SUFFIX = "pos"

# Optimistic transaction retries per report before giving up
REDIS_WATCH_RETRIES = 10
