"""
Engine settings, read from DISPATCH_* environment variables or a .env file.

Every threshold used by tracking, search, routing and the sweeps lives
here so that workers and tests can be tuned without code changes.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Dispatch engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="DISPATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "dispatch-engine"
    environment: str = "development"

    # Shared by the Redis location tracker and, unless overridden, Celery
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: Optional[str] = None
    celery_result_backend: Optional[str] = None

    @property
    def celery_broker(self) -> str:
        return self.celery_broker_url or self.redis_url

    @property
    def celery_backend(self) -> str:
        return self.celery_result_backend or self.redis_url

    # Location tracking
    location_tracker_backend: Literal["memory", "redis"] = "memory"
    location_key_prefix: str = "dispatch:courier"
    staleness_threshold_seconds: float = Field(default=300.0, gt=0)
    eviction_threshold_seconds: float = Field(default=900.0, gt=0)
    max_future_skew_seconds: float = Field(default=30.0, ge=0)

    # Courier search
    search_initial_radius_m: float = Field(default=2000.0, gt=0)
    search_radius_growth_factor: float = Field(default=2.0, gt=1)
    search_max_radius_m: float = Field(default=16000.0, gt=0)

    # Routing
    route_optimizer_timeout_seconds: float = Field(default=3.0, gt=0)
    route_optimizer_workers: int = Field(default=4, ge=1)
    average_speed_kmh: float = Field(default=30.0, gt=0)

    # Delivery tracking
    movement_threshold_m: float = Field(default=50.0, ge=0)
    off_route_threshold_m: float = Field(default=250.0, gt=0)
    off_route_grace_seconds: float = Field(default=120.0, ge=0)
    stall_threshold_seconds: float = Field(default=300.0, gt=0)

    # Sweeps
    redispatch_window_minutes: int = Field(default=15, ge=1)
    redispatch_max_attempts: int = Field(default=3, ge=1)
    compensation_max_attempts: int = Field(default=5, ge=1)
    compensation_backoff_seconds: float = Field(default=0.2, ge=0)
    eviction_sweep_interval_seconds: float = 60.0
    redispatch_sweep_interval_seconds: float = 120.0
    compensation_sweep_interval_seconds: float = 30.0

    # Events
    relay_events_via_celery: bool = False

    # Worker pool; the engine state lives in a single process
    worker_pool: Literal["threads", "solo"] = "threads"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
