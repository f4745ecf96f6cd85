"""Shared builders for the test suite."""

from datetime import datetime, timedelta, timezone

from src.bootstrap import build_engine
from src.config import Settings
from src.domain.events import InMemoryEventPublisher
from src.modules.module1_geospatial import Boundary, City, Location
from src.modules.module2_location_tracking import InMemoryLocationTracker

START = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)

TENANT = "tenant-1"
OTHER_TENANT = "tenant-2"

PARIS_CENTER = Location.of(48.8566, 2.3522)
PARIS = City(name="Paris", country_code="fr", center=PARIS_CENTER)


class ManualClock:
    """Clock advanced explicitly by the test."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def square(lat: float, lon: float, half_size: float) -> Boundary:
    """Axis-aligned square of ``2 * half_size`` degrees centred on (lat, lon)."""
    return Boundary.from_coordinates([
        (lat - half_size, lon - half_size),
        (lat - half_size, lon + half_size),
        (lat + half_size, lon + half_size),
        (lat + half_size, lon - half_size),
    ])


def make_settings(**overrides) -> Settings:
    values = dict(
        route_optimizer_timeout_seconds=2.0,
        compensation_backoff_seconds=0.0,
        log_format="text",
    )
    values.update(overrides)
    return Settings(**values)


class DispatchWorld:
    """Engine wired with in-memory adapters, a manual clock and a recording publisher."""

    def __init__(self, route_optimizer=None, **overrides):
        self.clock = ManualClock()
        self.events = InMemoryEventPublisher()
        self.config = make_settings(**overrides)
        self.tracker = InMemoryLocationTracker(
            staleness_seconds=self.config.staleness_threshold_seconds,
            eviction_seconds=self.config.eviction_threshold_seconds,
            clock=self.clock,
        )
        self.engine = build_engine(
            self.config,
            tracker=self.tracker,
            event_publisher=self.events,
            route_optimizer=route_optimizer,
            clock=self.clock,
        )
        self.area = self.engine.service_areas.create_service_area(
            TENANT, PARIS, square(PARIS_CENTER.latitude, PARIS_CENTER.longitude, 0.05)
        )

    def add_courier(self, lat: float, lon: float, tenant_id: str = TENANT, capacity: int = 1, name: str = "Courier"):
        courier = self.engine.register_courier(tenant_id, name, capacity)
        self.engine.courier_online(courier.id, tenant_id)
        self.tracker.report(courier.id, Location.of(lat, lon), self.clock())
        return courier

    def new_delivery(self, origin: Location = None, destination: Location = None, tenant_id: str = TENANT):
        return self.engine.create_delivery(
            tenant_id,
            origin or Location.of(48.8570, 2.3500),
            destination or Location.of(48.8700, 2.3700),
        )

    def courier(self, courier_id: str):
        return self.engine.dispatch_service.courier_repository.find_by_id(courier_id)

    def close(self) -> None:
        self.engine.shutdown()
