"""
LocationTracker port and the in-memory reference adapter.

Each courier owns a slot holding its latest TrackedPosition and a lock.
Writers for one courier serialize on that lock only; readers never lock:
positions are immutable and swapped by reference, so a reader sees either
the old or the new position, never a mix. Proximity scans iterate a
snapshot of the slot table.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from src.modules.module1_geospatial.schemas import Distance, Location
from src.modules.module1_geospatial.utils import degrees_for_meters
from src.utils.clock import Clock, ensure_utc, utc_now

from .constants import (
    DEFAULT_EVICTION_SECONDS,
    DEFAULT_MAX_FUTURE_SKEW_SECONDS,
    DEFAULT_STALENESS_SECONDS,
)
from .schemas import LocationReport, NearbyCourier, TrackedPosition

logger = logging.getLogger(__name__)


class LocationTracker(ABC):
    """Authoritative store of the latest position of each courier."""

    def __init__(
        self,
        staleness_seconds: float = DEFAULT_STALENESS_SECONDS,
        eviction_seconds: float = DEFAULT_EVICTION_SECONDS,
        max_future_skew_seconds: float = DEFAULT_MAX_FUTURE_SKEW_SECONDS,
        clock: Clock = utc_now,
    ):
        self.staleness = timedelta(seconds=staleness_seconds)
        self.eviction_age = timedelta(seconds=eviction_seconds)
        self.max_future_skew = timedelta(seconds=max_future_skew_seconds)
        self.clock = clock

    def report(
        self,
        courier_id: str,
        location: Location,
        timestamp: datetime,
        accuracy_m: Optional[float] = None,
        speed_mps: Optional[float] = None,
    ) -> bool:
        """
        Record a position report.

        A report older than the stored one is ignored (last write wins by
        event time, not arrival time).

        Args:
            courier_id: Reporting courier
            location: Reported position
            timestamp: Device time of the fix
            accuracy_m: Optional horizontal accuracy
            speed_mps: Optional ground speed

        Returns:
            True if the report became the courier's current position
        """
        report = LocationReport(
            courier_id=courier_id,
            location=location,
            timestamp=timestamp,
            accuracy_m=accuracy_m,
            speed_mps=speed_mps,
        )
        return self.submit(report)

    def submit(self, report: LocationReport) -> bool:
        now = self.clock()
        if report.timestamp - now > self.max_future_skew:
            logger.warning(
                f"Rejected report from courier {report.courier_id}: timestamp "
                f"{report.timestamp.isoformat()} is ahead of server time",
                extra={"event": "location_report_rejected", "courier_id": report.courier_id},
            )
            return False

        position = TrackedPosition(
            courier_id=report.courier_id,
            location=report.location,
            reported_at=report.timestamp,
            received_at=now,
            accuracy_m=report.accuracy_m,
            speed_mps=report.speed_mps,
        )
        applied = self._store(position)
        if not applied:
            logger.debug(
                f"Out-of-order report from courier {report.courier_id} ignored",
                extra={"event": "location_report_out_of_order", "courier_id": report.courier_id},
            )
        return applied

    def current_location(self, courier_id: str) -> Optional[Location]:
        position = self.current_position(courier_id)
        return position.location if position is not None else None

    @abstractmethod
    def current_position(self, courier_id: str) -> Optional[TrackedPosition]:
        """Latest accepted position, stale or not."""

    @abstractmethod
    def nearby_positions(
        self, center: Location, radius: Distance, now: Optional[datetime] = None
    ) -> List[NearbyCourier]:
        """Fresh positions within ``radius``, closest first."""

    def find_nearby(
        self, center: Location, radius: Distance, now: Optional[datetime] = None
    ) -> List[str]:
        """Ids of couriers with a fresh position within ``radius``, closest first."""
        return [row.courier_id for row in self.nearby_positions(center, radius, now)]

    @abstractmethod
    def evict_stale(self, now: Optional[datetime] = None) -> int:
        """Drop positions older than the eviction age; returns how many were dropped."""

    @abstractmethod
    def forget(self, courier_id: str) -> bool:
        """Drop a courier (e.g. going offline)."""

    @abstractmethod
    def _store(self, position: TrackedPosition) -> bool:
        """Persist ``position`` unless a newer one is already stored."""

    def is_fresh(self, position: TrackedPosition, now: datetime) -> bool:
        return now - position.reported_at <= self.staleness

    def _now(self, now: Optional[datetime]) -> datetime:
        return ensure_utc(now) if now is not None else self.clock()


class _CourierSlot:
    __slots__ = ("lock", "position", "evicted")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.position: Optional[TrackedPosition] = None
        self.evicted = False


class InMemoryLocationTracker(LocationTracker):
    """Process-local tracker with per-courier locking."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._slots: Dict[str, _CourierSlot] = {}

    def _store(self, position: TrackedPosition) -> bool:
        while True:
            slot = self._slots.get(position.courier_id)
            if slot is None:
                slot = self._slots.setdefault(position.courier_id, _CourierSlot())
            with slot.lock:
                if slot.evicted:
                    # Lost a race with eviction: retry on a fresh slot
                    continue
                current = slot.position
                if current is not None and position.reported_at < current.reported_at:
                    return False
                slot.position = position
                return True

    def current_position(self, courier_id: str) -> Optional[TrackedPosition]:
        slot = self._slots.get(courier_id)
        return slot.position if slot is not None else None

    def nearby_positions(
        self, center: Location, radius: Distance, now: Optional[datetime] = None
    ) -> List[NearbyCourier]:
        moment = self._now(now)
        lat_span, lon_span = degrees_for_meters(radius.meters, center.latitude)

        rows = []
        for courier_id, slot in tuple(self._slots.items()):
            position = slot.position
            if position is None or not self.is_fresh(position, moment):
                continue
            location = position.location
            # Cheap bounding-box rejection before the haversine
            if abs(location.latitude - center.latitude) > lat_span:
                continue
            if lon_span < 180.0 and _longitude_gap(location.longitude, center.longitude) > lon_span:
                continue
            distance = center.distance_to(location)
            if distance <= radius:
                rows.append(NearbyCourier(courier_id=courier_id, distance=distance, position=position))

        rows.sort(key=lambda row: (row.distance.meters, row.courier_id))
        return rows

    def evict_stale(self, now: Optional[datetime] = None) -> int:
        moment = self._now(now)
        evicted = 0
        for courier_id, slot in tuple(self._slots.items()):
            position = slot.position
            if position is None or moment - position.reported_at <= self.eviction_age:
                continue
            with slot.lock:
                position = slot.position
                if position is not None and moment - position.reported_at <= self.eviction_age:
                    continue  # refreshed meanwhile
                slot.evicted = True
                if self._slots.get(courier_id) is slot:
                    del self._slots[courier_id]
                evicted += 1

        if evicted:
            logger.info(
                f"Evicted {evicted} stale courier positions",
                extra={"event": "stale_positions_evicted", "metric_type": "tracker", "count": evicted},
            )
        return evicted

    def forget(self, courier_id: str) -> bool:
        slot = self._slots.get(courier_id)
        if slot is None:
            return False
        with slot.lock:
            slot.evicted = True
            if self._slots.get(courier_id) is slot:
                del self._slots[courier_id]
        return True

    def __len__(self) -> int:
        return len(self._slots)


def _longitude_gap(a: float, b: float) -> float:
    gap = abs(a - b) % 360.0
    return min(gap, 360.0 - gap)
