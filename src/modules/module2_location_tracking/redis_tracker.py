"""
Redis-backed LocationTracker for multi-process deployments.

Layout:
    {prefix}:geo           GEO set of courier positions (proximity index)
    {prefix}:pos:{id}      hash with the serialized TrackedPosition

Per-courier writes run as optimistic WATCH/MULTI transactions on the
courier's hash, so reports for different couriers never contend.
"""

import logging
from datetime import datetime
from typing import List, Optional, Union

import redis
from redis.exceptions import WatchError

from src.modules.module1_geospatial.schemas import Distance, Location

from .constants import GEO_INDEX_SUFFIX, POSITION_KEY_SUFFIX, REDIS_WATCH_RETRIES
from .schemas import NearbyCourier, TrackedPosition
from .tracker import LocationTracker

logger = logging.getLogger(__name__)

# Redis computes GEO distances on a slightly different sphere; widen the
# server-side search and filter exactly afterwards
SEARCH_MARGIN = 1.01


def _text(value: Union[bytes, str]) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisLocationTracker(LocationTracker):
    """Tracker storing positions in Redis."""

    def __init__(self, client: redis.Redis, key_prefix: str = "dispatch:courier", **kwargs):
        super().__init__(**kwargs)
        self.client = client
        self.key_prefix = key_prefix
        self.geo_key = f"{key_prefix}:{GEO_INDEX_SUFFIX}"

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisLocationTracker":
        return cls(redis.Redis.from_url(url), **kwargs)

    def _position_key(self, courier_id: str) -> str:
        return f"{self.key_prefix}:{POSITION_KEY_SUFFIX}:{courier_id}"

    def _store(self, position: TrackedPosition) -> bool:
        key = self._position_key(position.courier_id)
        reported_at = position.reported_at.timestamp()

        with self.client.pipeline() as pipe:
            for _ in range(REDIS_WATCH_RETRIES):
                try:
                    pipe.watch(key)
                    stored = pipe.hget(key, "reported_at")
                    if stored is not None and float(stored) > reported_at:
                        pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.hset(key, mapping={
                        "reported_at": repr(reported_at),
                        "payload": position.model_dump_json(),
                    })
                    pipe.geoadd(self.geo_key, [
                        position.location.longitude,
                        position.location.latitude,
                        position.courier_id,
                    ])
                    pipe.execute()
                    return True
                except WatchError:
                    logger.debug(
                        f"Concurrent report for courier {position.courier_id}, retrying",
                        extra={"event": "location_report_retry", "courier_id": position.courier_id},
                    )
                    continue

        logger.warning(
            f"Gave up storing report for courier {position.courier_id} after "
            f"{REDIS_WATCH_RETRIES} conflicting attempts",
            extra={"event": "location_report_dropped", "courier_id": position.courier_id},
        )
        return False

    def current_position(self, courier_id: str) -> Optional[TrackedPosition]:
        payload = self.client.hget(self._position_key(courier_id), "payload")
        if payload is None:
            return None
        return TrackedPosition.model_validate_json(payload)

    def nearby_positions(
        self, center: Location, radius: Distance, now: Optional[datetime] = None
    ) -> List[NearbyCourier]:
        moment = self._now(now)
        members = self.client.geosearch(
            self.geo_key,
            longitude=center.longitude,
            latitude=center.latitude,
            radius=radius.meters * SEARCH_MARGIN,
            unit="m",
            sort="ASC",
        )
        if not members:
            return []

        courier_ids = [_text(member) for member in members]
        with self.client.pipeline(transaction=False) as pipe:
            for courier_id in courier_ids:
                pipe.hget(self._position_key(courier_id), "payload")
            payloads = pipe.execute()

        rows = []
        for courier_id, payload in zip(courier_ids, payloads):
            if payload is None:
                continue
            position = TrackedPosition.model_validate_json(payload)
            if not self.is_fresh(position, moment):
                continue
            distance = center.distance_to(position.location)
            if distance <= radius:
                rows.append(NearbyCourier(courier_id=courier_id, distance=distance, position=position))

        rows.sort(key=lambda row: (row.distance.meters, row.courier_id))
        return rows

    def evict_stale(self, now: Optional[datetime] = None) -> int:
        moment = self._now(now)
        cutoff = (moment - self.eviction_age).timestamp()
        evicted = 0

        for member in self.client.zrange(self.geo_key, 0, -1):
            courier_id = _text(member)
            key = self._position_key(courier_id)
            with self.client.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    stored = pipe.hget(key, "reported_at")
                    if stored is not None and float(stored) >= cutoff:
                        pipe.unwatch()
                        continue
                    pipe.multi()
                    pipe.zrem(self.geo_key, courier_id)
                    pipe.delete(key)
                    pipe.execute()
                    evicted += 1
                except WatchError:
                    # A fresh report arrived while evicting: keep the courier
                    continue

        if evicted:
            logger.info(
                f"Evicted {evicted} stale courier positions",
                extra={"event": "stale_positions_evicted", "metric_type": "tracker", "count": evicted},
            )
        return evicted

    def forget(self, courier_id: str) -> bool:
        with self.client.pipeline() as pipe:
            pipe.zrem(self.geo_key, courier_id)
            pipe.delete(self._position_key(courier_id))
            removed, _ = pipe.execute()
        return bool(removed)
