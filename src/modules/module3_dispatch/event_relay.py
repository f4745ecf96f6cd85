"""
Event publisher relaying domain events through the Celery events queue.
"""

import logging

from src.domain.events import DomainEvent, DomainEventPublisher
from src.utils.context import get_correlation_id

from .constants import EVENTS_QUEUE
from .tasks import relay_domain_event

logger = logging.getLogger(__name__)


class CeleryEventPublisher(DomainEventPublisher):
    """Enqueues every event as a ``relay_domain_event`` task."""

    def __init__(self, queue: str = EVENTS_QUEUE):
        self.queue = queue

    def publish(self, event: DomainEvent) -> None:
        payload = event.to_payload()
        correlation_id = get_correlation_id()
        if correlation_id:
            payload["correlation_id"] = correlation_id
        relay_domain_event.apply_async(args=[payload], queue=self.queue)
        logger.debug(
            f"Event {event.event_type} queued for relay",
            extra={"event": "domain_event_queued", "event_id": event.event_id},
        )
