"""
Celery application for the dispatch engine.

Workers consume five queues besides ``default``: intake of areas,
couriers and deliveries, dispatches and cancellations, courier location
ingestion, periodic sweeps and the domain event relay. Beat drives the
sweeps at the intervals configured in settings.

The engine state lives in the worker process, so a worker runs one
process with a thread pool (``worker_pool``) and every task of a
deployment goes to that worker.
"""

import logging
from celery import Celery

from src.config import settings
from src.utils.context import correlation_scope

from .constants import DEFAULT_QUEUE, SWEEP_INTERVALS, TASK_QUEUES

logger = logging.getLogger(__name__)

TASKS_MODULE = "src.modules.module3_dispatch.tasks"

WORKER_QUEUES = [DEFAULT_QUEUE] + sorted(set(TASK_QUEUES.values()))


def _queue_declarations():
    return {name: {"exchange": name, "routing_key": name} for name in WORKER_QUEUES}


def _beat_schedule():
    return {
        task_name.replace("_", "-"): {
            "task": task_name,
            "schedule": getattr(settings, interval_attr),
        }
        for task_name, interval_attr in SWEEP_INTERVALS.items()
    }


celery_app = Celery(
    "dispatch_engine",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=[TASKS_MODULE],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # A dispatch lost with its worker must be redelivered, not dropped
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,

    task_default_retry_delay=5,
    task_max_retries=3,
    result_expires=3600,

    worker_prefetch_multiplier=1,
    worker_concurrency=4,
    worker_pool=settings.worker_pool,

    task_default_queue=DEFAULT_QUEUE,
    task_queues=_queue_declarations(),
    task_routes={name: {"queue": queue} for name, queue in TASK_QUEUES.items()},
    beat_schedule=_beat_schedule(),
)


class BaseTask(celery_app.Task):
    """
    Base task for dispatch work.

    Runs under the ``correlation_id`` passed in kwargs (or a fresh one) so
    that every log line and relayed event of one dispatch can be joined.
    Tasks retry unexpected errors themselves with exponential backoff;
    ``DispatchError`` is a business outcome and is never retried.
    """

    abstract = True
    max_retries = 3

    def __call__(self, *args, **kwargs):
        with correlation_scope(kwargs.get("correlation_id")) as correlation_id:
            logger.debug(
                f"Task {self.name} started",
                extra={"task_id": self.request.id, "correlation_id": correlation_id},
            )
            return super().__call__(*args, **kwargs)

    def _log_outcome(self, level, message, task_id, kwargs, status, exc=None):
        extra = {
            "event": f"dispatch_task_{status}",
            "metric_type": "celery_task",
            "task_name": self.name,
            "task_id": task_id,
            "status": status,
            "correlation_id": kwargs.get("correlation_id"),
            "retry_count": self.request.retries,
        }
        if exc is not None:
            extra["exception_type"] = type(exc).__name__
        logger.log(level, message, extra=extra)

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        self._log_outcome(logging.ERROR, f"Task {self.name}[{task_id}] failed: {exc}", task_id, kwargs, "failure", exc)

    def on_success(self, retval, task_id, args, kwargs):
        self._log_outcome(logging.INFO, f"Task {self.name}[{task_id}] completed", task_id, kwargs, "success")

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        self._log_outcome(
            logging.WARNING,
            f"Task {self.name}[{task_id}] retrying (attempt {self.request.retries + 1}): {exc}",
            task_id,
            kwargs,
            "retry",
            exc,
        )
