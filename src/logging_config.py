"""
Logging setup for the dispatch engine.

Two kinds of records are produced:
- operational logs through the standard ``logging`` module, with
  ``extra={"event": ..., "metric_type": ...}`` fields
- domain events through structlog (see ``LoggingEventPublisher``)

Both carry the current correlation id. ``log_format="json"`` renders one
JSON object per line for shipping; anything else renders for a console.
"""

import logging
import sys
from typing import Optional

import structlog
from pythonjsonlogger import jsonlogger

from src.config import settings
from src.utils.context import get_correlation_id

# Libraries that are chatty at INFO
QUIET_LOGGERS = ("celery.worker.strategy", "celery.app.trace", "kombu", "redis", "urllib3")

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def add_correlation_id(logger, method_name, event_dict):
    """Structlog processor stamping the correlation id when one is bound."""
    correlation_id = get_correlation_id()
    if correlation_id and "correlation_id" not in event_dict:
        event_dict["correlation_id"] = correlation_id
    return event_dict


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding service identity and correlation id to each record."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = settings.app_name
        log_record["environment"] = settings.environment
        log_record.setdefault("correlation_id", get_correlation_id())


def _stdlib_handler(json_output: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(CorrelationJsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure stdlib logging and structlog in one go.

    Args:
        log_level: Overrides ``settings.log_level``
        log_format: Overrides ``settings.log_format`` ("json" or "console")
    """
    level = (log_level or settings.log_level).upper()
    json_output = (log_format or settings.log_format) == "json"

    logging.root.handlers = [_stdlib_handler(json_output)]
    logging.root.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, logging.root.level))

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            add_correlation_id,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
