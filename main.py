#!/usr/bin/env python3
"""
Command line entry point of the dispatch engine.

    python main.py worker          consume every queue in one threaded process
    python main.py beat            schedule the periodic sweeps
    python main.py sweep           run the sweeps once, in-process
"""

import argparse
import logging

from src.config import settings
from src.logging_config import configure_logging

logger = logging.getLogger(__name__)


def worker_argv(concurrency: int = 4) -> list:
    from src.modules.module3_dispatch.celery_app import WORKER_QUEUES

    return [
        "worker",
        f"--loglevel={settings.log_level}",
        f"--pool={settings.worker_pool}",
        f"--concurrency={concurrency}",
        "-Q", ",".join(WORKER_QUEUES),
    ]


def run_worker(concurrency: int = 4):
    from src.modules.module3_dispatch.celery_app import celery_app

    celery_app.worker_main(worker_argv(concurrency))


def run_beat():
    from src.modules.module3_dispatch.celery_app import celery_app

    celery_app.start(["beat", f"--loglevel={settings.log_level}"])


def run_sweeps():
    """Evict stale positions, re-dispatch failures and retry compensations once."""
    from src.bootstrap import get_engine

    engine = get_engine()
    evicted = engine.evict_stale_positions()
    redispatch = engine.redispatch_failed()
    confirmed = engine.retry_pending_compensations()
    logger.info(
        f"Sweeps done: {evicted} positions evicted, {redispatch} re-dispatch, "
        f"{confirmed} compensations confirmed",
        extra={"event": "sweeps_completed", "evicted": evicted, "compensations_confirmed": confirmed},
    )


def main():
    parser = argparse.ArgumentParser(description="Dispatch & geospatial assignment engine")
    parser.add_argument("command", choices=["worker", "beat", "sweep"], help="Command to run")
    parser.add_argument("--concurrency", type=int, default=4, help="Worker threads (worker only)")
    args = parser.parse_args()

    configure_logging()

    if args.command == "worker":
        run_worker(args.concurrency)
    elif args.command == "beat":
        run_beat()
    else:
        run_sweeps()


if __name__ == "__main__":
    main()
