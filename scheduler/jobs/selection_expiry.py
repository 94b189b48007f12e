"""Scheduler job that purges expired interactive selections."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

SELECTION_EXPIRY_JOB_ID = "selection_expiry_sweep"
DEFAULT_SWEEP_INTERVAL_SECONDS = 60

logger = logging.getLogger(__name__)


def run_selection_expiry(cache) -> list[str]:
    """Sweep ``cache`` once and return the task ids that expired."""
    try:
        purged = cache.sweep_expired()
    except Exception:
        logger.exception("selection expiry sweep failed")
        return []
    if purged:
        logger.info("selection expiry sweep purged=%s", len(purged))
    return purged


def register_selection_expiry_job(scheduler, cache, interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS):
    """Add (or replace) the periodic sweep on an APScheduler scheduler."""
    return scheduler.add_job(
        run_selection_expiry,
        trigger=IntervalTrigger(seconds=max(1, int(interval_seconds))),
        args=[cache],
        id=SELECTION_EXPIRY_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=30,
    )


def start_selection_expiry_scheduler(cache, interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone="UTC")
    register_selection_expiry_job(scheduler, cache, interval_seconds)
    scheduler.start()
    return scheduler
