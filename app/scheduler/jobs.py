"""
app/scheduler/jobs.py

APScheduler-based trigger for periodic catalog ingestion.

Schedule
--------
  catalog_ingestion: every ``CATALOG_SCHEDULER_INTERVAL_MINUTES`` (default 30)

Lifecycle
----------
Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``.
Start it on app boot; shut it down gracefully on app shutdown.
The scheduler is wired into FastAPI via the ``lifespan`` context in main.py.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import SchedulerSettings, get_scheduler_settings
from app.services.catalog_ingestion_service import (
    CatalogIngestionService,
    get_catalog_ingestion_service,
)

logger = logging.getLogger(__name__)

CATALOG_INGESTION_JOB_ID = "catalog_ingestion"


def run_catalog_ingestion(
    service_factory: Callable[[], CatalogIngestionService] = get_catalog_ingestion_service,
) -> None:
    """
    Run every configured source once. Errors are logged, never raised, so a
    failing tick does not unschedule the job.
    """
    logger.info("Scheduler: catalog_ingestion starting")
    try:
        summary = service_factory().run()
    except Exception as exc:  # noqa: BLE001
        logger.exception("Scheduler: catalog_ingestion failed: %s", exc)
        return

    logger.info(
        "Scheduler: catalog_ingestion complete run_id=%s success=%s records_written=%s",
        summary.run_id,
        summary.success,
        summary.records_written,
    )


def build_scheduler(settings: SchedulerSettings | None = None) -> BackgroundScheduler:
    """
    Build and register the ingestion job.

    Returns a configured but *not yet started* ``BackgroundScheduler``.
    Overlapping ticks are coalesced and limited to one running instance;
    per-source lease locks additionally guard runs started elsewhere.
    """
    resolved = settings or get_scheduler_settings()
    scheduler = BackgroundScheduler(timezone="UTC")

    scheduler.add_job(
        run_catalog_ingestion,
        trigger="interval",
        minutes=resolved.interval_minutes,
        id=CATALOG_INGESTION_JOB_ID,
        name="Catalog ingestion",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
        misfire_grace_time=resolved.misfire_grace_seconds,
    )

    return scheduler
