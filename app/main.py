from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.logging_utils import configure_logging
from app.schemas.ingestion import HealthResponse
from db.session import get_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Create system tables and start the scheduler on boot; shut it down on exit."""
    from app.config import get_scheduler_settings
    from app.ingestion.errors import FatalInitError
    from app.services.catalog_ingestion_service import get_catalog_ingestion_service

    try:
        get_catalog_ingestion_service().ensure_bootstrapped()
    except FatalInitError:
        logger.critical("System table bootstrap failed; refusing to start")
        raise
    logger.info("Ingestion system tables ready")

    scheduler = None
    scheduler_settings = get_scheduler_settings()
    if scheduler_settings.enabled:
        from app.scheduler.jobs import build_scheduler

        scheduler = build_scheduler(scheduler_settings)
        scheduler.start()
        logger.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=True)
            logger.info("Scheduler shut down")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """

    configure_logging()

    application = FastAPI(
        title="Anime Catalog Ingestor",
        version="1.0.0",
        lifespan=_lifespan,
    )

    from app.api.routers import ingestion_router

    application.include_router(ingestion_router)

    @application.get("/health", response_model=HealthResponse)
    def healthcheck(db: Session = Depends(get_db)) -> HealthResponse:
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Health check could not reach the database")
            return HealthResponse(success=False, database="unavailable")
        return HealthResponse(success=True, database="ok")

    return application


app = create_app()
