"""
app/ingestion/bootstrap.py

Creates the ingestion system tables if they are missing.
"""

from __future__ import annotations

import logging
import time

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

import db.models  # noqa: F401 - registers system tables on Base.metadata
from app.ingestion.backoff import BackoffPolicy
from app.ingestion.errors import FatalInitError
from db.base import Base

logger = logging.getLogger(__name__)


def init_system_tables(
    engine: Engine,
    *,
    max_attempts: int = 3,
    backoff: BackoffPolicy | None = None,
) -> None:
    """
    Create cursor, log and lock tables with bounded retries.

    Raises:
        FatalInitError: if every attempt fails.
    """
    policy = backoff or BackoffPolicy(initial_seconds=0.5, multiplier=2.0, max_seconds=5.0)
    attempts = max(1, max_attempts)
    last_error: Exception | None = None

    for attempt in range(1, attempts + 1):
        try:
            Base.metadata.create_all(engine, checkfirst=True)
            logger.info("Ingestion system tables ready")
            return
        except SQLAlchemyError as exc:
            last_error = exc
            if attempt >= attempts:
                break
            wait_seconds = policy.delay_for(attempt - 1)
            logger.warning(
                "System table bootstrap failed attempt=%s/%s wait_seconds=%.2f error=%s",
                attempt,
                attempts,
                wait_seconds,
                exc,
            )
            time.sleep(wait_seconds)

    raise FatalInitError(
        f"System table bootstrap failed after {attempts} attempt(s): {last_error}"
    ) from last_error
