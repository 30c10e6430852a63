"""
app/services/catalog_ingestion_service.py

Run coordinator for catalog ingestion.

One ``run`` call walks every configured source (or one named source) in
registry order. Each source runs in its own session under a lease lock, and
any exception it raises is caught, logged and summarized so the remaining
sources still run.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.catalog_sources import resolve_sources
from app.config import (
    CatalogIngestionSettings,
    get_catalog_http_settings,
    get_catalog_ingestion_settings,
)
from app.connectors.catalog_client import CatalogAPIClient
from app.domain.catalog_ingestion import (
    RunSummary,
    SourceDefinition,
    SourceKind,
    SourceRunStatus,
    SourceRunSummary,
)
from app.ingestion.bootstrap import init_system_tables
from app.ingestion.errors import FatalInitError, SourceConfigError
from app.ingestion.strategies import ResponseCache, RunContext, build_strategy
from app.logging_utils import log_event
from db.base import utc_now
from db.models.ingestion_cursor import CursorKind
from db.models.ingestion_log import RunLogStatus
from db.repositories.cursor_repository import CursorRepository
from db.repositories.run_log_repository import RunLogRepository
from db.repositories.source_lock_repository import SourceLockRepository

logger = logging.getLogger(__name__)

_LOG_STATUS_BY_RUN_STATUS = {
    SourceRunStatus.SUCCESS: RunLogStatus.SUCCESS,
    SourceRunStatus.PARTIAL: RunLogStatus.WARNING,
    SourceRunStatus.FAILED: RunLogStatus.FAILED,
    SourceRunStatus.SKIPPED: RunLogStatus.SKIPPED,
}


class CatalogIngestionService:
    """
    Coordinates source strategies, locks, run logs and retention.
    """

    def __init__(
        self,
        *,
        engine: Engine,
        client: CatalogAPIClient,
        settings: CatalogIngestionSettings,
        sources: Sequence[SourceDefinition],
        session_factory: sessionmaker[Session] | None = None,
    ) -> None:
        self._engine = engine
        self._client = client
        self._settings = settings
        self._sources = list(sources)
        if session_factory is None:
            from db.session import build_session_factory

            self._session_factory = build_session_factory(engine)
        else:
            self._session_factory = session_factory
        self._bootstrapped = False

    @property
    def sources(self) -> list[SourceDefinition]:
        return list(self._sources)

    def get_source(self, name: str) -> SourceDefinition:
        """
        Raises:
            SourceConfigError: if no configured source has this name.
        """
        for source in self._sources:
            if source.name == name:
                return source
        raise SourceConfigError(
            f"Unknown source '{name}'. Available: {[item.name for item in self._sources]}"
        )

    def ensure_bootstrapped(self) -> None:
        """
        Create system tables once per service instance.

        Raises:
            FatalInitError: if the tables cannot be created.
        """
        if self._bootstrapped:
            return
        init_system_tables(self._engine, max_attempts=self._settings.bootstrap_max_attempts)
        self._bootstrapped = True

    def run(self, source: str | None = None, *, test_mode: bool = False) -> RunSummary:
        """
        Run every configured source, or only ``source`` when given.

        Raises:
            SourceConfigError: if ``source`` is not configured.
        """
        selected = [self.get_source(source)] if source else list(self._sources)
        run_id = uuid.uuid4().hex
        started_at = utc_now()
        log_event(
            logger,
            logging.INFO,
            "catalog_run_started",
            run_id=run_id,
            sources=[item.name for item in selected],
            test_mode=test_mode,
        )

        try:
            self.ensure_bootstrapped()
        except FatalInitError as exc:
            logger.error("Catalog run aborted run_id=%s error=%s", run_id, exc)
            summaries = [_failed_summary(item, str(exc)) for item in selected]
            return RunSummary(
                run_id=run_id,
                started_at=started_at,
                finished_at=utc_now(),
                sources=summaries,
            )

        cache = ResponseCache()
        workers = min(self._settings.max_workers, len(selected))
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="catalog-ingest") as pool:
                summaries = list(
                    pool.map(
                        lambda item: self._run_source(item, run_id=run_id, test_mode=test_mode, cache=cache),
                        selected,
                    )
                )
        else:
            summaries = [
                self._run_source(item, run_id=run_id, test_mode=test_mode, cache=cache)
                for item in selected
            ]

        logs_pruned = self._prune_logs()
        summary = RunSummary(
            run_id=run_id,
            started_at=started_at,
            finished_at=utc_now(),
            sources=summaries,
            logs_pruned=logs_pruned,
        )
        log_event(
            logger,
            logging.INFO,
            "catalog_run_finished",
            run_id=run_id,
            success=summary.success,
            records_written=summary.records_written,
            statuses={item.source: item.status for item in summaries},
            logs_pruned=logs_pruned,
        )
        return summary

    def status(self, *, log_limit: int = 20) -> dict[str, Any]:
        """
        Return cursors and recent run-log entries.
        """
        self.ensure_bootstrapped()
        with self._session_factory() as db:
            cursors = CursorRepository(db).list_cursors()
            logs = RunLogRepository(db).list_recent(limit=log_limit)
            return {
                "sources": [
                    {"name": item.name, "kind": item.kind, "table": item.table_name}
                    for item in self._sources
                ],
                "cursors": [
                    {
                        "source": cursor.source,
                        "kind": cursor.kind,
                        "position": cursor.position,
                        "updated_at": cursor.updated_at,
                    }
                    for cursor in cursors
                ],
                "recent_logs": [
                    {
                        "created_at": entry.created_at,
                        "source": entry.source,
                        "status": entry.status,
                        "message": entry.message,
                    }
                    for entry in logs
                ],
            }

    def reset(self, source: str, position: int | None = None) -> int:
        """
        Rewrite a walk's cursor; defaults to "nothing consumed yet".

        Raises:
            SourceConfigError: if the source is unknown or has no cursor.
        """
        definition = self.get_source(source)
        if not definition.uses_cursor:
            raise SourceConfigError(f"Source '{source}' does not keep a cursor.")
        target = definition.default_cursor if position is None else position
        if target < 0:
            raise SourceConfigError("Cursor position must be >= 0.")

        self.ensure_bootstrapped()
        cursor_kind = CursorKind.PAGE if definition.kind == SourceKind.PAGINATED else CursorKind.ID
        with self._session_factory() as db:
            CursorRepository(db).reset_cursor(definition.name, target, kind=cursor_kind)
            RunLogRepository(db).append(
                source=definition.name,
                status=RunLogStatus.WARNING,
                message=f"Cursor reset to {target}",
            )
            db.commit()
        log_event(logger, logging.WARNING, "cursor_reset", source=definition.name, position=target)
        return target

    # ------------------------------------------------------------------
    # Per-source execution
    # ------------------------------------------------------------------

    def _run_source(
        self,
        source: SourceDefinition,
        *,
        run_id: str,
        test_mode: bool,
        cache: ResponseCache,
    ) -> SourceRunSummary:
        with self._session_factory() as db:
            locks = SourceLockRepository(db)
            try:
                acquired = locks.acquire(
                    source.name,
                    owner=run_id,
                    ttl_seconds=self._settings.lock_ttl_seconds,
                )
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.exception("Lock acquisition failed source=%s", source.name)
                summary = _failed_summary(source, f"Lock acquisition failed: {exc}")
                self._append_log(db, summary)
                return summary

            if not acquired:
                summary = SourceRunSummary(
                    source=source.name,
                    kind=source.kind,
                    status=SourceRunStatus.SKIPPED,
                    stop_reason="locked",
                )
                summary.add_error("Another run holds this source's lock.")
                self._append_log(db, summary)
                return summary

            try:
                RunLogRepository(db).append(source=source.name, status=RunLogStatus.STARTED)
                db.commit()
                context = RunContext(
                    session=db,
                    client=self._client,
                    settings=self._settings,
                    test_mode=test_mode,
                    response_cache=cache,
                )
                summary = build_strategy(source).run(context)
            except Exception as exc:
                db.rollback()
                logger.exception("Source failed source=%s run_id=%s", source.name, run_id)
                summary = _failed_summary(source, f"{type(exc).__name__}: {exc}")
            finally:
                try:
                    locks.release(source.name, owner=run_id)
                    db.commit()
                except SQLAlchemyError:
                    db.rollback()
                    logger.exception("Lock release failed source=%s", source.name)

            self._append_log(db, summary)
            return summary

    def _append_log(self, db: Session, summary: SourceRunSummary) -> None:
        message = (
            f"fetched={summary.records_fetched} written={summary.records_written} "
            f"unchanged={summary.records_unchanged} failed={summary.records_failed} "
            f"skipped={summary.records_skipped} pages={summary.pages_processed} "
            f"cursor={summary.cursor_before}->{summary.cursor_after} stop={summary.stop_reason}"
        )
        if summary.errors:
            message = f"{message} last_error={summary.errors[-1]}"
        try:
            RunLogRepository(db).append(
                source=summary.source,
                status=_LOG_STATUS_BY_RUN_STATUS[summary.status],
                message=message,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not persist run log source=%s", summary.source)

    def _prune_logs(self) -> int:
        with self._session_factory() as db:
            try:
                removed = RunLogRepository(db).prune_older_than(days=self._settings.log_retention_days)
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Run log pruning failed")
                return 0
        if removed:
            logger.info("Pruned %s run log entries older than %s days", removed, self._settings.log_retention_days)
        return removed


def _failed_summary(source: SourceDefinition, message: str) -> SourceRunSummary:
    summary = SourceRunSummary(
        source=source.name,
        kind=source.kind,
        status=SourceRunStatus.FAILED,
        stop_reason="error",
    )
    summary.add_error(message)
    return summary


@lru_cache(maxsize=1)
def get_catalog_ingestion_service() -> CatalogIngestionService:
    """
    Build and cache the catalog ingestion service.
    """

    from db.session import get_engine, get_session_factory

    settings = get_catalog_ingestion_settings()
    client = CatalogAPIClient(
        base_url=settings.base_url,
        http_settings=get_catalog_http_settings(),
    )
    return CatalogIngestionService(
        engine=get_engine(),
        client=client,
        settings=settings,
        sources=resolve_sources(settings.sources_file),
        session_factory=get_session_factory(),
    )
