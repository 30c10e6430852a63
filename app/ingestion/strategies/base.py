"""
app/ingestion/strategies/base.py

Shared run context and helpers for source strategies.

Strategies own their session's transaction boundaries: catalog writes for a
batch are committed before the cursor is advanced and committed, so the
cursor only ever reflects durable progress.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sqlalchemy import Table
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import CatalogIngestionSettings
from app.connectors.catalog_client import CatalogAPIClient, FetchedBatch, build_batch
from app.domain.catalog_ingestion import (
    SourceDefinition,
    SourceRunStatus,
    SourceRunSummary,
)
from app.ingestion.backoff import BackoffPolicy
from app.ingestion.errors import FatalInitError, FetchError, WriteError
from app.ingestion.schema_registrar import SchemaRegistrar
from app.logging_utils import log_event
from app.repositories.catalog_repository import CatalogRepository, RecordPreparationError
from db.models.ingestion_log import RunLogStatus
from db.repositories.cursor_repository import CursorRepository
from db.repositories.run_log_repository import RunLogRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")

TABLE_CREATE_BACKOFF = BackoffPolicy(initial_seconds=0.5, multiplier=2.0, max_seconds=5.0)


class ResponseCache:
    """
    Per-run cache of decoded list responses keyed by request path.

    Several snapshot sources read different collections out of the same
    upstream document (``/home``); the document is fetched once per run. A
    fetch that failed is not retried within the run: later readers get the
    same error.
    """

    def __init__(self) -> None:
        self._bodies: dict[str, Any] = {}
        self._failures: dict[str, FetchError] = {}
        self._lock = threading.Lock()

    def get_or_fetch(self, path: str, fetch: Callable[[], Any]) -> Any:
        with self._lock:
            if path in self._failures:
                raise self._failures[path]
            if path not in self._bodies:
                try:
                    self._bodies[path] = fetch()
                except FetchError as exc:
                    self._failures[path] = exc
                    raise
            return self._bodies[path]


@dataclass
class RunContext:
    """
    Collaborators handed to a strategy for one source within one run.
    """

    session: Session
    client: CatalogAPIClient
    settings: CatalogIngestionSettings
    test_mode: bool = False
    response_cache: ResponseCache = field(default_factory=ResponseCache)

    def page_budget(self, source: SourceDefinition) -> int:
        if self.test_mode:
            return 1
        return max(1, source.page_budget or self.settings.page_budget)

    def id_budget(self, source: SourceDefinition) -> int:
        budget = max(1, source.id_budget or self.settings.id_budget)
        if self.test_mode:
            return min(budget, self.settings.test_id_budget)
        return budget

    def fetch_snapshot(self, source: SourceDefinition) -> FetchedBatch:
        url = self.client.build_url(source.path)
        body = self.response_cache.get_or_fetch(source.path, lambda: self.client.get_json(url))
        return build_batch(
            body,
            url=url,
            collection_key=source.collection_key,
            id_field=source.id_field,
        )


class SourceStrategy(ABC):
    """
    One ingestion behavior (snapshot, insert-if-new, paginated or
    sequential), bound to a single source definition.
    """

    def __init__(self, source: SourceDefinition) -> None:
        self.source = source

    @abstractmethod
    def run(self, context: RunContext) -> SourceRunSummary:
        """Ingest this source once and return its counters."""

    # ------------------------------------------------------------------
    # Helpers shared by every strategy
    # ------------------------------------------------------------------

    def new_summary(self) -> SourceRunSummary:
        return SourceRunSummary(source=self.source.name, kind=self.source.kind)

    def ensure_table(self, context: RunContext, sample_records: Sequence[Mapping[str, Any]]) -> Table:
        """
        Return the source's table, creating it from ``sample_records``.

        Creation is retried up to ``bootstrap_max_attempts`` times.

        Raises:
            FatalInitError: if every attempt fails.
        """
        attempts = max(1, context.settings.bootstrap_max_attempts)
        last_error: SQLAlchemyError | None = None
        for attempt in range(1, attempts + 1):
            try:
                return SchemaRegistrar(context.session).ensure_table(
                    self.source.table_name,
                    sample_records,
                    id_field=self.source.id_field,
                )
            except SQLAlchemyError as exc:
                context.session.rollback()
                last_error = exc
                if attempt >= attempts:
                    break
                wait_seconds = TABLE_CREATE_BACKOFF.delay_for(attempt - 1)
                logger.warning(
                    "Catalog table creation failed table=%s attempt=%s/%s wait_seconds=%.2f error=%s",
                    self.source.table_name,
                    attempt,
                    attempts,
                    wait_seconds,
                    exc,
                )
                time.sleep(wait_seconds)

        raise FatalInitError(
            f"Could not create table '{self.source.table_name}' after {attempts} attempt(s): {last_error}"
        ) from last_error

    def prepare_rows(
        self,
        context: RunContext,
        table: Table,
        records: Sequence[Mapping[str, Any]],
        summary: SourceRunSummary,
    ) -> list[dict[str, Any]]:
        """
        Map records onto ``table``; records that cannot be mapped are counted
        as failed and reported.
        """
        repository = CatalogRepository(context.session)
        rows: list[dict[str, Any]] = []
        for record in records:
            try:
                rows.append(repository.prepare_row(table, record))
            except RecordPreparationError as exc:
                summary.records_failed += 1
                self.report_failure(context, summary, f"Skipped record: {exc}")
        return rows

    def report_invalid_items(
        self,
        context: RunContext,
        summary: SourceRunSummary,
        batch: FetchedBatch,
        *,
        where: str,
    ) -> None:
        """
        Count and report list items that could not be read as records.
        """
        if not batch.invalid_items:
            return
        summary.records_skipped += batch.invalid_items
        self.report_failure(
            context,
            summary,
            f"Dropped {batch.invalid_items} unreadable item(s) from {where}.",
        )

    def write(self, context: RunContext, operation: Callable[[CatalogRepository], T]) -> T:
        """
        Run ``operation`` against the catalog repository and commit.

        Raises:
            WriteError: if the database rejects the write; the session has
                been rolled back.
        """
        repository = CatalogRepository(context.session)
        try:
            result = operation(repository)
            context.session.commit()
        except SQLAlchemyError as exc:
            context.session.rollback()
            raise WriteError(f"Write to '{self.source.table_name}' failed: {exc}") from exc
        return result

    def read_cursor(self, context: RunContext) -> int:
        return CursorRepository(context.session).get_cursor(
            self.source.name,
            default=self.source.default_cursor,
        )

    def advance_cursor(self, context: RunContext, position: int, *, kind: str) -> None:
        """
        Persist ``position`` after the batch that reached it was committed.
        """
        try:
            CursorRepository(context.session).advance_cursor(self.source.name, position, kind=kind)
            context.session.commit()
        except SQLAlchemyError as exc:
            context.session.rollback()
            raise WriteError(f"Cursor update for '{self.source.name}' failed: {exc}") from exc

    def report_failure(self, context: RunContext, summary: SourceRunSummary, message: str) -> None:
        """
        Record ``message`` in the summary and as a ``failed`` run-log entry.
        """
        summary.add_error(message)
        log_event(logger, logging.WARNING, "source_failure", source=self.source.name, message=message)
        try:
            RunLogRepository(context.session).append(
                source=self.source.name,
                status=RunLogStatus.FAILED,
                message=message,
            )
            context.session.commit()
        except SQLAlchemyError:
            context.session.rollback()
            logger.exception("Could not persist failure log entry source=%s", self.source.name)

    def finish(self, summary: SourceRunSummary) -> SourceRunSummary:
        """
        Close out ``summary``: a run that only produced errors is failed.
        """
        no_progress = (
            summary.records_written == 0
            and summary.records_unchanged == 0
            and summary.pages_processed == 0
        )
        if summary.errors and no_progress:
            summary.status = SourceRunStatus.FAILED
        return summary.finalize()


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    step = max(1, size)
    for start in range(0, len(items), step):
        yield items[start:start + step]
