"""
app/ingestion/strategies/snapshot.py

Strategies for endpoints that always return their complete current list.
"""

from __future__ import annotations

import logging

from app.domain.catalog_ingestion import SourceRunSummary
from app.ingestion.errors import FetchError, MalformedResponseError, WriteError
from app.ingestion.fingerprint import FINGERPRINT_COLUMN, has_changed
from app.ingestion.schema_registrar import primary_key_column
from app.ingestion.strategies.base import RunContext, SourceStrategy, chunked
from app.logging_utils import log_event
from app.repositories.catalog_repository import CatalogRepository

logger = logging.getLogger(__name__)


class SnapshotStrategy(SourceStrategy):
    """
    Replace-all snapshot: every record is upserted each run unless its
    stored fingerprint shows it is unchanged.
    """

    def run(self, context: RunContext) -> SourceRunSummary:
        summary = self.new_summary()
        try:
            batch = context.fetch_snapshot(self.source)
        except MalformedResponseError as exc:
            self.report_failure(context, summary, f"Malformed snapshot response: {exc}")
            summary.stop_reason = "malformed_response"
            return self.finish(summary)
        except FetchError as exc:
            self.report_failure(context, summary, f"Snapshot fetch failed: {exc}")
            summary.stop_reason = "fetch_error"
            return self.finish(summary)

        summary.records_fetched = len(batch.records)
        self.report_invalid_items(
            context,
            summary,
            batch,
            where=f"collection '{self.source.collection_key or self.source.path}'",
        )
        if not batch.records:
            summary.stop_reason = "empty"
            return self.finish(summary)

        table = self.ensure_table(context, batch.records)
        id_name = primary_key_column(table).name
        catalog = CatalogRepository(context.session)
        rows = self.prepare_rows(context, table, batch.records, summary)

        for chunk in chunked(rows, context.settings.batch_size):
            stored = catalog.get_fingerprints(table, [row[id_name] for row in chunk])
            changed = [
                row for row in chunk
                if has_changed(stored.get(row[id_name]), row[FINGERPRINT_COLUMN])
            ]
            summary.records_unchanged += len(chunk) - len(changed)
            if not changed:
                continue
            try:
                self.write(context, lambda repository: repository.upsert_many(table, changed))
            except WriteError as exc:
                summary.records_failed += len(changed)
                self.report_failure(context, summary, str(exc))
                continue
            summary.records_written += len(changed)

        summary.stop_reason = "complete"
        log_event(
            logger,
            logging.INFO,
            "snapshot_ingested",
            source=self.source.name,
            fetched=summary.records_fetched,
            written=summary.records_written,
            unchanged=summary.records_unchanged,
        )
        return self.finish(summary)


class InsertIfNewStrategy(SourceStrategy):
    """
    Insert records whose identifier is not stored yet; captured rows are
    never updated.
    """

    def run(self, context: RunContext) -> SourceRunSummary:
        summary = self.new_summary()
        try:
            batch = context.fetch_snapshot(self.source)
        except MalformedResponseError as exc:
            self.report_failure(context, summary, f"Malformed list response: {exc}")
            summary.stop_reason = "malformed_response"
            return self.finish(summary)
        except FetchError as exc:
            self.report_failure(context, summary, f"List fetch failed: {exc}")
            summary.stop_reason = "fetch_error"
            return self.finish(summary)

        summary.records_fetched = len(batch.records)
        self.report_invalid_items(
            context,
            summary,
            batch,
            where=f"collection '{self.source.collection_key or self.source.path}'",
        )
        if not batch.records:
            summary.stop_reason = "empty"
            return self.finish(summary)

        table = self.ensure_table(context, batch.records)
        rows = self.prepare_rows(context, table, batch.records, summary)

        for chunk in chunked(rows, context.settings.batch_size):
            try:
                inserted = self.write(context, lambda repository: repository.insert_if_new(table, chunk))
            except WriteError as exc:
                summary.records_failed += len(chunk)
                self.report_failure(context, summary, str(exc))
                continue
            summary.records_written += inserted
            summary.records_unchanged += len(chunk) - inserted

        summary.stop_reason = "complete"
        log_event(
            logger,
            logging.INFO,
            "insert_if_new_ingested",
            source=self.source.name,
            fetched=summary.records_fetched,
            inserted=summary.records_written,
            existing=summary.records_unchanged,
        )
        return self.finish(summary)
