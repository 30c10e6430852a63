"""
app/ingestion/strategies/paginated.py

Page-by-page walk over ``?page=N`` list endpoints.
"""

from __future__ import annotations

import logging

from app.domain.catalog_ingestion import SourceRunSummary
from app.ingestion.errors import FetchError, MalformedResponseError, NotFoundError, WriteError
from app.ingestion.strategies.base import RunContext, SourceStrategy
from app.logging_utils import log_event
from db.models.ingestion_cursor import CursorKind

logger = logging.getLogger(__name__)


class PaginatedStrategy(SourceStrategy):
    """
    Fetch ``cursor + 1, cursor + 2, ...`` until the upstream runs out of
    pages or the page budget is spent.

    An empty page always ends the walk, whatever the paging flags claim. A
    failed or malformed page ends it too, leaving the cursor on the last
    committed page so the next run retries from there.
    """

    def run(self, context: RunContext) -> SourceRunSummary:
        summary = self.new_summary()
        cursor = self.read_cursor(context)
        summary.cursor_before = cursor
        summary.cursor_after = cursor
        budget = context.page_budget(self.source)
        summary.stop_reason = "budget_exhausted"

        for page in range(cursor + 1, cursor + budget + 1):
            try:
                batch = context.client.fetch_page(
                    self.source.path,
                    page,
                    collection_key=self.source.collection_key,
                    id_field=self.source.id_field,
                )
            except NotFoundError:
                summary.stop_reason = "not_found"
                break
            except MalformedResponseError as exc:
                self.report_failure(context, summary, f"Malformed page {page}: {exc}")
                summary.stop_reason = "malformed_page"
                break
            except FetchError as exc:
                self.report_failure(context, summary, f"Fetch of page {page} failed: {exc}")
                summary.stop_reason = "fetch_error"
                break

            self.report_invalid_items(context, summary, batch, where=f"page {page}")
            if not batch.records:
                summary.stop_reason = "empty_page"
                break
            summary.records_fetched += len(batch.records)

            table = self.ensure_table(context, batch.records)
            rows = self.prepare_rows(context, table, batch.records, summary)
            try:
                written = self.write(context, lambda repository: repository.upsert_many(table, rows))
            except WriteError as exc:
                summary.records_failed += len(rows)
                self.report_failure(context, summary, f"Page {page}: {exc}")
                summary.stop_reason = "write_error"
                break
            summary.records_written += written

            try:
                self.advance_cursor(context, page, kind=CursorKind.PAGE)
            except WriteError as exc:
                self.report_failure(context, summary, str(exc))
                summary.stop_reason = "write_error"
                break
            summary.pages_processed += 1
            summary.cursor_after = page
            log_event(
                logger,
                logging.INFO,
                "page_ingested",
                source=self.source.name,
                page=page,
                records=written,
                has_next_page=batch.has_next_page,
                total_pages=batch.total_pages,
            )

            if batch.has_next_page is False:
                summary.stop_reason = "last_page"
                break
            if batch.total_pages is not None and page >= batch.total_pages:
                summary.stop_reason = "last_page"
                break

        return self.finish(summary)
