"""
app/ingestion/strategies/sequential.py

Walk over per-ID lookups (``/anime/{id}``) starting after the cursor.
"""

from __future__ import annotations

import logging
import time

from app.domain.catalog_ingestion import SourceRunSummary
from app.ingestion.errors import (
    MalformedResponseError,
    NotFoundError,
    TransientFetchError,
    WriteError,
)
from app.ingestion.strategies.base import RunContext, SourceStrategy
from app.logging_utils import log_event
from db.models.ingestion_cursor import CursorKind

logger = logging.getLogger(__name__)


class SequentialStrategy(SourceStrategy):
    """
    Fetch ``cursor + 1, cursor + 2, ...`` one identifier at a time.

    Rules:
      - a 404 means the frontier was reached and ends the walk quietly;
      - an ID that still fails after client retries, or returns a malformed
        body, is skipped and the walk moves on;
      - ``max_consecutive_failures`` failed or malformed fetches in a row
        abort the walk;
      - the cursor follows the highest ID written, except that after a write
        failure it stays below the failed ID for the rest of the run.
    """

    def run(self, context: RunContext) -> SourceRunSummary:
        summary = self.new_summary()
        cursor = self.read_cursor(context)
        summary.cursor_before = cursor
        summary.cursor_after = cursor
        budget = context.id_budget(self.source)
        delay_seconds = context.settings.request_delay_seconds
        max_failures = max(1, context.settings.max_consecutive_failures)

        consecutive_failures = 0
        cursor_frozen = False
        table = None
        summary.stop_reason = "budget_exhausted"

        for offset, entity_id in enumerate(range(cursor + 1, cursor + budget + 1)):
            if offset and delay_seconds > 0:
                time.sleep(delay_seconds)

            try:
                record = context.client.fetch_entity(self.source.path, entity_id)
            except NotFoundError:
                summary.stop_reason = "not_found"
                break
            except (MalformedResponseError, TransientFetchError) as exc:
                summary.records_skipped += 1
                summary.records_failed += 1
                consecutive_failures += 1
                if isinstance(exc, MalformedResponseError):
                    message = f"Malformed response for ID {entity_id}: {exc}"
                else:
                    message = f"Fetch of ID {entity_id} failed: {exc}"
                self.report_failure(context, summary, message)
                if consecutive_failures >= max_failures:
                    summary.stop_reason = "too_many_failures"
                    break
                continue

            consecutive_failures = 0
            summary.records_fetched += 1
            if record.get(self.source.id_field) in (None, ""):
                record = {**record, self.source.id_field: entity_id}

            if table is None:
                table = self.ensure_table(context, [record])
            rows = self.prepare_rows(context, table, [record], summary)
            if not rows:
                continue

            try:
                self.write(context, lambda repository: repository.upsert(table, rows[0]))
            except WriteError as exc:
                summary.records_failed += 1
                cursor_frozen = True
                self.report_failure(context, summary, f"ID {entity_id}: {exc}")
                continue
            summary.records_written += 1

            if not cursor_frozen:
                try:
                    self.advance_cursor(context, entity_id, kind=CursorKind.ID)
                except WriteError as exc:
                    cursor_frozen = True
                    self.report_failure(context, summary, str(exc))
                    continue
                summary.cursor_after = entity_id

        log_event(
            logger,
            logging.INFO,
            "sequential_walk_finished",
            source=self.source.name,
            cursor_before=summary.cursor_before,
            cursor_after=summary.cursor_after,
            written=summary.records_written,
            skipped=summary.records_skipped,
            stop_reason=summary.stop_reason,
        )
        return self.finish(summary)
