"""
app/domain/catalog_ingestion.py

Domain models for catalog source definitions and run summaries.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from app.ingestion.errors import SourceConfigError
from app.ingestion.sanitizer import normalize_identifier

SYSTEM_TABLES = frozenset({"ingestion_cursors", "ingestion_logs", "ingestion_source_locks"})


class SourceKind:
    SNAPSHOT = "snapshot"
    INSERT_IF_NEW = "insert_if_new"
    PAGINATED = "paginated"
    SEQUENTIAL = "sequential"

    ALL = frozenset({SNAPSHOT, INSERT_IF_NEW, PAGINATED, SEQUENTIAL})
    CURSOR_KINDS = frozenset({PAGINATED, SEQUENTIAL})


class SourceRunStatus:
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class SourceDefinition:
    """
    One upstream endpoint configured for ingestion.

    ``path`` is relative to the API base URL. Sequential sources embed the
    walked identifier through an ``{id}`` placeholder. ``start_position`` is
    the first page or identifier fetched when no cursor exists yet.
    """

    name: str
    kind: str
    path: str
    table: str | None = None
    id_field: str = "id"
    collection_key: str | None = None
    start_position: int = 1
    page_budget: int | None = None
    id_budget: int | None = None
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise SourceConfigError("Source name must not be empty.")
        if self.kind not in SourceKind.ALL:
            raise SourceConfigError(
                f"Source '{self.name}' has unknown kind '{self.kind}'. "
                f"Allowed kinds: {sorted(SourceKind.ALL)}."
            )
        if not self.path.startswith("/"):
            raise SourceConfigError(f"Source '{self.name}' path must start with '/'.")
        if self.kind == SourceKind.SEQUENTIAL and "{id}" not in self.path:
            raise SourceConfigError(
                f"Sequential source '{self.name}' path must contain an '{{id}}' placeholder."
            )
        if self.start_position < 1:
            raise SourceConfigError(f"Source '{self.name}' start_position must be >= 1.")
        try:
            table_name = normalize_identifier(self.table or self.name)
        except ValueError as exc:
            raise SourceConfigError(str(exc)) from exc
        if table_name in SYSTEM_TABLES:
            raise SourceConfigError(
                f"Source '{self.name}' cannot write into system table '{table_name}'."
            )

    @property
    def table_name(self) -> str:
        return normalize_identifier(self.table or self.name)

    @property
    def uses_cursor(self) -> bool:
        return self.kind in SourceKind.CURSOR_KINDS

    @property
    def default_cursor(self) -> int:
        """Cursor value meaning "nothing consumed yet"."""
        return self.start_position - 1


@dataclass
class SourceRunSummary:
    """
    Counters and outcome for one source within one run.
    """

    source: str
    kind: str
    status: str = SourceRunStatus.SUCCESS
    records_fetched: int = 0
    records_written: int = 0
    records_unchanged: int = 0
    records_failed: int = 0
    records_skipped: int = 0
    pages_processed: int = 0
    cursor_before: int | None = None
    cursor_after: int | None = None
    stop_reason: str | None = None
    errors: list[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def finalize(self) -> "SourceRunSummary":
        if self.status in {SourceRunStatus.FAILED, SourceRunStatus.SKIPPED}:
            return self
        if self.errors or self.records_failed:
            self.status = SourceRunStatus.PARTIAL
        return self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RunSummary:
    """
    Outcome of one coordinator invocation across all selected sources.
    """

    run_id: str
    started_at: datetime
    finished_at: datetime
    sources: list[SourceRunSummary]
    logs_pruned: int = 0

    @property
    def success(self) -> bool:
        return all(summary.status != SourceRunStatus.FAILED for summary in self.sources)

    @property
    def records_written(self) -> int:
        return sum(summary.records_written for summary in self.sources)
