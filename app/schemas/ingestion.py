"""
app/schemas/ingestion.py

Response and request schemas for catalog ingestion endpoints.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from app.domain.catalog_ingestion import RunSummary, SourceRunSummary


class SourceRunSummaryResponse(BaseModel):
    """
    Outcome of one source within a run.
    """

    source: str
    kind: str
    status: str
    records_fetched: int = Field(..., ge=0)
    records_written: int = Field(..., ge=0)
    records_unchanged: int = Field(..., ge=0)
    records_failed: int = Field(..., ge=0)
    records_skipped: int = Field(..., ge=0)
    pages_processed: int = Field(..., ge=0)
    cursor_before: int | None = None
    cursor_after: int | None = None
    stop_reason: str | None = None
    errors: list[str] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: SourceRunSummary) -> "SourceRunSummaryResponse":
        return cls(**summary.to_dict())


class CatalogRunResponse(BaseModel):
    """
    API response model for a triggered ingestion run.
    """

    success: bool
    run_id: str
    test_mode: bool = False
    started_at: datetime
    finished_at: datetime
    records_written: int = Field(..., ge=0)
    logs_pruned: int = Field(default=0, ge=0)
    sources: list[SourceRunSummaryResponse]

    @classmethod
    def from_run(cls, summary: RunSummary, *, test_mode: bool = False) -> "CatalogRunResponse":
        return cls(
            success=summary.success,
            run_id=summary.run_id,
            test_mode=test_mode,
            started_at=summary.started_at,
            finished_at=summary.finished_at,
            records_written=summary.records_written,
            logs_pruned=summary.logs_pruned,
            sources=[SourceRunSummaryResponse.from_summary(item) for item in summary.sources],
        )


class SourceInfoResponse(BaseModel):
    name: str
    kind: str
    table: str


class CursorResponse(BaseModel):
    source: str
    kind: str
    position: int
    updated_at: datetime | None = None


class RunLogEntryResponse(BaseModel):
    created_at: datetime
    source: str
    status: str
    message: str


class IngestionStatusResponse(BaseModel):
    """
    Cursor positions and the most recent run-log entries.
    """

    success: bool = True
    sources: list[SourceInfoResponse]
    cursors: list[CursorResponse]
    recent_logs: list[RunLogEntryResponse]


class CursorResetRequest(BaseModel):
    source: str = Field(..., min_length=1)
    position: int | None = Field(
        default=None,
        ge=0,
        description="Last consumed page or ID; omit to restart from the source's start position.",
    )


class CursorResetResponse(BaseModel):
    success: bool = True
    source: str
    position: int


class HealthResponse(BaseModel):
    success: bool
    database: str
