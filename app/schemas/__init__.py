"""
app/schemas package marker.
"""

from app.schemas.ingestion import (
    CatalogRunResponse,
    CursorResetRequest,
    CursorResetResponse,
    CursorResponse,
    HealthResponse,
    IngestionStatusResponse,
    RunLogEntryResponse,
    SourceInfoResponse,
    SourceRunSummaryResponse,
)

__all__ = [
    "CatalogRunResponse",
    "CursorResetRequest",
    "CursorResetResponse",
    "CursorResponse",
    "HealthResponse",
    "IngestionStatusResponse",
    "RunLogEntryResponse",
    "SourceInfoResponse",
    "SourceRunSummaryResponse",
]
