"""
app/domain package marker.
"""

from app.domain.catalog_ingestion import (
    SourceDefinition,
    SourceKind,
    SourceRunStatus,
    SourceRunSummary,
    RunSummary,
)

__all__ = [
    "RunSummary",
    "SourceDefinition",
    "SourceKind",
    "SourceRunStatus",
    "SourceRunSummary",
]
