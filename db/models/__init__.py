"""
Model package exports.

Import all system-table models here so metadata registration works without
extra imports.
"""

from db.models.ingestion_cursor import CursorKind, IngestionCursor
from db.models.ingestion_log import IngestionLog, RunLogStatus
from db.models.source_lock import SourceLock

__all__ = [
    "CursorKind",
    "IngestionCursor",
    "IngestionLog",
    "RunLogStatus",
    "SourceLock",
]
