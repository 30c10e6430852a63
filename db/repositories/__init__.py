"""
Repository layer exports.
"""

from db.repositories.cursor_repository import CursorRepository
from db.repositories.run_log_repository import RunLogRepository
from db.repositories.source_lock_repository import SourceLockRepository

__all__ = [
    "CursorRepository",
    "RunLogRepository",
    "SourceLockRepository",
]
