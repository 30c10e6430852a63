"""
Repository for the append-only ingestion run log.
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import Select, delete, select
from sqlalchemy.orm import Session

from db.base import utc_now
from db.models.ingestion_log import IngestionLog


class RunLogRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def append(self, *, source: str, status: str, message: str = "") -> IngestionLog:
        entry = IngestionLog(
            created_at=utc_now(),
            source=source,
            status=status,
            message=message,
        )
        self._session.add(entry)
        self._session.flush()
        return entry

    def list_recent(
        self,
        *,
        limit: int = 100,
        source: str | None = None,
    ) -> list[IngestionLog]:
        stmt: Select[tuple[IngestionLog]] = select(IngestionLog)
        if source:
            stmt = stmt.where(IngestionLog.source == source)
        stmt = stmt.order_by(IngestionLog.created_at.desc(), IngestionLog.id.desc()).limit(
            max(1, limit)
        )
        return list(self._session.scalars(stmt).all())

    def prune_older_than(self, *, days: int) -> int:
        """
        Delete entries older than ``days`` and return how many were removed.
        """
        cutoff = utc_now() - timedelta(days=max(0, days))
        result = self._session.execute(
            delete(IngestionLog).where(IngestionLog.created_at < cutoff)
        )
        return int(result.rowcount or 0)
