"""
Repository for single-flight source leases.
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from db.base import utc_now
from db.dialects import upsert_insert
from db.models.source_lock import SourceLock


class SourceLockRepository:
    """
    Acquire and release per-source leases.

    Acquisition is a single INSERT ... ON CONFLICT statement that only takes
    over an existing row once its lease has expired, so two overlapping runs
    cannot both own the same source.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def acquire(self, source: str, *, owner: str, ttl_seconds: float) -> bool:
        now = utc_now()
        expires_at = now + timedelta(seconds=max(1.0, ttl_seconds))
        stmt = upsert_insert(self._session, SourceLock.__table__).values(
            source=source,
            owner=owner,
            acquired_at=now,
            expires_at=expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["source"],
            set_={
                "owner": stmt.excluded.owner,
                "acquired_at": stmt.excluded.acquired_at,
                "expires_at": stmt.excluded.expires_at,
            },
            where=SourceLock.__table__.c.expires_at < now,
        )
        self._session.execute(stmt)
        current_owner = self._session.scalar(
            select(SourceLock.owner).where(SourceLock.source == source)
        )
        return current_owner == owner

    def release(self, source: str, *, owner: str) -> None:
        self._session.execute(
            delete(SourceLock).where(
                SourceLock.source == source,
                SourceLock.owner == owner,
            )
        )

    def get_owner(self, source: str) -> str | None:
        return self._session.scalar(select(SourceLock.owner).where(SourceLock.source == source))
