"""
db/repositories/cursor_repository.py

Persistence for per-source progress cursors.

The caller controls commit/rollback; this repository never commits on its
own. Strategies commit a batch's catalog writes before calling
``advance_cursor`` so a crash between the two steps can only replay work,
never drop it.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.base import utc_now
from db.dialects import upsert_insert
from db.models.ingestion_cursor import IngestionCursor


class CursorRepository:
    """
    Repository for reading and advancing ``ingestion_cursors`` rows.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_cursor(self, source: str, *, default: int = 0) -> int:
        """
        Return the last committed position for ``source``, or ``default``.
        """
        position = self._session.scalar(
            select(IngestionCursor.position).where(IngestionCursor.source == source)
        )
        return default if position is None else int(position)

    def advance_cursor(self, source: str, position: int, *, kind: str) -> None:
        """
        Move the cursor forward to ``position``.

        A position lower than or equal to the stored one is ignored, so the
        cursor only ever moves forward.
        """
        now = utc_now()
        stmt = upsert_insert(self._session, IngestionCursor.__table__).values(
            source=source,
            kind=kind,
            position=position,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["source"],
            set_={
                "position": stmt.excluded.position,
                "kind": stmt.excluded.kind,
                "updated_at": stmt.excluded.updated_at,
            },
            where=IngestionCursor.__table__.c.position < stmt.excluded.position,
        )
        self._session.execute(stmt)

    def reset_cursor(self, source: str, position: int, *, kind: str) -> None:
        """
        Overwrite the cursor unconditionally. Only used by manual resets.
        """
        now = utc_now()
        stmt = upsert_insert(self._session, IngestionCursor.__table__).values(
            source=source,
            kind=kind,
            position=position,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["source"],
            set_={
                "position": stmt.excluded.position,
                "kind": stmt.excluded.kind,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        self._session.execute(stmt)

    def list_cursors(self) -> list[IngestionCursor]:
        stmt = select(IngestionCursor).order_by(IngestionCursor.source)
        return list(self._session.scalars(stmt).all())
