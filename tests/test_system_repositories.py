"""
tests/test_system_repositories.py

Cursor, run-log and source-lock repositories.
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import update
from sqlalchemy.orm import Session

from db.base import utc_now
from db.models import CursorKind, IngestionLog, RunLogStatus, SourceLock
from db.repositories.cursor_repository import CursorRepository
from db.repositories.run_log_repository import RunLogRepository
from db.repositories.source_lock_repository import SourceLockRepository


class TestCursorRepository:
    def test_absent_cursor_returns_default(self, db: Session) -> None:
        assert CursorRepository(db).get_cursor("tv", default=0) == 0
        assert CursorRepository(db).get_cursor("tv", default=99) == 99

    def test_advance_is_monotonic(self, db: Session) -> None:
        repository = CursorRepository(db)
        repository.advance_cursor("tv", 5, kind=CursorKind.PAGE)
        db.commit()
        repository.advance_cursor("tv", 3, kind=CursorKind.PAGE)
        db.commit()

        assert repository.get_cursor("tv") == 5

        repository.advance_cursor("tv", 6, kind=CursorKind.PAGE)
        db.commit()
        assert repository.get_cursor("tv") == 6

    def test_reset_overwrites_unconditionally(self, db: Session) -> None:
        repository = CursorRepository(db)
        repository.advance_cursor("anime_info", 120, kind=CursorKind.ID)
        repository.reset_cursor("anime_info", 10, kind=CursorKind.ID)
        db.commit()

        assert repository.get_cursor("anime_info") == 10
        cursors = repository.list_cursors()
        assert [(cursor.source, cursor.kind, cursor.position) for cursor in cursors] == [
            ("anime_info", "id", 10)
        ]


class TestRunLogRepository:
    def test_append_and_list_recent(self, db: Session) -> None:
        repository = RunLogRepository(db)
        repository.append(source="tv", status=RunLogStatus.STARTED)
        repository.append(source="tv", status=RunLogStatus.SUCCESS, message="written=3")
        repository.append(source="ova", status=RunLogStatus.FAILED, message="boom")
        db.commit()

        assert len(repository.list_recent()) == 3
        tv_entries = repository.list_recent(source="tv")
        assert {entry.status for entry in tv_entries} == {"started", "success"}
        assert len(repository.list_recent(limit=1)) == 1

    def test_prune_removes_only_old_entries(self, db: Session) -> None:
        repository = RunLogRepository(db)
        old = repository.append(source="tv", status=RunLogStatus.SUCCESS)
        repository.append(source="tv", status=RunLogStatus.SUCCESS)
        db.execute(
            update(IngestionLog)
            .where(IngestionLog.id == old.id)
            .values(created_at=utc_now() - timedelta(days=45))
        )
        db.commit()

        assert repository.prune_older_than(days=30) == 1
        db.commit()
        assert len(repository.list_recent()) == 1


class TestSourceLockRepository:
    def test_second_owner_is_refused_while_lease_is_live(self, db: Session) -> None:
        repository = SourceLockRepository(db)

        assert repository.acquire("tv", owner="run-a", ttl_seconds=600)
        db.commit()
        assert not repository.acquire("tv", owner="run-b", ttl_seconds=600)
        db.commit()
        assert repository.get_owner("tv") == "run-a"

    def test_expired_lease_can_be_taken_over(self, db: Session) -> None:
        repository = SourceLockRepository(db)
        repository.acquire("tv", owner="run-a", ttl_seconds=600)
        db.execute(
            update(SourceLock)
            .where(SourceLock.source == "tv")
            .values(expires_at=utc_now() - timedelta(seconds=5))
        )
        db.commit()

        assert repository.acquire("tv", owner="run-b", ttl_seconds=600)
        assert repository.get_owner("tv") == "run-b"

    def test_release_only_by_owner(self, db: Session) -> None:
        repository = SourceLockRepository(db)
        repository.acquire("tv", owner="run-a", ttl_seconds=600)
        repository.release("tv", owner="run-b")
        db.commit()
        assert repository.get_owner("tv") == "run-a"

        repository.release("tv", owner="run-a")
        db.commit()
        assert repository.get_owner("tv") is None
