"""
tests/test_strategies.py

Source strategies against SQLite with a fake upstream.

Coverage
--------
- Snapshot: change detection, shared /home document, malformed response
- Insert-if-new: captured rows are never updated
- Paginated walk: stop conditions, malformed page, outage, test budget
- Sequential walk: frontier at 404, gaps, consecutive failures, write errors
"""

from __future__ import annotations

from dataclasses import replace

import pytest
import requests
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.domain.catalog_ingestion import SourceDefinition, SourceKind, SourceRunStatus
from app.ingestion.errors import FatalInitError
from app.ingestion.schema_registrar import SchemaRegistrar
from app.ingestion.strategies import base as strategy_base
from app.ingestion.strategies import (
    InsertIfNewStrategy,
    PaginatedStrategy,
    ResponseCache,
    SequentialStrategy,
    SnapshotStrategy,
)
from app.repositories.catalog_repository import CatalogRepository
from db.models import CursorKind
from db.repositories.cursor_repository import CursorRepository
from db.repositories.run_log_repository import RunLogRepository
from tests.fakes import FakeHTTPSession, FakeResponse, entity_body, ok, page_body

TRENDING = SourceDefinition(name="trending", kind=SourceKind.SNAPSHOT, path="/home", collection_key="trending")
SPOTLIGHT = SourceDefinition(name="spotlight", kind=SourceKind.SNAPSHOT, path="/home", collection_key="spotlight")
NEW_ADDED = SourceDefinition(name="new_added", kind=SourceKind.INSERT_IF_NEW, path="/home", collection_key="newAdded")
TV = SourceDefinition(name="tv", kind=SourceKind.PAGINATED, path="/animes/tv")
ANIME_INFO = SourceDefinition(name="anime_info", kind=SourceKind.SEQUENTIAL, path="/anime/{id}")
GENRES = SourceDefinition(
    name="genres", kind=SourceKind.INSERT_IF_NEW, path="/home", collection_key="genres", id_field="name"
)
TOP10_TODAY = SourceDefinition(
    name="top10_today", kind=SourceKind.SNAPSHOT, path="/home", collection_key="top10.today"
)


def _home(**collections: list[dict]) -> FakeResponse:
    return ok({"success": True, "data": collections})


def _rows(db: Session, table_name: str) -> int:
    table = SchemaRegistrar(db).get_table(table_name)
    return 0 if table is None else CatalogRepository(db).count_rows(table)


def _stored(db: Session, table_name: str, identifier: object) -> dict | None:
    table = SchemaRegistrar(db).get_table(table_name)
    assert table is not None
    return CatalogRepository(db).get_row(table, identifier)


def _anime(page: int, count: int = 2) -> list[dict]:
    return [{"id": page * 100 + offset, "name": f"Anime {page}-{offset}"} for offset in range(count)]


def _failed_logs(db: Session, source: str) -> list[str]:
    return [entry.message for entry in RunLogRepository(db).list_recent(source=source) if entry.status == "failed"]


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


class TestSnapshotStrategy:
    def test_unchanged_records_are_not_rewritten(self, db: Session, make_context) -> None:
        records = [{"id": "frieren-18542", "name": "Frieren"}, {"id": "one-piece-100", "name": "One Piece"}]
        fake = FakeHTTPSession({"/home": _home(trending=records)})

        first = SnapshotStrategy(TRENDING).run(make_context(fake))
        second = SnapshotStrategy(TRENDING).run(make_context(fake))

        assert first.records_written == 2
        assert second.records_written == 0
        assert second.records_unchanged == 2
        assert second.status == SourceRunStatus.SUCCESS
        assert _rows(db, "trending") == 2

    def test_changed_record_is_upserted(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession({"/home": _home(trending=[{"id": "a", "rank": 1}, {"id": "b", "rank": 2}])})
        SnapshotStrategy(TRENDING).run(make_context(fake))

        fake.routes["/home"] = _home(trending=[{"id": "a", "rank": 2}, {"id": "b", "rank": 2}])
        summary = SnapshotStrategy(TRENDING).run(make_context(fake))

        assert summary.records_written == 1
        assert summary.records_unchanged == 1
        assert _stored(db, "trending", "a")["rank"] == "2"

    def test_sources_share_one_home_request_per_run(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession({"/home": _home(trending=[{"id": 1}], spotlight=[{"id": 2}, {"id": 3}])})
        cache = ResponseCache()

        SnapshotStrategy(TRENDING).run(make_context(fake, cache=cache))
        SnapshotStrategy(SPOTLIGHT).run(make_context(fake, cache=cache))

        assert fake.paths_called() == ["/home"]
        assert _rows(db, "trending") == 1
        assert _rows(db, "spotlight") == 2

    def test_missing_collection_is_logged_not_raised(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession({"/home": _home(spotlight=[{"id": 1}])})

        summary = SnapshotStrategy(TRENDING).run(make_context(fake))

        assert summary.status == SourceRunStatus.FAILED
        assert summary.stop_reason == "malformed_response"
        assert _failed_logs(db, "trending")

    def test_records_without_identifier_are_counted(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession({"/home": _home(trending=[{"id": 1, "name": "ok"}, {"name": "no id"}])})

        summary = SnapshotStrategy(TRENDING).run(make_context(fake))

        assert summary.records_written == 1
        assert summary.records_failed == 1
        assert summary.status == SourceRunStatus.PARTIAL

    def test_unreadable_items_are_logged(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession({"/home": _home(trending=[{"id": 1, "name": "ok"}, None, ["nested"]])})

        summary = SnapshotStrategy(TRENDING).run(make_context(fake))

        assert summary.records_written == 1
        assert summary.records_skipped == 2
        assert summary.status == SourceRunStatus.PARTIAL
        assert len(summary.errors) == 1
        assert any("Dropped 2" in message for message in _failed_logs(db, "trending"))

    def test_dotted_collection_key_reads_top10(self, db: Session, make_context) -> None:
        top10 = {
            "today": [{"id": "frieren-18542", "rank": 1}, {"id": "one-piece-100", "rank": 2}],
            "week": [{"id": "naruto-677", "rank": 1}],
        }
        fake = FakeHTTPSession({"/home": _home(top10=top10)})

        summary = SnapshotStrategy(TOP10_TODAY).run(make_context(fake))

        assert summary.status == SourceRunStatus.SUCCESS
        assert summary.records_written == 2
        assert _stored(db, "top10_today", "one-piece-100")["rank"] == "2"

    def test_failed_home_fetch_is_not_repeated_within_a_run(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession({"/home": FakeResponse(503)})
        cache = ResponseCache()

        first = SnapshotStrategy(TRENDING).run(make_context(fake, cache=cache))
        calls_after_first = len(fake.calls)
        second = SnapshotStrategy(SPOTLIGHT).run(make_context(fake, cache=cache))

        assert calls_after_first == 3
        assert len(fake.calls) == calls_after_first
        assert first.stop_reason == second.stop_reason == "fetch_error"
        assert second.status == SourceRunStatus.FAILED
        assert _failed_logs(db, "spotlight")

    def test_table_creation_is_retried(
        self,
        db: Session,
        make_context,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        original_ensure = SchemaRegistrar.ensure_table
        attempts: list[str] = []

        def flaky_ensure(self, name, sample_records, *, id_field="id"):
            attempts.append(name)
            if len(attempts) == 1:
                raise OperationalError("CREATE TABLE", {}, Exception("database is locked"))
            return original_ensure(self, name, sample_records, id_field=id_field)

        monkeypatch.setattr(SchemaRegistrar, "ensure_table", flaky_ensure)
        monkeypatch.setattr(strategy_base.time, "sleep", lambda seconds: None)
        fake = FakeHTTPSession({"/home": _home(trending=[{"id": 1}])})

        summary = SnapshotStrategy(TRENDING).run(make_context(fake))

        assert attempts == ["trending", "trending"]
        assert summary.records_written == 1

    def test_table_creation_gives_up_after_bounded_attempts(
        self,
        db: Session,
        make_context,
        ingestion_settings,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        calls: list[str] = []

        def broken_ensure(self, name, sample_records, *, id_field="id"):
            calls.append(name)
            raise OperationalError("CREATE TABLE", {}, Exception("permission denied"))

        monkeypatch.setattr(SchemaRegistrar, "ensure_table", broken_ensure)
        monkeypatch.setattr(strategy_base.time, "sleep", lambda seconds: None)
        fake = FakeHTTPSession({"/home": _home(trending=[{"id": 1}])})
        settings = replace(ingestion_settings, bootstrap_max_attempts=2)

        with pytest.raises(FatalInitError):
            SnapshotStrategy(TRENDING).run(make_context(fake, settings=settings))
        assert len(calls) == 2


# ---------------------------------------------------------------------------
# Insert-if-new
# ---------------------------------------------------------------------------


class TestInsertIfNewStrategy:
    def test_only_unseen_identifiers_are_inserted(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession({"/home": _home(newAdded=[{"id": 1, "name": "First"}, {"id": 2, "name": "Second"}])})
        first = InsertIfNewStrategy(NEW_ADDED).run(make_context(fake))

        fake.routes["/home"] = _home(
            newAdded=[{"id": 1, "name": "Renamed"}, {"id": 2, "name": "Second"}, {"id": 3, "name": "Third"}]
        )
        second = InsertIfNewStrategy(NEW_ADDED).run(make_context(fake))

        assert first.records_written == 2
        assert second.records_written == 1
        assert second.records_unchanged == 2
        assert _stored(db, "new_added", 1)["name"] == "First"
        assert _rows(db, "new_added") == 3

    def test_genre_names_are_stored_by_name(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession({"/home": _home(genres=["Action", "Drama"])})
        first = InsertIfNewStrategy(GENRES).run(make_context(fake))

        fake.routes["/home"] = _home(genres=["Action", "Drama", "Slice of Life"])
        second = InsertIfNewStrategy(GENRES).run(make_context(fake))

        assert first.records_written == 2
        assert first.status == SourceRunStatus.SUCCESS
        assert second.records_written == 1
        assert second.records_unchanged == 2
        assert _stored(db, "genres", "Slice of Life") is not None
        assert _rows(db, "genres") == 3


# ---------------------------------------------------------------------------
# Paginated walk
# ---------------------------------------------------------------------------


class TestPaginatedStrategy:
    def test_walks_until_empty_page(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession(
            {
                ("/animes/tv", 1): page_body(_anime(1), has_next=True),
                ("/animes/tv", 2): page_body(_anime(2), has_next=True),
                ("/animes/tv", 3): page_body([], has_next=True),
            }
        )

        summary = PaginatedStrategy(TV).run(make_context(fake))

        assert summary.cursor_before == 0
        assert summary.cursor_after == 2
        assert summary.pages_processed == 2
        assert summary.stop_reason == "empty_page"
        assert CursorRepository(db).get_cursor("tv") == 2
        assert _rows(db, "tv") == 4

    def test_stops_on_has_next_page_false(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession(
            {
                ("/animes/tv", 1): page_body(_anime(1), has_next=True),
                ("/animes/tv", 2): page_body(_anime(2), has_next=False),
            }
        )

        summary = PaginatedStrategy(TV).run(make_context(fake))

        assert summary.stop_reason == "last_page"
        assert [params["page"] for _, params in fake.calls] == [1, 2]

    def test_stops_at_total_pages(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession({("/animes/tv", 1): page_body(_anime(1), total_pages=1)})

        summary = PaginatedStrategy(TV).run(make_context(fake))

        assert summary.stop_reason == "last_page"
        assert summary.cursor_after == 1

    def test_page_budget_bounds_the_walk(self, db: Session, make_context, ingestion_settings) -> None:
        fake = FakeHTTPSession({("/animes/tv", page): page_body(_anime(page), has_next=True) for page in range(1, 10)})
        settings = replace(ingestion_settings, page_budget=3)

        summary = PaginatedStrategy(TV).run(make_context(fake, settings=settings))

        assert summary.stop_reason == "budget_exhausted"
        assert CursorRepository(db).get_cursor("tv") == 3

        PaginatedStrategy(TV).run(make_context(fake, settings=settings))
        assert CursorRepository(db).get_cursor("tv") == 6

    def test_test_mode_fetches_one_page(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession({("/animes/tv", page): page_body(_anime(page), has_next=True) for page in range(1, 4)})

        summary = PaginatedStrategy(TV).run(make_context(fake, test_mode=True))

        assert summary.pages_processed == 1
        assert len(fake.calls) == 1

    def test_malformed_page_keeps_cursor_on_last_committed_page(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession(
            {
                ("/animes/tv", 1): page_body(_anime(1), total_pages=5),
                ("/animes/tv", 2): page_body(_anime(2), total_pages=5),
                ("/animes/tv", 3): ok({"success": True, "data": {"message": "no data"}}),
                ("/animes/tv", 4): page_body(_anime(4), total_pages=5),
            }
        )

        summary = PaginatedStrategy(TV).run(make_context(fake))

        assert summary.stop_reason == "malformed_page"
        assert summary.status == SourceRunStatus.PARTIAL
        assert CursorRepository(db).get_cursor("tv") == 2
        assert _rows(db, "tv") == 4
        assert any("page 3" in message for message in _failed_logs(db, "tv"))

        fake.calls.clear()
        PaginatedStrategy(TV).run(make_context(fake))
        assert fake.calls[0][1] == {"page": 3}

    def test_full_outage_leaves_cursor_unchanged(self, db: Session, make_context) -> None:
        CursorRepository(db).reset_cursor("tv", 7, kind=CursorKind.PAGE)
        db.commit()
        fake = FakeHTTPSession(default=requests.ConnectionError("upstream down"))

        summary = PaginatedStrategy(TV).run(make_context(fake))

        assert summary.status == SourceRunStatus.FAILED
        assert summary.records_written == 0
        assert CursorRepository(db).get_cursor("tv") == 7
        assert SchemaRegistrar(db).get_table("tv") is None
        assert _failed_logs(db, "tv")
        assert {params["page"] for _, params in fake.calls} == {8}

    def test_unreadable_items_on_a_page_are_logged(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession({("/animes/tv", 1): page_body([*_anime(1), None], has_next=False)})

        summary = PaginatedStrategy(TV).run(make_context(fake))

        assert summary.records_written == 2
        assert summary.records_skipped == 1
        assert summary.status == SourceRunStatus.PARTIAL
        assert any("page 1" in message for message in _failed_logs(db, "tv"))

    def test_start_position_applies_without_cursor(self, db: Session, make_context) -> None:
        source = replace(TV, start_position=5)
        fake = FakeHTTPSession({("/animes/tv", 5): page_body(_anime(5), has_next=False)})

        summary = PaginatedStrategy(source).run(make_context(fake))

        assert summary.cursor_before == 4
        assert summary.cursor_after == 5


# ---------------------------------------------------------------------------
# Sequential walk
# ---------------------------------------------------------------------------


def _entities(ids: range) -> dict[str, FakeResponse]:
    return {f"/anime/{entity_id}": entity_body({"id": entity_id, "name": f"Anime {entity_id}"}) for entity_id in ids}


class TestSequentialStrategy:
    def test_not_found_marks_the_frontier(self, db: Session, make_context) -> None:
        CursorRepository(db).reset_cursor("anime_info", 10, kind=CursorKind.ID)
        db.commit()
        fake = FakeHTTPSession(_entities(range(11, 15)))

        summary = SequentialStrategy(ANIME_INFO).run(make_context(fake))

        assert summary.stop_reason == "not_found"
        assert summary.status == SourceRunStatus.SUCCESS
        assert summary.records_written == 4
        assert CursorRepository(db).get_cursor("anime_info") == 14
        assert fake.paths_called()[-1] == "/anime/15"

    def test_starts_at_id_one_without_cursor(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession(_entities(range(1, 3)))

        summary = SequentialStrategy(ANIME_INFO).run(make_context(fake))

        assert summary.cursor_before == 0
        assert summary.cursor_after == 2
        assert fake.paths_called()[0] == "/anime/1"

    def test_gaps_are_skipped_and_do_not_block_cursor(self, db: Session, make_context) -> None:
        routes = _entities(range(1, 4))
        routes["/anime/2"] = FakeResponse(500)
        fake = FakeHTTPSession(routes)

        summary = SequentialStrategy(ANIME_INFO).run(make_context(fake))

        assert summary.records_written == 2
        assert summary.records_skipped == 1
        assert summary.status == SourceRunStatus.PARTIAL
        assert CursorRepository(db).get_cursor("anime_info") == 3

    def test_malformed_record_is_skipped(self, db: Session, make_context) -> None:
        routes = _entities(range(1, 4))
        routes["/anime/2"] = ok({"data": {}})
        fake = FakeHTTPSession(routes)

        summary = SequentialStrategy(ANIME_INFO).run(make_context(fake))

        assert summary.records_written == 2
        assert summary.records_failed == 1
        assert CursorRepository(db).get_cursor("anime_info") == 3

    def test_bodies_without_data_are_never_stored(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession(default=ok({"success": False, "message": "Anime not found"}))

        summary = SequentialStrategy(ANIME_INFO).run(make_context(fake))

        assert summary.records_written == 0
        assert summary.records_skipped == 3
        assert summary.stop_reason == "too_many_failures"
        assert summary.status == SourceRunStatus.FAILED
        assert CursorRepository(db).get_cursor("anime_info") == 0
        assert SchemaRegistrar(db).get_table("anime_info") is None

    def test_consecutive_failures_abort_the_walk(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession(default=FakeResponse(502))

        summary = SequentialStrategy(ANIME_INFO).run(make_context(fake))

        assert summary.stop_reason == "too_many_failures"
        assert summary.status == SourceRunStatus.FAILED
        assert summary.records_skipped == 3
        assert CursorRepository(db).get_cursor("anime_info") == 0
        assert len(_failed_logs(db, "anime_info")) == 3

    def test_id_budget_bounds_the_walk(self, db: Session, make_context, ingestion_settings) -> None:
        fake = FakeHTTPSession(_entities(range(1, 30)))

        summary = SequentialStrategy(ANIME_INFO).run(
            make_context(fake, settings=replace(ingestion_settings, id_budget=5))
        )

        assert summary.stop_reason == "budget_exhausted"
        assert CursorRepository(db).get_cursor("anime_info") == 5

    def test_test_mode_uses_test_budget(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession(_entities(range(1, 30)))

        SequentialStrategy(ANIME_INFO).run(make_context(fake, test_mode=True))

        assert CursorRepository(db).get_cursor("anime_info") == 2

    def test_record_without_identifier_gets_walked_id(self, db: Session, make_context) -> None:
        fake = FakeHTTPSession({"/anime/1": entity_body({"name": "No id", "episodes": 12})})

        SequentialStrategy(ANIME_INFO).run(make_context(fake))

        assert _stored(db, "anime_info", 1)["name"] == "No id"

    def test_write_error_freezes_cursor_below_failed_id(
        self,
        db: Session,
        make_context,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        original_upsert = CatalogRepository.upsert

        def flaky_upsert(self, table, row):
            if row["id"] == 2:
                raise OperationalError("INSERT", {}, Exception("disk I/O error"))
            return original_upsert(self, table, row)

        monkeypatch.setattr(CatalogRepository, "upsert", flaky_upsert)
        fake = FakeHTTPSession(_entities(range(1, 4)))

        summary = SequentialStrategy(ANIME_INFO).run(make_context(fake))

        assert summary.records_written == 2
        assert summary.records_failed == 1
        assert summary.cursor_after == 1
        assert CursorRepository(db).get_cursor("anime_info") == 1
        assert _stored(db, "anime_info", 3) is not None
        assert _stored(db, "anime_info", 2) is None
