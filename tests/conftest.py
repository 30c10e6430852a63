"""
tests/conftest.py

Shared fixtures: an in-memory SQLite database with system tables, a fake
``requests`` session routed by path and page, and zero-delay client
settings so retry paths run instantly.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import CatalogHTTPSettings, CatalogIngestionSettings
from app.connectors.catalog_client import CatalogAPIClient
from app.ingestion.bootstrap import init_system_tables
from app.ingestion.strategies import ResponseCache, RunContext
from db.session import build_session_factory
from tests.fakes import BASE_URL, NO_WAIT_POLICIES, FakeHTTPSession


@pytest.fixture()
def engine() -> Iterator[Engine]:
    db_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_system_tables(db_engine, max_attempts=1)
    yield db_engine
    db_engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return build_session_factory(engine)


@pytest.fixture()
def db(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def http_settings() -> CatalogHTTPSettings:
    return CatalogHTTPSettings(timeout_seconds=1.0, max_retries=2, rate_limit_per_second=0.0)


@pytest.fixture()
def ingestion_settings() -> CatalogIngestionSettings:
    return CatalogIngestionSettings(
        base_url=BASE_URL,
        batch_size=2,
        page_budget=10,
        id_budget=20,
        test_id_budget=2,
        request_delay_seconds=0.0,
        max_consecutive_failures=3,
        log_retention_days=30,
        lock_ttl_seconds=600.0,
    )


@pytest.fixture()
def make_client(http_settings: CatalogHTTPSettings) -> Callable[[FakeHTTPSession], CatalogAPIClient]:
    def _make(fake: FakeHTTPSession) -> CatalogAPIClient:
        return CatalogAPIClient(
            base_url=BASE_URL,
            http_settings=http_settings,
            session=fake,  # type: ignore[arg-type]
            policies=NO_WAIT_POLICIES,
        )

    return _make


@pytest.fixture()
def make_context(
    db: Session,
    make_client: Callable[[FakeHTTPSession], CatalogAPIClient],
    ingestion_settings: CatalogIngestionSettings,
) -> Callable[..., RunContext]:
    def _make(
        fake: FakeHTTPSession,
        *,
        settings: CatalogIngestionSettings | None = None,
        test_mode: bool = False,
        cache: ResponseCache | None = None,
    ) -> RunContext:
        return RunContext(
            session=db,
            client=make_client(fake),
            settings=settings or ingestion_settings,
            test_mode=test_mode,
            response_cache=cache or ResponseCache(),
        )

    return _make
