"""
app/config.py

Application-level configuration helpers.

Every setting is read from the environment (after loading `.env` files once)
into a frozen dataclass; the ingestion service receives these values at
construction time instead of reading module-level constants.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from app.ingestion.backoff import BackoffPolicy, FailurePolicies
from db.config import load_env_files

DEFAULT_CATALOG_API_BASE_URL = "https://erenworld-proxy.onrender.com/api/v1"


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    """
    Read an optional string value from environment variables.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


@dataclass(frozen=True)
class CatalogHTTPSettings:
    """
    HTTP behavior settings for the upstream catalog API client.
    """

    timeout_seconds: float = 15.0
    max_retries: int = 3
    backoff_initial_seconds: float = 0.5
    backoff_multiplier: float = 2.0
    backoff_max_seconds: float = 30.0
    rate_limited_backoff_initial_seconds: float = 2.0
    rate_limit_per_second: float = 2.0
    user_agent: str = "AnimeCatalogIngestor/1.0"

    def failure_policies(self) -> FailurePolicies:
        standard = BackoffPolicy(
            initial_seconds=self.backoff_initial_seconds,
            multiplier=self.backoff_multiplier,
            max_seconds=self.backoff_max_seconds,
            max_retries=self.max_retries,
        )
        return FailurePolicies(
            rate_limited=BackoffPolicy(
                initial_seconds=self.rate_limited_backoff_initial_seconds,
                multiplier=self.backoff_multiplier,
                max_seconds=max(self.backoff_max_seconds, 60.0),
                max_retries=self.max_retries,
            ),
            server_error=standard,
            network=standard,
        )


@dataclass(frozen=True)
class CatalogIngestionSettings:
    """
    Runtime settings for catalog ingestion runs.
    """

    base_url: str = DEFAULT_CATALOG_API_BASE_URL
    batch_size: int = 50
    page_budget: int = 20
    id_budget: int = 50
    test_id_budget: int = 3
    request_delay_seconds: float = 2.0
    max_consecutive_failures: int = 5
    log_retention_days: int = 30
    lock_ttl_seconds: float = 3600.0
    max_workers: int = 1
    bootstrap_max_attempts: int = 3
    sources_file: str | None = None


@dataclass(frozen=True)
class SchedulerSettings:
    """
    Scheduled trigger settings.
    """

    enabled: bool = True
    interval_minutes: int = 30
    misfire_grace_seconds: int = 600


@lru_cache(maxsize=1)
def get_catalog_http_settings() -> CatalogHTTPSettings:
    """
    Return catalog API client settings from environment variables.
    """

    return CatalogHTTPSettings(
        timeout_seconds=max(1.0, _get_float_env("CATALOG_HTTP_TIMEOUT_SECONDS", 15.0)),
        max_retries=max(0, _get_int_env("CATALOG_HTTP_MAX_RETRIES", 3)),
        backoff_initial_seconds=max(0.1, _get_float_env("CATALOG_HTTP_BACKOFF_INITIAL_SECONDS", 0.5)),
        backoff_multiplier=max(1.0, _get_float_env("CATALOG_HTTP_BACKOFF_MULTIPLIER", 2.0)),
        backoff_max_seconds=max(0.1, _get_float_env("CATALOG_HTTP_BACKOFF_MAX_SECONDS", 30.0)),
        rate_limited_backoff_initial_seconds=max(
            0.1,
            _get_float_env("CATALOG_HTTP_RATE_LIMITED_BACKOFF_SECONDS", 2.0),
        ),
        rate_limit_per_second=max(0.1, _get_float_env("CATALOG_HTTP_RATE_LIMIT_PER_SECOND", 2.0)),
        user_agent=_get_str_env("CATALOG_HTTP_USER_AGENT", "AnimeCatalogIngestor/1.0"),
    )


@lru_cache(maxsize=1)
def get_catalog_ingestion_settings() -> CatalogIngestionSettings:
    """
    Return catalog ingestion run settings from environment variables.
    """

    return CatalogIngestionSettings(
        base_url=_get_str_env("CATALOG_API_BASE_URL", DEFAULT_CATALOG_API_BASE_URL).rstrip("/"),
        batch_size=max(1, _get_int_env("CATALOG_INGEST_BATCH_SIZE", 50)),
        page_budget=max(1, _get_int_env("CATALOG_INGEST_PAGE_BUDGET", 20)),
        id_budget=max(1, _get_int_env("CATALOG_INGEST_ID_BUDGET", 50)),
        test_id_budget=max(1, _get_int_env("CATALOG_INGEST_TEST_ID_BUDGET", 3)),
        request_delay_seconds=max(0.0, _get_float_env("CATALOG_INGEST_REQUEST_DELAY_SECONDS", 2.0)),
        max_consecutive_failures=max(1, _get_int_env("CATALOG_INGEST_MAX_CONSECUTIVE_FAILURES", 5)),
        log_retention_days=max(1, _get_int_env("CATALOG_INGEST_LOG_RETENTION_DAYS", 30)),
        lock_ttl_seconds=max(60.0, _get_float_env("CATALOG_INGEST_LOCK_TTL_SECONDS", 3600.0)),
        max_workers=min(10, max(1, _get_int_env("CATALOG_INGEST_MAX_WORKERS", 1))),
        bootstrap_max_attempts=max(1, _get_int_env("CATALOG_INGEST_BOOTSTRAP_MAX_ATTEMPTS", 3)),
        sources_file=_get_optional_str_env("CATALOG_SOURCES_FILE"),
    )


@lru_cache(maxsize=1)
def get_scheduler_settings() -> SchedulerSettings:
    """
    Return scheduled trigger settings from environment variables.
    """

    return SchedulerSettings(
        enabled=_get_bool_env("CATALOG_SCHEDULER_ENABLED", True),
        interval_minutes=max(1, _get_int_env("CATALOG_SCHEDULER_INTERVAL_MINUTES", 30)),
        misfire_grace_seconds=max(1, _get_int_env("CATALOG_SCHEDULER_MISFIRE_GRACE_SECONDS", 600)),
    )
