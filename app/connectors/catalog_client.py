"""
app/connectors/catalog_client.py

HTTP client for the upstream anime catalog API.

Handles rate limiting, capped exponential backoff per failure kind and
classification of responses into the ingestion error taxonomy. List
extraction tolerates the nesting variants seen upstream: ``body.data.data``,
then ``body.data``, then the body itself. Per-ID lookups must carry their
record under ``data``; anything else is treated as no data.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

import requests

from app.config import CatalogHTTPSettings
from app.ingestion.backoff import BackoffPolicy, FailurePolicies
from app.ingestion.errors import MalformedResponseError, NotFoundError, TransientFetchError

logger = logging.getLogger(__name__)

SERVER_ERROR_STATUS_CODES = {500, 502, 503, 504}
RATE_LIMITED_STATUS_CODE = 429

_HAS_NEXT_KEYS = ("hasNextPage", "has_next_page", "hasNext")
_TOTAL_PAGES_KEYS = ("totalPages", "total_pages", "lastPage", "last_page")


@dataclass(frozen=True)
class FetchedBatch:
    """
    Records extracted from one list response plus any paging signals.
    """

    records: list[dict[str, Any]]
    invalid_items: int = 0
    has_next_page: bool | None = None
    total_pages: int | None = None


class CatalogAPIClient:
    """
    Read-only client for snapshot lists, paginated lists and per-ID lookups.
    """

    def __init__(
        self,
        *,
        base_url: str,
        http_settings: CatalogHTTPSettings,
        session: requests.Session | None = None,
        policies: FailurePolicies | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/json",
                "User-Agent": http_settings.user_agent,
            }
        )
        self._timeout_seconds = http_settings.timeout_seconds
        self._policies = policies or http_settings.failure_policies()
        self._min_request_interval_seconds = (
            1.0 / http_settings.rate_limit_per_second if http_settings.rate_limit_per_second > 0 else 0.0
        )
        self._last_request_monotonic: float = 0.0
        self._rate_lock = threading.Lock()

    @property
    def base_url(self) -> str:
        return self._base_url

    def fetch_list(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        collection_key: str | None = None,
        id_field: str = "id",
    ) -> FetchedBatch:
        """
        Fetch a list endpoint and extract its records.

        Raises:
            MalformedResponseError: if no list can be located in the body.
            TransientFetchError: if the request fails after retries.
        """
        url = self.build_url(path)
        body = self.get_json(url, params=params)
        return build_batch(body, url=url, collection_key=collection_key, id_field=id_field)

    def fetch_page(
        self,
        path: str,
        page: int,
        *,
        collection_key: str | None = None,
        id_field: str = "id",
    ) -> FetchedBatch:
        return self.fetch_list(
            path,
            params={"page": page},
            collection_key=collection_key,
            id_field=id_field,
        )

    def fetch_entity(self, path_template: str, entity_id: int) -> dict[str, Any]:
        """
        Fetch one entity by identifier.

        Raises:
            NotFoundError: on HTTP 404.
            MalformedResponseError: if the body has no ``data`` object, reports
                ``success: false``, or the record is empty.
            TransientFetchError: if the request fails after retries.
        """
        url = self.build_url(path_template.replace("{id}", str(entity_id)))
        return extract_entity(self.get_json(url), url=url)

    def build_url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def get_json(self, url: str, *, params: dict[str, Any] | None = None) -> Any:
        response = self._request(url=url, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError("Response was not valid JSON.", url=url) from exc

    def _request(
        self,
        *,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> requests.Response:
        """
        Execute a GET with rate limiting and per-failure-kind backoff.
        """

        attempts: dict[str, int] = {"rate_limited": 0, "server_error": 0, "network": 0}
        while True:
            self._apply_rate_limit()
            try:
                response = self._session.get(url, params=params, timeout=self._timeout_seconds)
            except (requests.Timeout, requests.ConnectionError) as exc:
                failure_kind, status_code, error = "network", None, exc
            else:
                status_code = response.status_code
                if 200 <= status_code < 300:
                    return response
                if status_code == 404:
                    raise NotFoundError("Upstream resource not found.", url=url, status_code=404)
                if status_code == RATE_LIMITED_STATUS_CODE:
                    failure_kind, error = "rate_limited", None
                elif status_code in SERVER_ERROR_STATUS_CODES:
                    failure_kind, error = "server_error", None
                else:
                    logger.error("Catalog request failed status=%s url=%s", status_code, url)
                    raise TransientFetchError(
                        f"Non-retryable HTTP status {status_code}.",
                        url=url,
                        status_code=status_code,
                    )

            policy: BackoffPolicy = getattr(self._policies, failure_kind)
            attempt = attempts[failure_kind]
            if not policy.allows_retry(attempt):
                logger.error(
                    "Catalog request exhausted retries kind=%s status=%s url=%s error=%s",
                    failure_kind,
                    status_code,
                    url,
                    error,
                )
                raise TransientFetchError(
                    f"Request failed after retries ({failure_kind}).",
                    url=url,
                    status_code=status_code,
                ) from error

            backoff_seconds = policy.delay_for(attempt)
            attempts[failure_kind] = attempt + 1
            logger.warning(
                "Catalog request retry kind=%s attempt=%s/%s wait_seconds=%.2f url=%s",
                failure_kind,
                attempt + 1,
                policy.max_retries,
                backoff_seconds,
                url,
            )
            time.sleep(backoff_seconds)

    def _apply_rate_limit(self) -> None:
        """
        Enforce minimum interval between outbound requests.
        """

        if self._min_request_interval_seconds <= 0:
            return

        with self._rate_lock:
            now = time.monotonic()
            elapsed = now - self._last_request_monotonic
            remaining = self._min_request_interval_seconds - elapsed
            if remaining > 0:
                time.sleep(remaining)
            self._last_request_monotonic = time.monotonic()


def extract_payload(body: Any) -> Any:
    """
    Return ``body.data.data`` when present, else ``body.data``, else ``body``.
    """

    if isinstance(body, dict) and "data" in body:
        inner = body["data"]
        if isinstance(inner, dict) and "data" in inner:
            return inner["data"]
        return inner
    return body


def extract_entity(body: Any, *, url: str) -> dict[str, Any]:
    """
    Return the record of a per-ID response: ``body.data.data`` when present,
    else ``body.data``.

    Raises:
        MalformedResponseError: if the upstream reports failure or the record
            is missing or empty.
    """

    if not isinstance(body, dict) or "data" not in body:
        raise MalformedResponseError("Response has no 'data' payload.", url=url)
    if body.get("success") is False:
        raise MalformedResponseError(
            f"Upstream reported failure: {body.get('message')!r}.",
            url=url,
        )
    payload = extract_payload(body)
    if not isinstance(payload, dict) or not payload:
        raise MalformedResponseError("Response payload is not an object.", url=url)
    return payload


def extract_paging(body: Any) -> tuple[bool | None, int | None]:
    """
    Locate ``hasNextPage``/``totalPages`` signals at any of the known levels.
    """

    has_next_page: bool | None = None
    total_pages: int | None = None
    for container in _paging_containers(body):
        if has_next_page is None:
            for key in _HAS_NEXT_KEYS:
                if isinstance(container.get(key), bool):
                    has_next_page = container[key]
                    break
        if total_pages is None:
            for key in _TOTAL_PAGES_KEYS:
                value = container.get(key)
                if isinstance(value, int) and not isinstance(value, bool):
                    total_pages = value
                    break
    return has_next_page, total_pages


def _paging_containers(body: Any) -> list[dict[str, Any]]:
    containers: list[dict[str, Any]] = []
    if not isinstance(body, dict):
        return containers
    containers.append(body)
    data = body.get("data")
    if isinstance(data, dict):
        containers.append(data)
        if isinstance(data.get("pagination"), dict):
            containers.append(data["pagination"])
    if isinstance(body.get("pagination"), dict):
        containers.append(body["pagination"])
    return containers


def build_batch(
    body: Any,
    *,
    url: str,
    collection_key: str | None = None,
    id_field: str = "id",
) -> FetchedBatch:
    """
    Extract the record list from a decoded list response.

    ``collection_key`` may be a dotted path (``top10.today``). String and
    integer items, such as a plain list of genre names, become
    ``{id_field: item}`` records; any other non-object item is counted as
    invalid.

    Raises:
        MalformedResponseError: if no list can be located in the body.
    """

    payload = extract_payload(body)
    if collection_key:
        payload = _select_collection(payload, collection_key, url=url)
    if not isinstance(payload, list):
        raise MalformedResponseError("Response payload is not a list.", url=url)

    records: list[dict[str, Any]] = []
    for item in payload:
        if isinstance(item, dict):
            records.append(item)
        elif isinstance(item, (str, int)) and not isinstance(item, bool) and item != "":
            records.append({id_field: item})
    has_next_page, total_pages = extract_paging(body)
    return FetchedBatch(
        records=records,
        invalid_items=len(payload) - len(records),
        has_next_page=has_next_page,
        total_pages=total_pages,
    )


def _select_collection(payload: Any, collection_key: str, *, url: str) -> Any:
    selected = payload
    for key in collection_key.split("."):
        if not isinstance(selected, dict) or key not in selected:
            raise MalformedResponseError(
                f"Response has no '{collection_key}' collection.",
                url=url,
            )
        selected = selected[key]
    return selected
