"""
app/ingestion/errors.py

Error taxonomy for catalog ingestion.

Each failure kind maps to one handling rule in the source strategies:
transient fetch errors are retried within the client and then skipped,
``NotFoundError`` ends a sequential walk, malformed payloads are skipped and
counted, write errors stop the cursor from moving past the failed record and
bootstrap failures abort only the affected run.
"""

from __future__ import annotations


class IngestionError(Exception):
    """Base exception for all catalog ingestion failures."""


class SourceConfigError(IngestionError):
    """Raised for invalid or unknown source definitions."""


class FetchError(IngestionError):
    """Base class for upstream fetch failures."""

    def __init__(self, message: str, *, url: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class TransientFetchError(FetchError):
    """Raised on network errors, timeouts and non-2xx responses after retries."""


class NotFoundError(FetchError):
    """Raised when a per-ID lookup returns HTTP 404."""


class MalformedResponseError(FetchError):
    """Raised when a response body lacks the expected JSON nesting."""


class WriteError(IngestionError):
    """Raised when a destination write fails and was rolled back."""


class FatalInitError(IngestionError):
    """Raised when schema bootstrap fails after bounded retries."""
