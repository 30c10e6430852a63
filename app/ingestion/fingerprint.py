"""
app/ingestion/fingerprint.py

Deterministic record fingerprints used to skip unchanged snapshot writes.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any

FINGERPRINT_COLUMN = "data_hash"


def fingerprint(record: Mapping[str, Any]) -> str:
    """
    Return the SHA-256 hex digest of ``record``'s sorted-key JSON form.

    The fingerprint column itself is excluded so a stored row and a freshly
    fetched record produce the same digest.
    """

    payload = {str(key): value for key, value in record.items() if key != FINGERPRINT_COLUMN}
    encoded = json.dumps(
        payload,
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        default=str,
    ).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def has_changed(existing_digest: str | None, new_digest: str) -> bool:
    if not existing_digest:
        return True
    return existing_digest != new_digest
