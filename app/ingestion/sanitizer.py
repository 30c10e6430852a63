"""
app/ingestion/sanitizer.py

Value serialization and identifier normalization for inferred catalog tables.

Values are always sent to the database as bound parameters; this module only
decides their text form. Identifiers (table and column names) cannot be
bound, so they are reduced to ``[A-Za-z0-9_]`` before use.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

_IDENTIFIER_INVALID_CHARS = re.compile(r"[^A-Za-z0-9_]")
_MAX_IDENTIFIER_LENGTH = 63


def serialize_value(value: Any) -> str:
    """
    Convert one record value to its stored text form.

    ``None`` becomes an empty string, booleans become ``true``/``false``,
    lists and mappings are serialized to JSON with sorted keys, everything
    else goes through ``str``.
    """

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)
    return str(value)


def normalize_identifier(name: str) -> str:
    """
    Map an arbitrary upstream key or source name to a safe SQL identifier.

    >>> normalize_identifier("/animes/top-airing")
    'animes_top_airing'
    >>> normalize_identifier("1080p")
    '_1080p'
    """

    cleaned = _IDENTIFIER_INVALID_CHARS.sub("_", name.strip()).strip("_")
    cleaned = re.sub(r"_+", "_", cleaned)
    if not cleaned:
        raise ValueError(f"Cannot derive an identifier from {name!r}.")
    if cleaned[0].isdigit():
        cleaned = f"_{cleaned}"
    return cleaned[:_MAX_IDENTIFIER_LENGTH]


def normalize_record_keys(record: Mapping[str, Any]) -> dict[str, Any]:
    """
    Rename record keys to identifiers. On collisions the first key in sorted
    order wins so the result does not depend on upstream key order.
    """

    normalized: dict[str, Any] = {}
    for key in sorted(record.keys(), key=str):
        try:
            column = normalize_identifier(str(key))
        except ValueError:
            continue
        normalized.setdefault(column, record[key])
    return normalized


def is_integer_like(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.startswith("-"):
            stripped = stripped[1:]
        return stripped.isdigit()
    return False
