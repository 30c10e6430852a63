"""
app/catalog_sources.py

Registry of catalog sources in run order.

The default list covers the home-page collections (``top10.today`` style
dotted keys reach nested lists; ``genres`` is a plain list of names), the
paginated category
lists and the per-ID detail walks. Operators can replace it with a JSON file
named by ``CATALOG_SOURCES_FILE``:

    {"sources": [{"name": "trending", "kind": "snapshot", "path": "/home",
                  "collection_key": "trending"}, ...]}
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from app.domain.catalog_ingestion import SourceDefinition, SourceKind
from app.ingestion.errors import SourceConfigError

logger = logging.getLogger(__name__)

_HOME_PATH = "/home"

_HOME_SNAPSHOT_COLLECTIONS = (
    ("spotlight", "spotlight"),
    ("trending", "trending"),
    ("top_airing_home", "topAiring"),
    ("most_popular_home", "mostPopular"),
    ("most_favorite_home", "mostFavorite"),
    ("latest_completed", "latestCompleted"),
    ("latest_episode", "latestEpisode"),
    ("top_upcoming", "topUpcoming"),
    ("top10_today", "top10.today"),
    ("top10_week", "top10.week"),
    ("top10_month", "top10.month"),
)

_HOME_INSERT_IF_NEW_COLLECTIONS = (
    ("new_added", "newAdded", "id"),
    ("genres", "genres", "name"),
)

_PAGINATED_PATHS = (
    ("top_airing", "/animes/top-airing"),
    ("most_popular", "/animes/most-popular"),
    ("most_favorite", "/animes/most-favorite"),
    ("tv", "/animes/tv"),
    ("ova", "/animes/ova"),
    ("movie", "/animes/movie"),
)

_SEQUENTIAL_PATHS = (
    ("anime_info", "/anime/{id}"),
    ("characters", "/characters/{id}"),
    ("episodes", "/episodes/{id}"),
)

_SOURCE_FIELDS = (
    "name",
    "kind",
    "path",
    "table",
    "id_field",
    "collection_key",
    "start_position",
    "page_budget",
    "id_budget",
    "enabled",
)


def default_sources() -> list[SourceDefinition]:
    """
    Return the built-in sources: snapshots first, then paginated walks,
    then sequential walks.
    """

    sources = [
        SourceDefinition(
            name=name,
            kind=SourceKind.SNAPSHOT,
            path=_HOME_PATH,
            collection_key=collection_key,
        )
        for name, collection_key in _HOME_SNAPSHOT_COLLECTIONS
    ]
    sources.extend(
        SourceDefinition(
            name=name,
            kind=SourceKind.INSERT_IF_NEW,
            path=_HOME_PATH,
            collection_key=collection_key,
            id_field=id_field,
        )
        for name, collection_key, id_field in _HOME_INSERT_IF_NEW_COLLECTIONS
    )
    sources.extend(
        SourceDefinition(name=name, kind=SourceKind.PAGINATED, path=path)
        for name, path in _PAGINATED_PATHS
    )
    sources.extend(
        SourceDefinition(name=name, kind=SourceKind.SEQUENTIAL, path=path)
        for name, path in _SEQUENTIAL_PATHS
    )
    return sources


def load_sources_file(path: str | Path) -> list[SourceDefinition]:
    """
    Load source definitions from a JSON file.

    Raises:
        SourceConfigError: if the file is missing, unreadable or invalid.
    """

    file_path = Path(path)
    if not file_path.exists():
        raise SourceConfigError(f"Sources file not found: {file_path}")

    try:
        raw_data = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise SourceConfigError(f"Sources file could not be read: {exc}") from exc

    entries = raw_data.get("sources") if isinstance(raw_data, dict) else raw_data
    if not isinstance(entries, list):
        raise SourceConfigError("Invalid sources file: 'sources' must be a list.")

    parsed = [_parse_source(entry) for entry in entries]
    _ensure_unique_names(parsed)
    return parsed


def resolve_sources(sources_file: str | None = None) -> list[SourceDefinition]:
    """
    Return the configured sources, enabled ones only.
    """

    if sources_file:
        sources = load_sources_file(sources_file)
        logger.info("Loaded %s catalog sources from %s", len(sources), sources_file)
    else:
        sources = default_sources()
    return [source for source in sources if source.enabled]


def _parse_source(entry: Any) -> SourceDefinition:
    if not isinstance(entry, dict):
        raise SourceConfigError("Invalid source entry: each entry must be an object.")

    unknown = set(entry) - set(_SOURCE_FIELDS)
    if unknown:
        raise SourceConfigError(f"Unknown source fields: {sorted(unknown)}")

    try:
        return SourceDefinition(**entry)
    except TypeError as exc:
        raise SourceConfigError(f"Invalid source entry {entry!r}: {exc}") from exc


def _ensure_unique_names(sources: list[SourceDefinition]) -> None:
    seen: set[str] = set()
    for source in sources:
        if source.name in seen:
            raise SourceConfigError(f"Duplicate source name '{source.name}'.")
        seen.add(source.name)
