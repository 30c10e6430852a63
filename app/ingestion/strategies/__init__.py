"""
Source strategies, one per ingestion behavior.
"""

from app.domain.catalog_ingestion import SourceDefinition, SourceKind
from app.ingestion.strategies.base import ResponseCache, RunContext, SourceStrategy
from app.ingestion.strategies.paginated import PaginatedStrategy
from app.ingestion.strategies.sequential import SequentialStrategy
from app.ingestion.strategies.snapshot import InsertIfNewStrategy, SnapshotStrategy

STRATEGIES_BY_KIND: dict[str, type[SourceStrategy]] = {
    SourceKind.SNAPSHOT: SnapshotStrategy,
    SourceKind.INSERT_IF_NEW: InsertIfNewStrategy,
    SourceKind.PAGINATED: PaginatedStrategy,
    SourceKind.SEQUENTIAL: SequentialStrategy,
}


def build_strategy(source: SourceDefinition) -> SourceStrategy:
    return STRATEGIES_BY_KIND[source.kind](source)


__all__ = [
    "InsertIfNewStrategy",
    "PaginatedStrategy",
    "ResponseCache",
    "RunContext",
    "STRATEGIES_BY_KIND",
    "SequentialStrategy",
    "SnapshotStrategy",
    "SourceStrategy",
    "build_strategy",
]
