"""
app/connectors package marker.
"""

from app.connectors.catalog_client import (
    CatalogAPIClient,
    FetchedBatch,
    build_batch,
    extract_entity,
    extract_paging,
    extract_payload,
)

__all__ = [
    "CatalogAPIClient",
    "FetchedBatch",
    "build_batch",
    "extract_entity",
    "extract_paging",
    "extract_payload",
]
