"""
app/services package marker.
"""

from app.services.catalog_ingestion_service import (
    CatalogIngestionService,
    get_catalog_ingestion_service,
)

__all__ = [
    "CatalogIngestionService",
    "get_catalog_ingestion_service",
]
