"""
app/repositories package marker.
"""

from app.repositories.catalog_repository import CatalogRepository, RecordPreparationError

__all__ = [
    "CatalogRepository",
    "RecordPreparationError",
]
