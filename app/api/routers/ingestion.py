"""
app/api/routers/ingestion.py

Manual trigger, status and cursor reset endpoints for catalog ingestion.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.ingestion.errors import FatalInitError, SourceConfigError
from app.schemas.ingestion import (
    CatalogRunResponse,
    CursorResetRequest,
    CursorResetResponse,
    IngestionStatusResponse,
)
from app.services.catalog_ingestion_service import (
    CatalogIngestionService,
    get_catalog_ingestion_service,
)

router = APIRouter(tags=["catalog-ingestion"])


@router.post("/trigger", response_model=CatalogRunResponse)
def trigger_ingestion(
    source: str | None = Query(default=None, description="Optional source filter"),
    ingestion_service: CatalogIngestionService = Depends(get_catalog_ingestion_service),
) -> CatalogRunResponse:
    """
    Run ingestion for all configured sources or one selected source.
    """

    try:
        summary = ingestion_service.run(source)
    except SourceConfigError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return CatalogRunResponse.from_run(summary)


@router.post("/test", response_model=CatalogRunResponse)
def test_ingestion(
    source: str | None = Query(default=None, description="Optional source filter"),
    ingestion_service: CatalogIngestionService = Depends(get_catalog_ingestion_service),
) -> CatalogRunResponse:
    """
    Run with every budget capped to one page or a few IDs.
    """

    try:
        summary = ingestion_service.run(source, test_mode=True)
    except SourceConfigError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return CatalogRunResponse.from_run(summary, test_mode=True)


@router.get("/status", response_model=IngestionStatusResponse)
def get_ingestion_status(
    log_limit: int = Query(default=20, ge=1, le=500),
    ingestion_service: CatalogIngestionService = Depends(get_catalog_ingestion_service),
) -> IngestionStatusResponse:
    try:
        payload = ingestion_service.status(log_limit=log_limit)
    except FatalInitError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    return IngestionStatusResponse(**payload)


@router.post("/reset", response_model=CursorResetResponse)
def reset_cursor(
    payload: CursorResetRequest,
    ingestion_service: CatalogIngestionService = Depends(get_catalog_ingestion_service),
) -> CursorResetResponse:
    """
    Rewrite one walk's cursor so the next run starts after ``position``.
    """

    try:
        position = ingestion_service.reset(payload.source, payload.position)
    except SourceConfigError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except FatalInitError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    return CursorResetResponse(source=payload.source, position=position)
