"""Health check endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from config.settings import get_settings
from errors.exceptions import RepositoryUnavailable
from services.submission_repository import get_submission_repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health():
    settings = get_settings()
    return {
        "status": "healthy",
        "store": "memory" if settings.use_memory_store else "rest",
    }


@router.get("/health/store")
async def store_health():
    """Row counts for assignments, submissions, students and the joined query.

    Tells "store down" apart from "no submissions": 200 when every check
    answered (counts may be zero), 503 with the same body otherwise.
    """
    try:
        diagnostics = await get_submission_repository().diagnose()
    except RepositoryUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    if not diagnostics.healthy:
        failed = [name for name, check in diagnostics.checks.items() if check.error]
        logger.warning("Store health check failed: %s", ", ".join(failed))
        return JSONResponse(status_code=503, content=diagnostics.model_dump())
    return diagnostics
