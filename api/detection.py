"""Detection endpoints — hash statistics, backfill, detection run, CSV export.

Authentication and rendering belong to the admin front-end; these routes only
translate HTTP to orchestrator calls and map domain errors to status codes:

- ``InvalidScope``          → 400
- ``RepositoryUnavailable`` → 503
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response

from errors.exceptions import InvalidScope, RepositoryUnavailable
from models.detection import BackfillStats, DetectionReport, HashStatistics
from models.request import DetectionRequest, ScopeRequest
from services.detection import get_detection_orchestrator
from services.report_export import export_filename, to_csv

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/detection", tags=["detection"])


@router.get("/statistics", response_model=HashStatistics)
async def get_statistics(
    assignment_id: str | None = None,
    class_year: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    date_range: str | None = None,
):
    """Digest coverage for a scope given as query parameters."""
    req = ScopeRequest(
        assignment_id=assignment_id,
        class_year=class_year,
        date_from=date_from,
        date_to=date_to,
        date_range=date_range,
    )
    return await post_statistics(req)


@router.post("/statistics", response_model=HashStatistics)
async def post_statistics(req: ScopeRequest):
    """Digest coverage (with_hash / without_hash / total) for a scope."""
    orchestrator = get_detection_orchestrator()
    try:
        return await orchestrator.statistics(req.to_scope())
    except InvalidScope as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except RepositoryUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))


@router.post("/backfill-hashes", response_model=BackfillStats)
async def backfill_hashes(req: ScopeRequest):
    """Compute and store digests for submissions that lack one."""
    orchestrator = get_detection_orchestrator()
    try:
        stats = await orchestrator.backfill(req.to_scope())
    except InvalidScope as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except RepositoryUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    logger.info(
        "Backfill: with_hash=%d without_hash=%d newly_computed=%d failed=%d",
        stats.with_hash, stats.without_hash, stats.newly_computed, stats.failed,
    )
    return stats


@router.post("/run", response_model=DetectionReport)
async def run_detection(req: DetectionRequest):
    """Run plagiarism detection and return per-method suspicious groups."""
    return await _run(req)


@router.post("/export")
async def export_detection(req: DetectionRequest):
    """Run detection and return the flattened report as a CSV attachment."""
    report = await _run(req)
    return Response(
        content=to_csv(report),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{export_filename()}"',
        },
    )


async def _run(req: DetectionRequest) -> DetectionReport:
    orchestrator = get_detection_orchestrator()
    try:
        return await orchestrator.run_detection(req)
    except InvalidScope as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except RepositoryUnavailable as exc:
        logger.error("Detection aborted: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc))
