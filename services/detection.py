"""Detection orchestrator — choose methods, run grouping, filter, report.

The one policy decision lives here: when every submission in scope already
has a digest, hash evidence is complete and the run is forced to the exact
hash method even if the caller asked for metadata matching
(``detection_auto_upgrade``).
"""

from __future__ import annotations

import logging
import time
from datetime import timedelta

from config.settings import get_settings
from errors.exceptions import InvalidScope
from models.detection import (
    METHOD_DESCRIPTIONS,
    BackfillStats,
    DetectionMethod,
    DetectionReport,
    HashStatistics,
    MethodResult,
    SuspiciousGroup,
)
from models.request import DetectionRequest
from models.submission import DetectionScope, Submission
from services.digest_service import get_digest_service
from services.grouping import group_by_hash, group_by_metadata
from services.hash_backfill import HashBackfillCoordinator, summarize
from services.submission_repository import SubmissionRepository, get_submission_repository

logger = logging.getLogger(__name__)


def parse_method(value: str | DetectionMethod) -> DetectionMethod:
    """Map a caller-supplied method name to :class:`DetectionMethod`."""
    if isinstance(value, DetectionMethod):
        return value
    try:
        return DetectionMethod(str(value).strip().lower())
    except ValueError:
        raise InvalidScope(
            "method",
            f"unknown method '{value}', expected one of "
            f"{[m.value for m in DetectionMethod]}",
        ) from None


def select_method(
    requested: DetectionMethod, stats: HashStatistics, *, auto_upgrade: bool = True
) -> DetectionMethod:
    """Apply the auto-upgrade rule.

    A non-empty scope where ``without_hash == 0`` runs hash-only,
    regardless of the requested method.
    """
    if auto_upgrade and stats.total > 0 and stats.without_hash == 0:
        return DetectionMethod.HASH
    return requested


class DetectionOrchestrator:
    """Runs detection requests against a repository."""

    def __init__(
        self,
        repository: SubmissionRepository,
        backfill: HashBackfillCoordinator,
    ) -> None:
        settings = get_settings()
        self._repository = repository
        self._backfill = backfill
        self._default_min_confidence = settings.detection_default_min_confidence
        self._window = timedelta(hours=settings.detection_metadata_window_hours)
        self._tight_window = timedelta(minutes=settings.detection_tight_window_minutes)
        self._auto_upgrade = settings.detection_auto_upgrade

    # -- pass-throughs used by the API ---------------------------------------

    async def statistics(self, scope: DetectionScope) -> HashStatistics:
        return await self._backfill.statistics(scope)

    async def backfill(self, scope: DetectionScope) -> BackfillStats:
        return await self._backfill.backfill(scope)

    # -- detection -----------------------------------------------------------

    async def run_detection(self, request: DetectionRequest) -> DetectionReport:
        """Run the requested detection and build the report.

        Raises :class:`InvalidScope` before touching the repository, and lets
        :class:`RepositoryUnavailable` propagate.  An empty scope yields an
        empty report.
        """
        requested = parse_method(request.method)
        min_confidence = self._resolve_min_confidence(request.min_confidence)
        scope = request.to_scope().resolve()

        t0 = time.monotonic()
        if request.backfill:
            stats = await self._backfill.backfill(scope)
            logger.info(
                "Pre-detection backfill: computed=%d failed=%d",
                stats.newly_computed, stats.failed,
            )

        submissions = await self._repository.list_submissions(scope)
        hash_stats = summarize(submissions)
        effective = select_method(requested, hash_stats, auto_upgrade=self._auto_upgrade)
        if effective != requested:
            logger.info(
                "All %d submissions hashed — running '%s' instead of '%s'",
                hash_stats.total, effective.value, requested.value,
            )

        results = [
            MethodResult(
                method=method,
                description=METHOD_DESCRIPTIONS[method],
                suspicious_groups=[
                    g for g in self._group(method, submissions)
                    if g.confidence >= min_confidence
                ],
            )
            for method in _methods_for(effective)
        ]

        total_groups = sum(len(r.suspicious_groups) for r in results)
        logger.info(
            "Detection finished in %.0fms — method=%s submissions=%d groups=%d",
            (time.monotonic() - t0) * 1000, effective.value, len(submissions), total_groups,
        )
        return DetectionReport(
            results=results,
            total_submissions=len(submissions),
            total_groups=total_groups,
            requested_method=requested,
            effective_method=effective,
            auto_upgraded=effective != requested,
            min_confidence=min_confidence,
            hash_statistics=hash_stats,
        )

    # -- internals -----------------------------------------------------------

    def _group(
        self, method: DetectionMethod, submissions: list[Submission]
    ) -> list[SuspiciousGroup]:
        if method == DetectionMethod.HASH:
            return group_by_hash(submissions)
        return group_by_metadata(
            submissions, window=self._window, tight_window=self._tight_window
        )

    def _resolve_min_confidence(self, value: int | None) -> int:
        if value is None:
            return self._default_min_confidence
        if not 0 <= value <= 100:
            raise InvalidScope("min_confidence", f"{value} is outside 0-100")
        return value


def _methods_for(method: DetectionMethod) -> list[DetectionMethod]:
    if method == DetectionMethod.ALL:
        return [DetectionMethod.HASH, DetectionMethod.METADATA]
    return [method]


# ---------------------------------------------------------------------------
# Singleton accessor
# ---------------------------------------------------------------------------

_orchestrator: DetectionOrchestrator | None = None


def get_detection_orchestrator() -> DetectionOrchestrator:
    """Return the orchestrator wired to the configured repository."""
    global _orchestrator
    if _orchestrator is None:
        repository = get_submission_repository()
        _orchestrator = DetectionOrchestrator(
            repository,
            HashBackfillCoordinator(repository, get_digest_service()),
        )
    return _orchestrator
