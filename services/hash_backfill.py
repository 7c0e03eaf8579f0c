"""Hash-backfill coordinator — make sure in-scope submissions carry a digest.

``backfill`` digests every submission lacking a ``file_hash`` with bounded
concurrency and a per-file timeout, writes successes back to the repository
and records failures as statistics.  A failing file never aborts the batch;
re-running is safe because a file's digest never changes.

``statistics`` is the read-only counterpart used by the UI and by the
orchestrator's auto-upgrade check.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Iterable

from config.settings import get_settings
from errors.exceptions import DigestError, RepositoryUnavailable, SubmissionNotFound
from models.detection import BackfillFailure, BackfillStats, HashStatistics
from models.submission import DetectionScope, Submission
from services.concurrency import bounded_map
from services.digest_service import DigestService
from services.submission_repository import SubmissionRepository

logger = logging.getLogger(__name__)


def summarize(submissions: Iterable[Submission]) -> HashStatistics:
    """Count submissions with / without a stored digest."""
    with_hash = without_hash = 0
    for submission in submissions:
        if submission.has_hash:
            with_hash += 1
        else:
            without_hash += 1
    return HashStatistics(
        with_hash=with_hash,
        without_hash=without_hash,
        total=with_hash + without_hash,
    )


class HashBackfillCoordinator:
    """Computes and persists missing digests for a scope."""

    def __init__(
        self,
        repository: SubmissionRepository,
        digest_service: DigestService,
        *,
        max_concurrency: int | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._repository = repository
        self._digests = digest_service
        self._max_concurrency = max_concurrency or settings.digest_max_concurrency
        self._timeout = timeout if timeout is not None else settings.digest_timeout

    async def statistics(self, scope: DetectionScope) -> HashStatistics:
        """Read-only digest coverage for ``scope``."""
        submissions = await self._repository.list_submissions(scope.resolve())
        return summarize(submissions)

    async def backfill(self, scope: DetectionScope) -> BackfillStats:
        """Digest every submission in ``scope`` that has no ``file_hash``.

        Raises :class:`RepositoryUnavailable` only when the scope cannot be
        listed; per-submission failures end up in ``BackfillStats.failures``.
        """
        submissions = await self._repository.list_submissions(scope.resolve())
        pending = [s for s in submissions if not s.has_hash]
        already = len(submissions) - len(pending)

        if not pending:
            logger.info("Backfill: all %d submissions already hashed", already)
            return BackfillStats(
                with_hash=already, without_hash=0, total=len(submissions)
            )

        logger.info(
            "Backfill: %d of %d submissions missing a digest (concurrency=%d)",
            len(pending), len(submissions), self._max_concurrency,
        )
        t0 = time.monotonic()
        outcomes = await bounded_map(
            self._backfill_one, pending, limit=self._max_concurrency
        )

        failures = [o for o in outcomes if o is not None]
        computed = len(pending) - len(failures)
        logger.info(
            "Backfill finished in %.0fms — computed=%d failed=%d",
            (time.monotonic() - t0) * 1000, computed, len(failures),
        )
        return BackfillStats(
            with_hash=already + computed,
            without_hash=len(failures),
            newly_computed=computed,
            failed=len(failures),
            total=len(submissions),
            failures=failures,
        )

    async def _backfill_one(self, submission: Submission) -> BackfillFailure | None:
        """Digest and store one submission; return a failure record or None."""
        try:
            digest = await asyncio.wait_for(
                self._digests.compute_digest(submission.file_url),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Digest timed out after %.1fs for submission %s",
                self._timeout, submission.id,
            )
            return BackfillFailure(
                submission_id=submission.id,
                kind="timeout",
                message=f"no digest within {self._timeout}s",
            )
        except DigestError as exc:
            logger.warning("Digest failed for submission %s: %s", submission.id, exc)
            return BackfillFailure(
                submission_id=submission.id, kind=exc.kind, message=exc.message
            )
        except Exception as exc:
            # one unreadable file must not sink the rest of the batch
            logger.exception("Unexpected digest error for submission %s", submission.id)
            return BackfillFailure(
                submission_id=submission.id, kind="fetch", message=str(exc) or type(exc).__name__
            )

        try:
            await self._repository.update_file_hash(submission.id, digest)
        except (RepositoryUnavailable, SubmissionNotFound) as exc:
            logger.warning("Could not store digest for submission %s: %s", submission.id, exc)
            return BackfillFailure(
                submission_id=submission.id, kind="write", message=str(exc)
            )
        return None
