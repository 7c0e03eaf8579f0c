"""Concurrency controls for digest fan-out and heavy detection endpoints.

Digest computation is I/O-bound (remote file downloads), so backfill runs it
with a bounded fan-out instead of one task per submission at once.

The run limiter is pure ASGI (not BaseHTTPMiddleware) so streamed CSV
exports are never buffered.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, TypeVar

from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def bounded_map(
    func: Callable[[T], Awaitable[R]],
    items: Iterable[T],
    *,
    limit: int,
) -> list[R]:
    """Apply an async ``func`` to every item with at most ``limit`` in flight.

    Results are returned in input order.  ``func`` is expected to handle its
    own per-item failures; an exception escaping it propagates.

    Usage::

        digests = await bounded_map(digest_one, submissions, limit=8)
    """
    sem = asyncio.Semaphore(max(1, limit))

    async def _run(item: T) -> R:
        async with sem:
            return await func(item)

    return list(await asyncio.gather(*(_run(item) for item in items)))


# Routes that list a whole scope or download files
HEAVY_PATHS = frozenset({
    "/api/detection/run",
    "/api/detection/export",
    "/api/detection/backfill-hashes",
})

RETRY_AFTER_SECONDS = 5


class ConcurrencyLimitMiddleware:
    """Reject detection runs beyond ``max_runs`` concurrent ones per worker.

    Overflow requests get HTTP 503 with ``Retry-After`` instead of queueing
    behind long scans.  Statistics and health requests are never limited.
    """

    def __init__(
        self,
        app: ASGIApp,
        max_runs: int = 4,
        paths: frozenset[str] = HEAVY_PATHS,
    ) -> None:
        self.app = app
        self.max_runs = max(1, max_runs)
        self.paths = paths
        self._sem: asyncio.Semaphore | None = None

    @property
    def semaphore(self) -> asyncio.Semaphore:
        if self._sem is None:
            self._sem = asyncio.Semaphore(self.max_runs)
            logger.info("Detection run limiter ready (max=%d)", self.max_runs)
        return self._sem

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope.get("path", "") not in self.paths:
            await self.app(scope, receive, send)
            return

        sem = self.semaphore
        if sem.locked():
            logger.warning("Run limit reached, rejecting %s", scope["path"])
            busy = JSONResponse(
                {"detail": "Too many detection runs in progress, retry shortly."},
                status_code=503,
                headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
            )
            await busy(scope, receive, send)
            return

        async with sem:
            await self.app(scope, receive, send)
