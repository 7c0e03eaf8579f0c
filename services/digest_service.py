"""Content digests for submitted files.

Streams the file behind a submission's ``file_url`` and hashes it
incrementally, so large uploads never sit in memory.  Failures are reported
as :class:`FetchError` (could not retrieve) or :class:`ContentError`
(retrieved but nothing to digest); the backfill coordinator records both
per submission.
"""

from __future__ import annotations

import hashlib
import logging
import time

import httpx

from config.settings import get_settings
from errors.exceptions import ContentError, FetchError

logger = logging.getLogger(__name__)

_service: DigestService | None = None

_CHUNK_SIZE = 64 * 1024


class DigestService:
    """Computes a hex digest of remote file content."""

    def __init__(
        self,
        algorithm: str | None = None,
        timeout: float | None = None,
        max_bytes: int | None = None,
    ) -> None:
        settings = get_settings()
        self._algorithm = algorithm or settings.digest_algorithm
        self._timeout = timeout if timeout is not None else settings.digest_timeout
        self._max_bytes = max_bytes if max_bytes is not None else settings.digest_max_bytes
        self._http: httpx.AsyncClient | None = None

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        if self._http is not None:
            return
        self._http = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            follow_redirects=True,
        )
        logger.info("DigestService started — algorithm=%s", self._algorithm)

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            logger.info("DigestService closed")

    # -- public API ----------------------------------------------------------

    async def compute_digest(self, file_url: str) -> str:
        """Download ``file_url`` and return its hex digest.

        Raises :class:`FetchError` on malformed URLs, network errors, non-2xx
        responses or oversized content, :class:`ContentError` on empty content.
        """
        if not file_url:
            raise FetchError(file_url, "submission has no file URL")

        try:
            hasher = hashlib.new(self._algorithm)
        except ValueError as exc:
            raise ContentError(file_url, f"unsupported digest algorithm '{self._algorithm}'") from exc

        client = self._ensure_started()
        t0 = time.monotonic()
        total = 0
        try:
            async with client.stream("GET", file_url) as response:
                if response.status_code >= 400:
                    raise FetchError(file_url, f"HTTP {response.status_code}")
                async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                    total += len(chunk)
                    if total > self._max_bytes:
                        raise FetchError(file_url, f"file exceeds {self._max_bytes} bytes")
                    hasher.update(chunk)
        except httpx.HTTPError as exc:
            raise FetchError(file_url, f"download failed: {exc}") from exc
        except (httpx.InvalidURL, ValueError) as exc:
            # file_url is stored as uploaded and may not parse at all
            raise FetchError(file_url, f"invalid file URL: {exc}") from exc

        if total == 0:
            raise ContentError(file_url, "file is empty")

        digest = hasher.hexdigest()
        logger.info(
            "Digested %s (%d bytes, %.0fms)",
            file_url, total, (time.monotonic() - t0) * 1000,
        )
        return digest

    # -- internals -----------------------------------------------------------

    def _ensure_started(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("DigestService not started — call await service.start() first")
        return self._http


def get_digest_service() -> DigestService:
    """Return the module-level DigestService singleton (create if needed)."""
    global _service
    if _service is None:
        _service = DigestService()
    return _service
