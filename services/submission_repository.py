"""Submission repository: read access plus the single digest write-back.

Two implementations share the same filtering semantics:

- :class:`RestSubmissionRepository` talks to the PostgREST store through the
  shared :class:`StoreClient` and turns transport failures into
  :class:`RepositoryUnavailable`.
- :class:`InMemorySubmissionRepository` keeps submissions in a dict; used
  when ``use_memory_store`` is set (optionally seeded from
  ``memory_seed_file``) and by the test-suite.

Both raise :class:`SubmissionNotFound` when a digest write-back matches no
submission.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Iterable, Protocol

import httpx

from adapters import submission_adapter
from config.settings import get_settings
from errors.exceptions import RepositoryUnavailable, SubmissionNotFound
from models.health import StoreCheck, StoreDiagnostics
from models.submission import DetectionScope, Submission
from services.store_client import StoreClient, StoreClientError, get_store_client

logger = logging.getLogger(__name__)

_repository: SubmissionRepository | None = None


class SubmissionRepository(Protocol):
    async def list_submissions(self, scope: DetectionScope) -> list[Submission]: ...

    async def update_file_hash(self, submission_id: str, file_hash: str) -> None: ...

    async def diagnose(self) -> StoreDiagnostics: ...


class RestSubmissionRepository:
    """PostgREST-backed repository."""

    def __init__(
        self,
        client: StoreClient,
        table: str = "assignment_submissions",
        page_size: int = 500,
        students_table: str = "students",
        assignments_table: str = "assignments",
    ) -> None:
        self._client = client
        self._table = table
        self._page_size = page_size
        self._students_table = students_table
        self._assignments_table = assignments_table

    async def list_submissions(self, scope: DetectionScope) -> list[Submission]:
        try:
            return await submission_adapter.list_submissions(
                self._client, self._table, scope, page_size=self._page_size
            )
        except httpx.TransportError as exc:
            logger.error("Submission store unreachable: %s", exc)
            raise RepositoryUnavailable(str(exc)) from exc
        except StoreClientError as exc:
            logger.error("Submission store rejected query: %s", exc)
            raise RepositoryUnavailable(str(exc)) from exc

    async def update_file_hash(self, submission_id: str, file_hash: str) -> None:
        try:
            updated = await submission_adapter.update_file_hash(
                self._client, self._table, submission_id, file_hash
            )
        except (httpx.TransportError, StoreClientError) as exc:
            raise RepositoryUnavailable(str(exc)) from exc
        if not updated:
            raise SubmissionNotFound(submission_id)

    async def diagnose(self) -> StoreDiagnostics:
        """Count rows per table plus the joined listing query, one check each."""
        queries = {
            "assignments": (self._assignments_table, None),
            "submissions": (self._table, None),
            "students": (self._students_table, None),
            "joined": (self._table, {"select": submission_adapter.SUBMISSION_SELECT}),
        }
        checks: dict[str, StoreCheck] = {}
        for name, (table, params) in queries.items():
            try:
                checks[name] = StoreCheck(count=await self._client.count(table, params))
            except (httpx.TransportError, StoreClientError) as exc:
                logger.warning("Store check '%s' failed: %s", name, exc)
                checks[name] = StoreCheck(error=str(exc) or type(exc).__name__)
        return StoreDiagnostics(store="rest", checks=checks)


class InMemorySubmissionRepository:
    """Thread-safe in-memory repository with the same scope semantics."""

    def __init__(self, submissions: Iterable[Submission] = ()) -> None:
        self._lock = threading.RLock()
        self._by_id: dict[str, Submission] = {s.id: s for s in submissions}

    def add(self, submission: Submission) -> None:
        with self._lock:
            self._by_id[submission.id] = submission

    def get(self, submission_id: str) -> Submission | None:
        with self._lock:
            return self._by_id.get(submission_id)

    async def list_submissions(self, scope: DetectionScope) -> list[Submission]:
        with self._lock:
            matched = [s for s in self._by_id.values() if scope.matches(s)]
        return sorted(matched, key=lambda s: (s.submitted_at, s.id))

    async def update_file_hash(self, submission_id: str, file_hash: str) -> None:
        with self._lock:
            current = self._by_id.get(submission_id)
            if current is None:
                raise SubmissionNotFound(submission_id)
            self._by_id[submission_id] = current.model_copy(update={"file_hash": file_hash})

    async def diagnose(self) -> StoreDiagnostics:
        with self._lock:
            subs = list(self._by_id.values())
        return StoreDiagnostics(
            store="memory",
            checks={
                "assignments": StoreCheck(count=len({s.assignment_id for s in subs})),
                "submissions": StoreCheck(count=len(subs)),
                "students": StoreCheck(count=len({s.student_id for s in subs})),
                "joined": StoreCheck(count=len(subs)),
            },
        )


def load_seed_file(path: str | Path) -> list[Submission]:
    """Read a JSON array of store-shaped submission rows.

    Rows use the same shape as the PostgREST listing (embedded ``students``
    and ``assignments``); rows that do not parse are skipped with a warning.
    """
    rows = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(rows, list):
        raise ValueError(f"seed file {path} must contain a JSON array of rows")
    submissions = [s for s in map(submission_adapter.parse_submission, rows) if s is not None]
    logger.info("Seeded %d of %d rows from %s", len(submissions), len(rows), path)
    return submissions


# ---------------------------------------------------------------------------
# Singleton accessor
# ---------------------------------------------------------------------------

def get_submission_repository() -> SubmissionRepository:
    """Return the configured repository singleton (create if needed)."""
    global _repository
    if _repository is None:
        settings = get_settings()
        if settings.use_memory_store:
            seed = load_seed_file(settings.memory_seed_file) if settings.memory_seed_file else []
            logger.info("Using in-memory submission repository (%d submissions)", len(seed))
            _repository = InMemorySubmissionRepository(seed)
        else:
            _repository = RestSubmissionRepository(
                get_store_client(),
                table=settings.store_submissions_table,
                page_size=settings.store_page_size,
                students_table=settings.store_students_table,
                assignments_table=settings.store_assignments_table,
            )
    return _repository
