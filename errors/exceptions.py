"""Domain-specific exceptions for the submission integrity service.

These exceptions allow the orchestrator and API layers to distinguish between
per-item failures (recorded in backfill statistics) and whole-operation
failures (surfaced to the caller as HTTP errors).
"""

from __future__ import annotations


class DetectionError(Exception):
    """Base class for plagiarism detection errors."""


class DigestError(DetectionError):
    """A submitted file could not be turned into a content digest."""

    kind = "digest"

    def __init__(self, file_url: str, message: str) -> None:
        self.file_url = file_url
        self.message = message
        super().__init__(f"{message} ({file_url})")


class FetchError(DigestError):
    """File content could not be retrieved (network or storage failure).

    Recorded per submission during backfill; never fatal to a batch.
    """

    kind = "fetch"


class ContentError(DigestError):
    """File content was retrieved but could not be digested (empty/corrupt)."""

    kind = "content"


class RepositoryUnavailable(DetectionError):
    """The submission store could not be reached at all.

    Distinct from an empty result: zero submissions is a valid outcome,
    this is an infrastructure failure and aborts the run.
    """

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Submission repository unavailable: {detail}")


class InvalidScope(DetectionError):
    """The caller supplied an unknown method or an out-of-range parameter.

    Raised before any repository access.
    """

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"Invalid '{field}': {message}")


class SubmissionNotFound(DetectionError):
    """A digest write-back matched no submission row.

    The row was deleted between listing and write-back, or the id is stale.
    Backfill records it as a ``write`` failure.
    """

    def __init__(self, submission_id: str) -> None:
        self.submission_id = submission_id
        super().__init__(f"no submission with id '{submission_id}'")
