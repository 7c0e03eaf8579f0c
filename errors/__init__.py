"""Custom exception hierarchy for the submission integrity service."""

from errors.exceptions import (
    ContentError,
    DetectionError,
    DigestError,
    FetchError,
    InvalidScope,
    RepositoryUnavailable,
    SubmissionNotFound,
)

__all__ = [
    "ContentError",
    "DetectionError",
    "DigestError",
    "FetchError",
    "InvalidScope",
    "RepositoryUnavailable",
    "SubmissionNotFound",
]
