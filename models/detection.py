"""Detection output models — suspicious groups, per-method blocks, report.

All of these are transient: they are rebuilt from the submission store on
every detection run and never persisted.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from models.submission import Submission


class DetectionMethod(str, Enum):
    """Which grouping relation(s) a detection run uses."""

    HASH = "hash"
    METADATA = "metadata"
    ALL = "all"


METHOD_DESCRIPTIONS: dict[DetectionMethod, str] = {
    DetectionMethod.HASH: "Identifies identical files by comparing cryptographic hashes",
    DetectionMethod.METADATA: "Examines file metadata for suspicious patterns",
}


class SuspiciousGroup(BaseModel):
    """Two or more submissions linked by one grouping method."""

    group_id: str  # "hash_0", "metadata_3"
    method: DetectionMethod
    confidence: int = Field(ge=0, le=100)
    reason: str
    submissions: list[Submission] = Field(min_length=2)


class MethodResult(BaseModel):
    """The filtered groups produced by a single method."""

    method: DetectionMethod
    description: str
    suspicious_groups: list[SuspiciousGroup] = Field(default_factory=list)


class HashStatistics(BaseModel):
    """How many in-scope submissions have / lack a stored digest."""

    with_hash: int = 0
    without_hash: int = 0
    total: int = 0


class DetectionReport(BaseModel):
    """Result of one detection run, one block per method actually run."""

    results: list[MethodResult] = Field(default_factory=list)
    total_submissions: int = 0
    total_groups: int = 0
    requested_method: DetectionMethod
    effective_method: DetectionMethod
    auto_upgraded: bool = False
    min_confidence: int = 80
    hash_statistics: HashStatistics = Field(default_factory=HashStatistics)


class BackfillFailure(BaseModel):
    """A submission whose digest could not be computed or stored."""

    submission_id: str
    kind: str  # "fetch" | "content" | "timeout" | "write"
    message: str = ""


class BackfillStats(BaseModel):
    """Outcome of a hash-backfill pass over a scope."""

    with_hash: int = 0
    without_hash: int = 0
    newly_computed: int = 0
    failed: int = 0
    total: int = 0
    failures: list[BackfillFailure] = Field(default_factory=list)
