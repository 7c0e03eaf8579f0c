"""API request models."""

from __future__ import annotations

from datetime import datetime

from models.base import CamelModel
from models.submission import DetectionScope


class ScopeRequest(CamelModel):
    """POST /api/detection/statistics, /backfill-hashes — request body."""

    assignment_id: str | None = None
    class_year: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    date_range: str | None = None

    def to_scope(self) -> DetectionScope:
        return DetectionScope(
            assignment_id=self.assignment_id,
            class_year=self.class_year,
            date_from=self.date_from,
            date_to=self.date_to,
            date_range=self.date_range,
        )


class DetectionRequest(ScopeRequest):
    """POST /api/detection/run, /export — request body.

    ``method`` and ``min_confidence`` are validated by the orchestrator so an
    unknown method surfaces as ``InvalidScope`` (HTTP 400).
    """

    method: str = "all"
    min_confidence: int | None = None  # None → settings default
    backfill: bool = False  # compute missing digests before detecting
