"""Submission records and the scope filter used to select them.

A ``Submission`` is one student's uploaded file for one assignment, with the
student / assignment display labels joined in by the repository.  The
grouping engine treats those labels as opaque text, never as grouping keys.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from errors.exceptions import InvalidScope


class SubmissionStatus(str, Enum):
    """Lifecycle state of a submission (display only)."""

    SUBMITTED = "submitted"
    GRADED = "graded"


class Submission(BaseModel):
    """A single student submission with joined display labels."""

    id: str
    assignment_id: str
    student_id: str
    file_url: str = ""
    file_name: str = ""
    file_size: int | None = None
    file_hash: str | None = None
    submitted_at: datetime
    status: SubmissionStatus = SubmissionStatus.SUBMITTED

    # Joined from Student / Assignment
    student_name: str = ""
    register_number: str = ""
    assignment_title: str = ""
    class_year: str = ""

    @field_validator("submitted_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def has_hash(self) -> bool:
        return bool(self.file_hash and self.file_hash.strip())


# Shorthand date ranges accepted from the admin UI filter
DATE_RANGE_SHORTHANDS: dict[str, timedelta] = {
    "today": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
}


class DetectionScope(BaseModel):
    """Filter narrowing which submissions a detection or backfill considers.

    Every field is optional; an empty scope means "all submissions".
    ``date_range`` is a UI shorthand (``"7d"``, ``"30d"`` ...) that
    :meth:`resolve` turns into a concrete ``date_from``.
    """

    assignment_id: str | None = None
    class_year: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    date_range: str | None = Field(default=None, description="today | 7d | 30d | 90d")

    @field_validator("assignment_id", "class_year", "date_range", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("date_from", "date_to")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def resolve(self, now: datetime | None = None) -> DetectionScope:
        """Return a copy with ``date_range`` expanded and the range checked.

        Raises :class:`InvalidScope` for an unknown shorthand or when
        ``date_from`` is after ``date_to``.
        """
        date_from = self.date_from
        if self.date_range is not None:
            span = DATE_RANGE_SHORTHANDS.get(self.date_range.lower())
            if span is None:
                raise InvalidScope(
                    "date_range",
                    f"unknown value '{self.date_range}', "
                    f"expected one of {sorted(DATE_RANGE_SHORTHANDS)}",
                )
            now = now or datetime.now(timezone.utc)
            shorthand_from = now - span
            date_from = max(date_from, shorthand_from) if date_from else shorthand_from

        if date_from and self.date_to and date_from > self.date_to:
            raise InvalidScope("date_range", "date_from is after date_to")

        return self.model_copy(update={"date_from": date_from, "date_range": None})

    def matches(self, submission: Submission) -> bool:
        """True when ``submission`` falls inside this (resolved) scope."""
        if self.assignment_id and submission.assignment_id != self.assignment_id:
            return False
        if self.class_year and submission.class_year != self.class_year:
            return False
        if self.date_from and submission.submitted_at < self.date_from:
            return False
        if self.date_to and submission.submitted_at > self.date_to:
            return False
        return True
