"""Shared builders and fakes for the detection test-suite."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from models.submission import Submission

BASE_TIME = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


def make_submission(
    sid: str,
    *,
    minutes: float = 0,
    file_hash: str | None = None,
    file_size: int | None = 2048,
    file_name: str = "hw1.pdf",
    student_id: str | None = None,
    student_name: str = "",
    register_number: str = "",
    assignment_id: str = "A1",
    class_year: str = "II-IT",
    file_url: str | None = None,
) -> Submission:
    """Build a submission ``minutes`` after :data:`BASE_TIME`."""
    return Submission(
        id=sid,
        assignment_id=assignment_id,
        student_id=student_id or f"stu-{sid}",
        file_url=file_url if file_url is not None else f"https://files.example.com/{sid}",
        file_name=file_name,
        file_size=file_size,
        file_hash=file_hash,
        submitted_at=BASE_TIME + timedelta(minutes=minutes),
        student_name=student_name,
        register_number=register_number,
        assignment_title="Data Structures Lab 1",
        class_year=class_year,
    )


class FakeDigestService:
    """Maps file URLs to digests or to the exception they should raise."""

    def __init__(
        self,
        outcomes: dict[str, str | Exception] | None = None,
        *,
        delay: float = 0.0,
    ) -> None:
        self.outcomes = outcomes or {}
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def compute_digest(self, file_url: str) -> str:
        self.calls.append(file_url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self.outcomes.get(file_url, f"digest-of-{file_url}")
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1
