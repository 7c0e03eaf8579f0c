"""Flatten a detection report into one row per suspicious group (CSV export)."""

from __future__ import annotations

import csv
import io
from datetime import date

from pydantic import BaseModel

from models.detection import DetectionReport

CSV_HEADER = [
    "Method",
    "Group ID",
    "Confidence",
    "Reason",
    "Student Count",
    "Students",
    "Register Numbers",
    "Assignment",
    "Submitted At",
]


class ExportRow(BaseModel):
    """One suspicious group, flattened for offline analysis."""

    method: str
    group_id: str
    confidence: int
    reason: str
    student_count: int
    students: str
    register_numbers: str
    assignment: str
    submitted_at: str


def flatten_report(report: DetectionReport) -> list[ExportRow]:
    rows: list[ExportRow] = []
    for result in report.results:
        for group in result.suspicious_groups:
            first = group.submissions[0]
            rows.append(
                ExportRow(
                    method=result.method.value,
                    group_id=group.group_id,
                    confidence=group.confidence,
                    reason=group.reason,
                    student_count=len(group.submissions),
                    students=", ".join(s.student_name for s in group.submissions),
                    register_numbers=", ".join(s.register_number for s in group.submissions),
                    assignment=first.assignment_title,
                    submitted_at=first.submitted_at.isoformat(),
                )
            )
    return rows


def to_csv(report: DetectionReport) -> str:
    """Render the flattened report as CSV text (header row included)."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADER)
    for row in flatten_report(report):
        writer.writerow(row.model_dump().values())
    return buffer.getvalue()


def export_filename(today: date | None = None) -> str:
    today = today or date.today()
    return f"assignment_detection_{today.isoformat()}.csv"
