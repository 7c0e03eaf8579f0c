"""Adapter for the PostgREST submissions table → internal Submission models.

REST endpoints handled:
- GET   /{table}?select=...,students!inner(...),assignments(...)  → list[Submission]
- PATCH /{table}?id=eq.{id}  {"file_hash": ...}                   → updated rows
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from models.submission import DetectionScope, Submission, SubmissionStatus
from services.store_client import StoreClient

logger = logging.getLogger(__name__)

SUBMISSION_SELECT = (
    "id,assignment_id,student_id,file_url,file_name,file_size,file_hash,"
    "submitted_at,status,"
    "students!inner(name,register_number,class_year),"
    "assignments(title)"
)

_REQUIRED_FIELDS = ("id", "assignment_id", "student_id", "submitted_at")


# ---------------------------------------------------------------------------
# Row → Internal Model conversions
# ---------------------------------------------------------------------------

def parse_submission(raw: dict[str, Any]) -> Submission | None:
    """Convert a joined submission row to :class:`Submission`.

    Returns ``None`` (and logs) for rows missing a required field or with an
    unparseable timestamp; those rows cannot take part in grouping.
    """
    missing = [f for f in _REQUIRED_FIELDS if not raw.get(f)]
    if missing:
        logger.warning("Skipping submission row %s: missing %s", raw.get("id"), missing)
        return None

    student = _unwrap_embedded(raw.get("students"))
    assignment = _unwrap_embedded(raw.get("assignments"))

    try:
        return Submission(
            id=str(raw["id"]),
            assignment_id=str(raw["assignment_id"]),
            student_id=str(raw["student_id"]),
            file_url=raw.get("file_url") or "",
            file_name=raw.get("file_name") or "",
            file_size=_coerce_size(raw.get("file_size")),
            file_hash=(raw.get("file_hash") or "").strip() or None,
            submitted_at=raw["submitted_at"],
            status=_coerce_status(raw.get("status")),
            student_name=student.get("name") or "",
            register_number=student.get("register_number") or "",
            class_year=student.get("class_year") or "",
            assignment_title=assignment.get("title") or "",
        )
    except ValidationError as exc:
        logger.warning("Skipping malformed submission row %s: %s", raw.get("id"), exc)
        return None


def build_query_params(
    scope: DetectionScope, *, limit: int, offset: int
) -> dict[str, Any]:
    """PostgREST query parameters for one page of a (resolved) scope."""
    params: dict[str, Any] = {
        "select": SUBMISSION_SELECT,
        "order": "submitted_at.asc,id.asc",
        "limit": limit,
        "offset": offset,
    }
    if scope.assignment_id:
        params["assignment_id"] = f"eq.{scope.assignment_id}"
    if scope.class_year:
        params["students.class_year"] = f"eq.{scope.class_year}"

    bounds = []
    if scope.date_from:
        bounds.append(f"submitted_at.gte.{_iso(scope.date_from)}")
    if scope.date_to:
        bounds.append(f"submitted_at.lte.{_iso(scope.date_to)}")
    if bounds:
        params["and"] = f"({','.join(bounds)})"
    return params


# ---------------------------------------------------------------------------
# High-level API calls
# ---------------------------------------------------------------------------

async def list_submissions(
    client: StoreClient,
    table: str,
    scope: DetectionScope,
    page_size: int = 500,
) -> list[Submission]:
    """Fetch every submission in ``scope``, one page at a time.

    GET /{table}?select=...&limit={page_size}&offset={n}
    """
    submissions: list[Submission] = []
    offset = 0
    while True:
        resp = await client.select(
            table, build_query_params(scope, limit=page_size, offset=offset)
        )
        rows = _unwrap_data(resp)
        if not isinstance(rows, list):
            logger.warning("list_submissions: expected list, got %s", type(rows))
            break

        for raw in rows:
            parsed = parse_submission(raw)
            if parsed is not None:
                submissions.append(parsed)

        if len(rows) < page_size:
            break
        offset += page_size

    logger.info("Loaded %d submissions for scope %s", len(submissions), scope.model_dump(exclude_none=True))
    return submissions


async def update_file_hash(
    client: StoreClient, table: str, submission_id: str, file_hash: str
) -> bool:
    """Persist a computed digest; False when no row has ``submission_id``.

    PATCH /{table}?id=eq.{submission_id}  (Prefer: return=representation)
    """
    updated = await client.update(
        table, match={"id": submission_id}, values={"file_hash": file_hash}
    )
    return bool(updated)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _unwrap_data(response: Any) -> Any:
    """Extract ``data`` when the response is wrapped in an envelope."""
    if isinstance(response, dict) and "data" in response:
        return response["data"]
    return response


def _unwrap_embedded(value: Any) -> dict[str, Any]:
    """Embedded relations come back as an object or a one-element list."""
    if isinstance(value, list):
        value = value[0] if value else None
    return value if isinstance(value, dict) else {}


def _coerce_size(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        size = int(value)
    except (TypeError, ValueError):
        return None
    return size if size >= 0 else None


def _coerce_status(value: Any) -> SubmissionStatus:
    try:
        return SubmissionStatus(str(value or "").lower())
    except ValueError:
        return SubmissionStatus.SUBMITTED


def _iso(value: datetime) -> str:
    return value.isoformat()
