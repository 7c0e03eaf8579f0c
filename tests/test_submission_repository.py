"""Tests for services/submission_repository.py."""

import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

import services.submission_repository as repo_mod
from errors.exceptions import RepositoryUnavailable, SubmissionNotFound
from models.submission import DetectionScope
from services.store_client import StoreClientError
from services.submission_repository import (
    InMemorySubmissionRepository,
    RestSubmissionRepository,
    get_submission_repository,
    load_seed_file,
)
from tests.helpers import BASE_TIME, make_submission


# ---------------------------------------------------------------------------
# In-memory repository
# ---------------------------------------------------------------------------

@pytest.fixture
def populated() -> InMemorySubmissionRepository:
    return InMemorySubmissionRepository([
        make_submission("s3", minutes=60 * 24 * 10, assignment_id="A2", class_year="III-IT"),
        make_submission("s1", minutes=0, assignment_id="A1", class_year="II-IT"),
        make_submission("s2", minutes=30, assignment_id="A1", class_year="III-IT"),
    ])


@pytest.mark.asyncio
async def test_memory_lists_everything_in_time_order(populated):
    subs = await populated.list_submissions(DetectionScope())
    assert [s.id for s in subs] == ["s1", "s2", "s3"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "scope, expected",
    [
        (DetectionScope(assignment_id="A1"), ["s1", "s2"]),
        (DetectionScope(class_year="III-IT"), ["s2", "s3"]),
        (DetectionScope(assignment_id="A1", class_year="III-IT"), ["s2"]),
        (DetectionScope(date_from=BASE_TIME + timedelta(minutes=10)), ["s2", "s3"]),
        (DetectionScope(date_to=BASE_TIME + timedelta(minutes=10)), ["s1"]),
        (DetectionScope(assignment_id=""), ["s1", "s2", "s3"]),
    ],
)
async def test_memory_scope_filters(populated, scope, expected):
    subs = await populated.list_submissions(scope)
    assert [s.id for s in subs] == expected


@pytest.mark.asyncio
async def test_memory_update_file_hash(populated):
    await populated.update_file_hash("s1", "abc")
    assert populated.get("s1").file_hash == "abc"


@pytest.mark.asyncio
async def test_memory_update_unknown_id_raises(populated):
    with pytest.raises(SubmissionNotFound) as exc_info:
        await populated.update_file_hash("nope", "abc")
    assert exc_info.value.submission_id == "nope"
    assert populated.get("nope") is None


@pytest.mark.asyncio
async def test_memory_diagnose_counts(populated):
    populated.add(make_submission("s4", minutes=5, assignment_id="A1", student_id="stu-s1"))

    diagnostics = await populated.diagnose()

    assert diagnostics.store == "memory"
    assert diagnostics.healthy
    counts = {name: check.count for name, check in diagnostics.checks.items()}
    assert counts == {"assignments": 2, "submissions": 4, "students": 3, "joined": 4}


# ---------------------------------------------------------------------------
# Seed file
# ---------------------------------------------------------------------------

SEED_ROWS = [
    {
        "id": "sub-001",
        "assignment_id": "asg-001",
        "student_id": "stu-101",
        "file_url": "https://storage.example.com/a.pdf",
        "file_name": "DS_Lab1.pdf",
        "file_size": 48213,
        "submitted_at": "2025-03-10T09:15:00+00:00",
        "students": {"name": "Arun Kumar", "register_number": "21IT045", "class_year": "II-IT"},
        "assignments": {"title": "Data Structures Lab 1"},
    },
    {"id": "broken"},
]


def test_load_seed_file(tmp_path):
    seed = tmp_path / "seed.json"
    seed.write_text(json.dumps(SEED_ROWS), encoding="utf-8")

    subs = load_seed_file(seed)

    assert [s.id for s in subs] == ["sub-001"]
    assert subs[0].student_name == "Arun Kumar"


def test_load_seed_file_rejects_non_array(tmp_path):
    seed = tmp_path / "seed.json"
    seed.write_text(json.dumps({"rows": SEED_ROWS}), encoding="utf-8")

    with pytest.raises(ValueError, match="JSON array"):
        load_seed_file(seed)


@pytest.mark.asyncio
async def test_memory_store_setting_loads_seed(tmp_path, monkeypatch):
    seed = tmp_path / "seed.json"
    seed.write_text(json.dumps(SEED_ROWS), encoding="utf-8")
    settings = MagicMock(use_memory_store=True, memory_seed_file=str(seed))
    monkeypatch.setattr(repo_mod, "_repository", None)

    with patch("services.submission_repository.get_settings", return_value=settings):
        repository = get_submission_repository()

    assert isinstance(repository, InMemorySubmissionRepository)
    assert [s.id for s in await repository.list_submissions(DetectionScope())] == ["sub-001"]
    monkeypatch.setattr(repo_mod, "_repository", None)


# ---------------------------------------------------------------------------
# REST repository
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        httpx.ConnectError("refused"),
        StoreClientError(503, "unavailable"),
        StoreClientError(400, "column does not exist", code="42703"),
    ],
)
async def test_rest_listing_failures_become_repository_unavailable(error):
    repo = RestSubmissionRepository(AsyncMock(), table="assignment_submissions")
    with patch(
        "services.submission_repository.submission_adapter.list_submissions",
        AsyncMock(side_effect=error),
    ):
        with pytest.raises(RepositoryUnavailable):
            await repo.list_submissions(DetectionScope())


@pytest.mark.asyncio
async def test_rest_write_failure_becomes_repository_unavailable():
    client = AsyncMock()
    client.update.side_effect = httpx.ReadTimeout("slow")
    repo = RestSubmissionRepository(client)

    with pytest.raises(RepositoryUnavailable):
        await repo.update_file_hash("s1", "abc")


@pytest.mark.asyncio
async def test_rest_write_matching_no_row_raises_not_found():
    client = AsyncMock()
    client.update = AsyncMock(return_value=[])
    repo = RestSubmissionRepository(client, table="subs")

    with pytest.raises(SubmissionNotFound):
        await repo.update_file_hash("gone", "abc")
    client.update.assert_awaited_once_with(
        "subs", match={"id": "gone"}, values={"file_hash": "abc"}
    )


@pytest.mark.asyncio
async def test_rest_write_success():
    client = AsyncMock()
    client.update = AsyncMock(return_value=[{"id": "s1", "file_hash": "abc"}])

    await RestSubmissionRepository(client).update_file_hash("s1", "abc")


@pytest.mark.asyncio
async def test_rest_list_passes_table_and_page_size():
    client = AsyncMock()
    client.select = AsyncMock(return_value=[])
    repo = RestSubmissionRepository(client, table="subs", page_size=50)

    assert await repo.list_submissions(DetectionScope(assignment_id="A1")) == []
    table, params = client.select.await_args.args
    assert table == "subs"
    assert params["limit"] == 50
    assert params["assignment_id"] == "eq.A1"


@pytest.mark.asyncio
async def test_rest_diagnose_reports_each_check():
    async def count(table, params=None):
        if table == "students":
            raise StoreClientError(404, "relation does not exist", code="42P01")
        return 7 if params else 9

    client = AsyncMock()
    client.count = AsyncMock(side_effect=count)
    repo = RestSubmissionRepository(client, table="subs", students_table="students")

    diagnostics = await repo.diagnose()

    assert diagnostics.store == "rest"
    assert not diagnostics.healthy
    assert diagnostics.checks["submissions"].count == 9
    assert diagnostics.checks["joined"].count == 7
    assert diagnostics.checks["students"].count is None
    assert "relation does not exist" in diagnostics.checks["students"].error
