"""Tests for services/hash_backfill.py: digest backfill and statistics."""

import asyncio
import hashlib
from unittest.mock import AsyncMock

import httpx
import pytest

from errors.exceptions import ContentError, FetchError, RepositoryUnavailable
from models.submission import DetectionScope
from services.digest_service import DigestService
from services.hash_backfill import HashBackfillCoordinator, summarize
from tests.helpers import FakeDigestService, make_submission


def _seed(repository, *subs):
    for sub in subs:
        repository.add(sub)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def test_summarize_counts():
    stats = summarize([
        make_submission("s1", file_hash="a"),
        make_submission("s2", file_hash=None),
        make_submission("s3", file_hash="  "),
    ])
    assert (stats.with_hash, stats.without_hash, stats.total) == (1, 2, 3)


def test_summarize_empty():
    stats = summarize([])
    assert (stats.with_hash, stats.without_hash, stats.total) == (0, 0, 0)


@pytest.mark.asyncio
async def test_statistics_is_read_only(repository, coordinator, digests):
    _seed(repository, make_submission("s1", file_hash="a"), make_submission("s2"))

    stats = await coordinator.statistics(DetectionScope())

    assert (stats.with_hash, stats.without_hash, stats.total) == (1, 1, 2)
    assert digests.calls == []
    assert repository.get("s2").file_hash is None


@pytest.mark.asyncio
async def test_statistics_respects_scope(repository, coordinator):
    _seed(
        repository,
        make_submission("s1", assignment_id="A1"),
        make_submission("s2", assignment_id="A2", file_hash="x"),
    )
    stats = await coordinator.statistics(DetectionScope(assignment_id="A2"))
    assert (stats.with_hash, stats.without_hash) == (1, 0)


# ---------------------------------------------------------------------------
# Backfill
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_backfill_records_failures_without_raising(repository):
    """Five unhashed submissions, two downloads fail."""
    subs = [make_submission(f"s{i}", minutes=i) for i in range(5)]
    _seed(repository, *subs)
    digests = FakeDigestService({
        subs[1].file_url: FetchError(subs[1].file_url, "HTTP 404"),
        subs[3].file_url: ContentError(subs[3].file_url, "file is empty"),
    })
    coordinator = HashBackfillCoordinator(repository, digests, max_concurrency=2, timeout=1.0)

    stats = await coordinator.backfill(DetectionScope())

    assert stats.with_hash == 3
    assert stats.without_hash == 2
    assert stats.newly_computed == 3
    assert stats.failed == 2
    assert stats.total == 5
    assert {(f.submission_id, f.kind) for f in stats.failures} == {
        ("s1", "fetch"),
        ("s3", "content"),
    }
    assert repository.get("s0").file_hash == f"digest-of-{subs[0].file_url}"
    assert repository.get("s1").file_hash is None


@pytest.mark.asyncio
async def test_backfill_skips_already_hashed(repository, coordinator, digests):
    _seed(repository, make_submission("s1", file_hash="known"), make_submission("s2"))

    stats = await coordinator.backfill(DetectionScope())

    assert digests.calls == [repository.get("s2").file_url]
    assert repository.get("s1").file_hash == "known"
    assert (stats.with_hash, stats.newly_computed, stats.failed) == (2, 1, 0)


@pytest.mark.asyncio
async def test_backfill_is_idempotent(repository, coordinator, digests):
    _seed(repository, make_submission("s1"), make_submission("s2"))

    first = await coordinator.backfill(DetectionScope())
    second = await coordinator.backfill(DetectionScope())

    assert first.newly_computed == 2
    assert second.newly_computed == 0
    assert (second.with_hash, second.without_hash, second.failed) == (2, 0, 0)
    assert len(digests.calls) == 2


@pytest.mark.asyncio
async def test_backfill_empty_scope(coordinator):
    stats = await coordinator.backfill(DetectionScope(assignment_id="missing"))
    assert stats.total == 0
    assert stats.failures == []


@pytest.mark.asyncio
async def test_backfill_timeout_is_per_item(repository):
    slow = make_submission("slow")
    fast = make_submission("fast", minutes=1)
    _seed(repository, slow, fast)

    class _SlowForOne(FakeDigestService):
        async def compute_digest(self, file_url):
            if file_url == slow.file_url:
                await asyncio.sleep(5)
            return await super().compute_digest(file_url)

    coordinator = HashBackfillCoordinator(repository, _SlowForOne(), max_concurrency=2, timeout=0.05)
    stats = await coordinator.backfill(DetectionScope())

    assert stats.newly_computed == 1
    assert [(f.submission_id, f.kind) for f in stats.failures] == [("slow", "timeout")]
    assert repository.get("fast").has_hash


@pytest.mark.asyncio
async def test_backfill_bounded_concurrency(repository):
    _seed(repository, *[make_submission(f"s{i}", minutes=i) for i in range(10)])
    digests = FakeDigestService(delay=0.01)
    coordinator = HashBackfillCoordinator(repository, digests, max_concurrency=3, timeout=1.0)

    stats = await coordinator.backfill(DetectionScope())

    assert stats.newly_computed == 10
    assert digests.max_in_flight <= 3


@pytest.mark.asyncio
async def test_backfill_write_failure_recorded(repository, digests):
    _seed(repository, make_submission("s1"))
    repository.update_file_hash = AsyncMock(side_effect=RepositoryUnavailable("timeout"))
    coordinator = HashBackfillCoordinator(repository, digests, max_concurrency=1, timeout=1.0)

    stats = await coordinator.backfill(DetectionScope())

    assert stats.failed == 1
    assert stats.failures[0].kind == "write"


@pytest.mark.asyncio
async def test_backfill_listing_failure_propagates(digests):
    repository = AsyncMock()
    repository.list_submissions.side_effect = RepositoryUnavailable("connection refused")
    coordinator = HashBackfillCoordinator(repository, digests, max_concurrency=1, timeout=1.0)

    with pytest.raises(RepositoryUnavailable):
        await coordinator.backfill(DetectionScope())


@pytest.mark.asyncio
async def test_backfill_write_to_vanished_row_recorded(repository, digests):
    """A row deleted after listing is a write failure, not a new digest."""
    repository.list_submissions = AsyncMock(return_value=[make_submission("ghost")])
    coordinator = HashBackfillCoordinator(repository, digests, max_concurrency=1, timeout=1.0)

    stats = await coordinator.backfill(DetectionScope())

    assert stats.newly_computed == 0
    assert stats.failed == 1
    assert stats.failures[0].kind == "write"
    assert "ghost" in stats.failures[0].message


# ---------------------------------------------------------------------------
# Malformed file URLs
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_backfill_survives_malformed_file_url(repository):
    """Real DigestService: an unparseable URL fails alone, the batch completes."""
    _seed(
        repository,
        make_submission("s1", minutes=0, file_url="https://files.example.com/a"),
        make_submission("s2", minutes=1, file_url="http://[::1/b"),
    )
    service = DigestService(algorithm="sha256", timeout=5.0)
    service._http = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"lab report"))
    )
    coordinator = HashBackfillCoordinator(repository, service, max_concurrency=2, timeout=5.0)

    stats = await coordinator.backfill(DetectionScope())
    await service.close()

    assert stats.newly_computed == 1
    assert stats.failed == 1
    assert [(f.submission_id, f.kind) for f in stats.failures] == [("s2", "fetch")]
    assert repository.get("s1").file_hash == hashlib.sha256(b"lab report").hexdigest()
    assert repository.get("s2").file_hash is None


@pytest.mark.asyncio
async def test_backfill_unexpected_digest_error_is_per_item(repository):
    _seed(repository, make_submission("s1", minutes=0), make_submission("s2", minutes=1))
    digests = FakeDigestService({
        "https://files.example.com/s2": KeyError("codec"),
    })
    coordinator = HashBackfillCoordinator(repository, digests, max_concurrency=2, timeout=1.0)

    stats = await coordinator.backfill(DetectionScope())

    assert stats.newly_computed == 1
    assert [(f.submission_id, f.kind) for f in stats.failures] == [("s2", "fetch")]
