"""Shared pytest fixtures for the detection test-suite.

Provides:
- ``repository``: empty InMemorySubmissionRepository per test
- ``digests``: FakeDigestService that succeeds for every URL
- ``coordinator``: HashBackfillCoordinator over the two above
- ``orchestrator``: DetectionOrchestrator over the same repository
"""

from __future__ import annotations

import pytest

from services.detection import DetectionOrchestrator
from services.hash_backfill import HashBackfillCoordinator
from services.submission_repository import InMemorySubmissionRepository
from tests.helpers import FakeDigestService


@pytest.fixture
def repository() -> InMemorySubmissionRepository:
    """Fresh in-memory repository, isolated per test."""
    return InMemorySubmissionRepository()


@pytest.fixture
def digests() -> FakeDigestService:
    return FakeDigestService()


@pytest.fixture
def coordinator(repository, digests) -> HashBackfillCoordinator:
    return HashBackfillCoordinator(repository, digests, max_concurrency=4, timeout=1.0)


@pytest.fixture
def orchestrator(repository, coordinator) -> DetectionOrchestrator:
    return DetectionOrchestrator(repository, coordinator)
