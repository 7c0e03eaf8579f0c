"""Grouping engine — partition submissions into suspicious groups.

Two independent relations, each a pure and deterministic function of its
input list:

- :func:`group_by_hash` — exact digest equality (confidence 100).
- :func:`group_by_metadata` — equal file size + normalized file-name
  signature, submitted close together in time (confidence 60–95).

Within one method the groups form a partition: no submission appears in two
groups.  Groups from different methods may overlap; callers report them
independently.

Ordering contract, shared by both methods:

- members by ``(submitted_at, id)`` ascending
- groups by size descending, then earliest ``submitted_at``, then the
  first member's id
- ``group_id`` is ``"<method>_<index>"`` in that order
"""

from __future__ import annotations

import re
from collections import Counter, defaultdict
from datetime import timedelta
from typing import Iterable, Sequence

from models.detection import DetectionMethod, SuspiciousGroup
from models.submission import Submission

HASH_CONFIDENCE = 100
HASH_REASON = "Identical file hash — files are byte-for-byte identical"

METADATA_BASE_CONFIDENCE = 60
METADATA_TIGHT_BONUS = 20
METADATA_SIZE_BONUS = 10
METADATA_SIZE_BONUS_MIN_MEMBERS = 3
METADATA_MAX_CONFIDENCE = 95

DEFAULT_WINDOW = timedelta(hours=24)
DEFAULT_TIGHT_WINDOW = timedelta(hours=1)

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


# ---------------------------------------------------------------------------
# Exact-hash method
# ---------------------------------------------------------------------------

def group_by_hash(submissions: Sequence[Submission]) -> list[SuspiciousGroup]:
    """Group submissions sharing a non-empty ``file_hash``."""
    buckets: dict[str, list[Submission]] = defaultdict(list)
    for submission in submissions:
        if submission.has_hash:
            buckets[submission.file_hash.strip()].append(submission)

    clusters = [_sorted_members(members) for members in buckets.values() if len(members) > 1]
    return [
        SuspiciousGroup(
            group_id=f"{DetectionMethod.HASH.value}_{index}",
            method=DetectionMethod.HASH,
            confidence=HASH_CONFIDENCE,
            reason=HASH_REASON,
            submissions=members,
        )
        for index, members in enumerate(_ordered(clusters))
    ]


# ---------------------------------------------------------------------------
# Metadata-heuristic method
# ---------------------------------------------------------------------------

def group_by_metadata(
    submissions: Sequence[Submission],
    *,
    window: timedelta = DEFAULT_WINDOW,
    tight_window: timedelta = DEFAULT_TIGHT_WINDOW,
) -> list[SuspiciousGroup]:
    """Group submissions with matching size / name signature close in time.

    Submissions already linked by an identical digest in the same input are
    left out, so the same evidence is not reported again under the weaker
    method.  Without any digests every submission is a candidate.
    """
    captured = _hash_captured_ids(submissions)

    buckets: dict[tuple[int | None, str], list[Submission]] = defaultdict(list)
    for submission in submissions:
        if submission.id in captured:
            continue
        signature = name_signature(submission)
        if submission.file_size is None and not signature:
            continue  # nothing to compare on
        buckets[(submission.file_size, signature)].append(submission)

    scored: list[tuple[list[Submission], int, str]] = []
    for (file_size, signature), members in buckets.items():
        for cluster in _split_by_window(_sorted_members(members), window):
            if len(cluster) < 2:
                continue
            confidence, reason = _score_metadata(
                cluster,
                has_size=file_size is not None,
                has_name=bool(signature),
                window=window,
                tight_window=tight_window,
            )
            scored.append((cluster, confidence, reason))

    scored.sort(key=lambda item: _order_key(item[0]))
    return [
        SuspiciousGroup(
            group_id=f"{DetectionMethod.METADATA.value}_{index}",
            method=DetectionMethod.METADATA,
            confidence=confidence,
            reason=reason,
            submissions=cluster,
        )
        for index, (cluster, confidence, reason) in enumerate(scored)
    ]


def name_signature(submission: Submission) -> str:
    """Normalized file-name signature used as a metadata grouping key.

    Lower-cases the file stem, drops the student's own register number and
    name tokens (those are expected to differ between students) and joins
    what is left with ``_``.  ``"HW1_John.pdf"`` by *John* → ``"hw1"``.
    """
    name = submission.file_name.replace("\\", "/").rsplit("/", 1)[-1].lower()
    stem, dot, _ = name.rpartition(".")
    if not dot or not stem:
        stem = name

    register = submission.register_number.strip().lower()
    if register:
        stem = stem.replace(register, " ")

    name_tokens = [t for t in _TOKEN_SPLIT.split(submission.student_name.lower()) if len(t) >= 2]
    personal = set(name_tokens)
    if len(name_tokens) > 1:
        personal.add("".join(name_tokens))

    kept = [t for t in _TOKEN_SPLIT.split(stem) if t and t not in personal]
    return "_".join(kept)


def _score_metadata(
    cluster: list[Submission],
    *,
    has_size: bool,
    has_name: bool,
    window: timedelta,
    tight_window: timedelta,
) -> tuple[int, str]:
    if has_size and has_name:
        parts = ["Same file size and name pattern"]
    elif has_size:
        parts = ["Same file size"]
    else:
        parts = ["Same file name pattern"]

    confidence = METADATA_BASE_CONFIDENCE
    span = cluster[-1].submitted_at - cluster[0].submitted_at
    if span <= tight_window:
        confidence += METADATA_TIGHT_BONUS
        parts.append(f"submitted within {_describe(tight_window)} of each other")
    else:
        parts.append(f"submitted within {_describe(window)} of each other")

    if len(cluster) >= METADATA_SIZE_BONUS_MIN_MEMBERS:
        confidence += METADATA_SIZE_BONUS
        parts.append(f"{len(cluster)} submissions share this pattern")

    return min(confidence, METADATA_MAX_CONFIDENCE), "; ".join(parts)


def _hash_captured_ids(submissions: Iterable[Submission]) -> set[str]:
    """Ids of submissions whose digest is shared with another input submission."""
    hashed = [s for s in submissions if s.has_hash]
    counts = Counter(s.file_hash.strip() for s in hashed)
    return {s.id for s in hashed if counts[s.file_hash.strip()] > 1}


def _split_by_window(members: list[Submission], window: timedelta) -> list[list[Submission]]:
    """Split time-sorted members so each cluster spans at most ``window``.

    A cluster opens at its earliest member and admits later members within
    ``window`` of that start, which makes every pair mutually in range.
    """
    clusters: list[list[Submission]] = []
    for submission in members:
        if clusters and submission.submitted_at - clusters[-1][0].submitted_at <= window:
            clusters[-1].append(submission)
        else:
            clusters.append([submission])
    return clusters


# ---------------------------------------------------------------------------
# Shared ordering helpers
# ---------------------------------------------------------------------------

def _sorted_members(members: Iterable[Submission]) -> list[Submission]:
    return sorted(members, key=lambda s: (s.submitted_at, s.id))


def _order_key(cluster: list[Submission]):
    return (-len(cluster), cluster[0].submitted_at, cluster[0].id)


def _ordered(clusters: Iterable[list[Submission]]) -> list[list[Submission]]:
    return sorted(clusters, key=_order_key)


def _describe(span: timedelta) -> str:
    minutes = int(span.total_seconds() // 60)
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{minutes} minutes"
