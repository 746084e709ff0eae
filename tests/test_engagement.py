"""Tests for visit, download, and like handling on shared prompts.

Updates:
  v0.1.0 - 2026-10-19 - Cover engagement counters and score recompute triggers.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

import pytest

from core.engagement import EngagementService
from core.quality import QualityScorer, compute_quality_score
from core.repository import PromptRepository, RepositoryError, RepositoryNotFoundError
from core.visits import InMemoryVisitBuffer, VisitTracker
from models.prompt_record import PromptRecord, PublicPrompt

from .conftest import ManualClock

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


@pytest.fixture
def tracker(repository: PromptRepository, clock: ManualClock) -> VisitTracker:
    return VisitTracker(InMemoryVisitBuffer(clock=clock), repository, guard_ttl_seconds=60)


@pytest.fixture
def service(repository: PromptRepository, tracker: VisitTracker) -> EngagementService:
    scorer = QualityScorer(repository, pending=tracker, clock=lambda: NOW)
    return EngagementService(repository, tracker, scorer)


def test_visit_count_includes_buffered_visits(
    service: EngagementService,
    repository: PromptRepository,
    make_prompt: Callable[..., PromptRecord],
) -> None:
    """Reads combine the durable counter with visits still in the buffer."""
    prompt = make_prompt(visit_count=4)

    assert service.record_visit(prompt.id, "viewer-a") is True
    assert service.record_visit(prompt.id, "viewer-a") is False
    assert service.record_visit(prompt.id, "viewer-b") is True

    assert service.visit_count(prompt.id) == 6
    assert repository.get_prompt(prompt.id).visit_count == 4


def test_record_visit_rejects_non_positive_ids(service: EngagementService) -> None:
    """Prompt ids must be positive."""
    with pytest.raises(ValueError):
        service.record_visit(0)


def test_download_increments_and_rescores(
    service: EngagementService,
    repository: PromptRepository,
    make_prompt: Callable[..., PromptRecord],
    make_public: Callable[..., PublicPrompt],
) -> None:
    """A download bumps the listing counter and persists a fresh score."""
    public = make_public(make_prompt(like_count=1), updated_at=NOW)

    result = service.record_download(public.id)

    assert result.download_count == 1
    assert result.score is not None
    expected = compute_quality_score(1, 1, 0, NOW, now=NOW)
    assert result.score.persisted_score == pytest.approx(expected)
    assert repository.get_public_prompt(public.id).quality_score == pytest.approx(expected)


def test_download_of_unknown_listing_raises(service: EngagementService) -> None:
    """Downloads for missing listings surface RepositoryNotFoundError."""
    with pytest.raises(RepositoryNotFoundError):
        service.record_download(404)


def test_download_survives_score_failure(
    service: EngagementService,
    repository: PromptRepository,
    make_public: Callable[..., PublicPrompt],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """The counter still moves when the follow-up recompute fails."""
    public = make_public()

    def _broken(public_id: int, score: float) -> None:
        raise RepositoryError("database is locked")

    monkeypatch.setattr(repository, "update_quality_score", _broken)

    result = service.record_download(public.id)

    assert result.download_count == 1
    assert result.score is None


def test_like_and_unlike_rescore_every_listing(
    service: EngagementService,
    repository: PromptRepository,
    make_prompt: Callable[..., PromptRecord],
    make_public: Callable[..., PublicPrompt],
) -> None:
    """Changing a like recomputes all listings sourced from the prompt."""
    prompt = make_prompt()
    listings = [make_public(prompt, updated_at=NOW) for _ in range(2)]

    liked = service.like(prompt.id, " fan ")
    repeat = service.like(prompt.id, "fan")

    assert (liked.changed, liked.like_count) == (True, 1)
    assert (repeat.changed, repeat.like_count) == (False, 1)
    expected = compute_quality_score(0, 1, 0, NOW, now=NOW)
    for listing in listings:
        assert repository.get_public_prompt(listing.id).quality_score == pytest.approx(expected)

    unliked = service.unlike(prompt.id, "fan")

    assert (unliked.liked, unliked.like_count) == (False, 0)
    for listing in listings:
        assert repository.get_public_prompt(listing.id).quality_score == pytest.approx(3.0)


def test_like_requires_user(
    service: EngagementService, make_prompt: Callable[..., PromptRecord]
) -> None:
    """Anonymous likes are rejected."""
    with pytest.raises(ValueError):
        service.like(make_prompt().id, "  ")
