"""Tests for the SQLite prompt repository mixins.

Updates:
  v0.2.0 - 2026-10-19 - Cover public listing counters and score candidates.
  v0.1.0 - 2026-10-19 - Cover prompt CRUD, counters, likes, and keyword links.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest

from core.repository import PromptRepository, RepositoryError, RepositoryNotFoundError
from models.prompt_record import PromptRecord, PromptVersion, PublicPrompt
from models.workspace import POLARITY_NEGATIVE, WorkspaceKeyword

STAMP = datetime(2026, 1, 2, 3, 4, tzinfo=UTC)


def test_schema_is_created_in_new_directory(tmp_path: Path) -> None:
    """Opening a repository creates its parent directory and tables."""
    db_path = tmp_path / "nested" / "prompts.db"

    PromptRepository(db_path)

    with sqlite3.connect(db_path) as conn:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master")}
    assert {"prompts", "prompt_versions", "keywords", "prompt_likes", "public_prompts"} <= tables


def test_prompt_round_trip_preserves_keywords_and_tags(repository: PromptRepository) -> None:
    """Stored prompts hydrate with keyword polarity, weight, and tags intact."""
    created = repository.create_prompt(
        PromptRecord(
            user_id="user-1",
            topic="Cover letter",
            body="Write a cover letter.",
            model="gpt-4o-mini",
            positive_keywords=[WorkspaceKeyword.build("concise", weight=4)],
            negative_keywords=[WorkspaceKeyword.build("cliches", polarity=POLARITY_NEGATIVE)],
            tags=["career"],
        )
    )

    loaded = repository.get_prompt(created.id)

    assert loaded.topic == "Cover letter"
    assert [(k.word, k.weight) for k in loaded.positive_keywords] == [("concise", 4)]
    assert [k.polarity for k in loaded.negative_keywords] == ["negative"]
    assert loaded.tags == ["career"]
    assert loaded.status == "draft"


def test_update_prompt_keeps_counters(
    repository: PromptRepository, make_prompt: Callable[..., PromptRecord]
) -> None:
    """Editable columns change while engagement counters stay put."""
    prompt = make_prompt(like_count=2, visit_count=9)
    prompt.body = "Updated body"
    prompt.like_count = 0
    prompt.visit_count = 0

    updated = repository.update_prompt(prompt)

    assert updated.body == "Updated body"
    assert updated.like_count == 2
    assert updated.visit_count == 9


def test_missing_prompt_raises_not_found(repository: PromptRepository) -> None:
    """Lookups and updates of unknown ids raise RepositoryNotFoundError."""
    with pytest.raises(RepositoryNotFoundError):
        repository.get_prompt(404)
    with pytest.raises(RepositoryNotFoundError):
        repository.update_prompt(PromptRecord(user_id="u", topic="t", id=404))
    with pytest.raises(RepositoryNotFoundError):
        repository.increment_counter(404, "visit_count", 1)


def test_find_prompt_by_topic_returns_newest(
    repository: PromptRepository, make_prompt: Callable[..., PromptRecord]
) -> None:
    """Topic lookups are scoped to the owner and prefer the newest row."""
    make_prompt(topic="Recipes")
    newest = make_prompt(topic="Recipes")
    make_prompt(topic="Recipes", user_id="user-2")

    found = repository.find_prompt_by_topic("user-1", "Recipes")

    assert found is not None and found.id == newest.id
    assert repository.find_prompt_by_topic("user-1", "Unknown") is None


def test_increment_counter_rejects_unknown_column_and_floors_at_zero(
    repository: PromptRepository, make_prompt: Callable[..., PromptRecord]
) -> None:
    """Only whitelisted counters change and they never go negative."""
    prompt = make_prompt(visit_count=1)

    with pytest.raises(ValueError):
        repository.increment_counter(prompt.id, "id", 1)
    assert repository.increment_counter(prompt.id, "visit_count", 5) == 6
    assert repository.increment_counter(prompt.id, "visit_count", -10) == 0


def test_set_like_is_idempotent_per_user(
    repository: PromptRepository, make_prompt: Callable[..., PromptRecord]
) -> None:
    """Repeated likes or unlikes by the same user change nothing."""
    prompt = make_prompt()

    assert repository.set_like(prompt.id, "fan", True) == (True, 1)
    assert repository.set_like(prompt.id, "fan", True) == (False, 1)
    assert repository.set_like(prompt.id, "other", True) == (True, 2)
    assert repository.has_liked(prompt.id, "fan") is True
    assert repository.set_like(prompt.id, "fan", False) == (True, 1)
    assert repository.set_like(prompt.id, "fan", False) == (False, 1)
    with pytest.raises(RepositoryNotFoundError):
        repository.set_like(404, "fan", True)


def test_replace_prompt_keywords_relinks_library_entries(
    repository: PromptRepository, make_prompt: Callable[..., PromptRecord]
) -> None:
    """Relinking drops old links and upserts library keywords per user and topic."""
    prompt = make_prompt()
    repository.replace_prompt_keywords(
        prompt.id, prompt.user_id, prompt.topic, [WorkspaceKeyword.build("old")]
    )

    linked = repository.replace_prompt_keywords(
        prompt.id,
        prompt.user_id,
        prompt.topic,
        [
            WorkspaceKeyword.build("fresh"),
            WorkspaceKeyword.build("jargon", polarity=POLARITY_NEGATIVE),
        ],
    )

    assert linked == 2
    assert repository.list_prompt_keywords(prompt.id) == [
        ("fresh", "positive"),
        ("jargon", "negative"),
    ]


def test_delete_versions_beyond_keeps_newest(
    repository: PromptRepository, make_prompt: Callable[..., PromptRecord]
) -> None:
    """Pruning removes the oldest version numbers first."""
    prompt = make_prompt()
    for number in range(1, 5):
        repository.record_version(PromptVersion(prompt_id=prompt.id, version_no=number, body="b"))

    assert repository.delete_versions_beyond(prompt.id, 2) == 2
    assert [v.version_no for v in repository.list_versions(prompt.id)] == [4, 3]
    assert repository.max_version_no(prompt.id) == 4
    assert repository.delete_versions_beyond(prompt.id, 0) == 0


def test_download_and_score_writes_leave_updated_at(
    repository: PromptRepository,
    make_prompt: Callable[..., PromptRecord],
    make_public: Callable[..., PublicPrompt],
) -> None:
    """Engagement bookkeeping does not refresh the listing recency timestamp."""
    public = make_public(make_prompt(), updated_at=STAMP)

    assert repository.increment_download(public.id) == 1
    repository.update_quality_score(public.id, 7.5)

    stored = repository.get_public_prompt(public.id)
    assert stored.download_count == 1
    assert stored.quality_score == pytest.approx(7.5)
    assert stored.updated_at == STAMP


def test_public_listing_lookups(
    repository: PromptRepository,
    make_prompt: Callable[..., PromptRecord],
    make_public: Callable[..., PublicPrompt],
) -> None:
    """Listings are found by source prompt and joined with prompt counters."""
    prompt = make_prompt(like_count=3, visit_count=8)
    first = make_public(prompt, download_count=2)
    second = make_public(prompt)
    orphan = make_public()

    assert repository.list_public_ids_for_prompt(prompt.id) == [first.id, second.id]
    candidate = repository.get_score_candidate(first.id)
    assert (candidate.downloads, candidate.likes, candidate.visits) == (2, 3, 8)
    assert candidate.prompt_id == prompt.id
    orphan_candidate = repository.get_score_candidate(orphan.id)
    assert orphan_candidate.prompt_id is None
    assert orphan_candidate.likes == 0
    assert [c.public_id for c in repository.list_for_score(first.id, 10)] == [second.id, orphan.id]


def test_public_listing_missing_ids_raise(repository: PromptRepository) -> None:
    """Unknown listing ids raise RepositoryNotFoundError."""
    with pytest.raises(RepositoryNotFoundError):
        repository.get_public_prompt(404)
    with pytest.raises(RepositoryNotFoundError):
        repository.increment_download(404)
    with pytest.raises(RepositoryNotFoundError):
        repository.update_quality_score(404, 1.0)
    with pytest.raises(RepositoryNotFoundError):
        repository.get_score_candidate(404)


def test_reset_all_data_empties_tables(
    repository: PromptRepository,
    make_prompt: Callable[..., PromptRecord],
    make_public: Callable[..., PublicPrompt],
) -> None:
    """Reset deletes rows but keeps the schema usable."""
    make_public(make_prompt())

    repository.reset_all_data()

    assert repository.list_for_score(0, 10) == []
    assert repository.find_prompt_by_topic("user-1", "Release notes") is None


def test_sqlite_errors_are_wrapped(tmp_path: Path) -> None:
    """Low-level SQLite failures surface as RepositoryError."""
    repository = PromptRepository(tmp_path / "prompts.db")
    with sqlite3.connect(repository.db_path) as conn:
        conn.execute("DROP TABLE public_prompts;")

    with pytest.raises(RepositoryError):
        repository.list_for_score(0, 10)
