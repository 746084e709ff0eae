"""SQLite-backed repository for durable prompt storage.

Updates:
  v0.2.1 - 2026-10-19 - Expose transaction() so commits span one connection.
  v0.2.0 - 2026-10-19 - Add public listing mixin for engagement counters and scores.
  v0.1.0 - 2026-10-19 - Compose prompt and maintenance mixins.
"""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from .base import (
    RepositoryError,
    RepositoryNotFoundError,
    connect as _connect,
    ensure_directory as _ensure_directory,
)
from .maintenance import RepositoryMaintenanceMixin
from .prompts import COUNTER_COLUMNS, PromptStoreMixin
from .public_prompts import PublicPromptStoreMixin

if TYPE_CHECKING:
    from collections.abc import Sequence
    from contextlib import AbstractContextManager

    from models.prompt_record import PromptRecord, PromptVersion, ScoreCandidate
    from models.workspace import WorkspaceKeyword


class PromptStore(Protocol):
    """Durable store operations required by the persistence pipeline."""

    def transaction(self) -> AbstractContextManager[None]: ...

    def create_prompt(self, prompt: PromptRecord) -> PromptRecord: ...

    def update_prompt(self, prompt: PromptRecord) -> PromptRecord: ...

    def get_prompt(self, prompt_id: int) -> PromptRecord: ...

    def find_prompt_by_topic(self, user_id: str, topic: str) -> PromptRecord | None: ...

    def replace_prompt_keywords(
        self,
        prompt_id: int,
        user_id: str,
        topic: str,
        keywords: Sequence[WorkspaceKeyword],
    ) -> int: ...

    def max_version_no(self, prompt_id: int) -> int: ...

    def record_version(self, version: PromptVersion) -> PromptVersion: ...

    def delete_versions_beyond(self, prompt_id: int, keep: int) -> int: ...

    def increment_counter(self, prompt_id: int, column: str, delta: int) -> int: ...


class ScoreStore(Protocol):
    """Durable store operations required by the quality scorer."""

    def get_score_candidate(self, public_id: int) -> ScoreCandidate: ...

    def list_for_score(self, after_id: int, limit: int) -> list[ScoreCandidate]: ...

    def update_quality_score(self, public_id: int, score: float) -> None: ...


class PromptRepository(
    RepositoryMaintenanceMixin,
    PromptStoreMixin,
    PublicPromptStoreMixin,
):
    """Compose repository mixins for SQLite-backed storage."""

    def __init__(self, db_path: str | Path) -> None:
        """Initialise repository storage and ensure the schema exists."""
        self._db_path = Path(db_path)
        self._session = threading.local()
        _ensure_directory(self._db_path)
        try:
            with _connect(self._db_path) as conn:
                self._ensure_schema(conn)
        except sqlite3.Error as exc:  # pragma: no cover - defensive
            raise RepositoryError("Failed to initialise SQLite schema") from exc

    @property
    def db_path(self) -> Path:
        return self._db_path


__all__ = [
    "COUNTER_COLUMNS",
    "PromptRepository",
    "PromptStore",
    "RepositoryError",
    "RepositoryNotFoundError",
    "ScoreStore",
]
