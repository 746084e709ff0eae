"""Engagement actions on shared prompts: visits, downloads, and likes.

Updates:
  v0.1.0 - 2026-10-19 - Introduce EngagementService wiring counters to score recompute.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from .repository import RepositoryError, RepositoryNotFoundError

if TYPE_CHECKING:
    from models.prompt_record import PromptRecord

    from .quality import QualityScorer, ScoreResult
    from .visits import VisitTracker

logger = logging.getLogger("prompt_workbench.engagement")


class EngagementStore(Protocol):
    """Durable operations needed by :class:`EngagementService`."""

    def get_prompt(self, prompt_id: int) -> PromptRecord: ...

    def increment_download(self, public_id: int) -> int: ...

    def set_like(self, prompt_id: int, user_id: str, liked: bool) -> tuple[bool, int]: ...

    def list_public_ids_for_prompt(self, prompt_id: int) -> list[int]: ...


@dataclass(slots=True)
class LikeResult:
    prompt_id: int
    liked: bool
    changed: bool
    like_count: int


@dataclass(slots=True)
class DownloadResult:
    public_id: int
    download_count: int
    score: ScoreResult | None = None


class EngagementService:
    """Record engagement and keep quality scores current."""

    def __init__(
        self,
        store: EngagementStore,
        tracker: VisitTracker,
        scorer: QualityScorer,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._scorer = scorer

    def record_visit(self, prompt_id: int, viewer_id: str | None = None) -> bool:
        """Count a visit to *prompt_id*; returns False for a deduplicated repeat."""
        if prompt_id <= 0:
            raise ValueError("prompt_id must be positive")
        return self._tracker.record_visit(prompt_id, viewer_id)

    def visit_count(self, prompt_id: int) -> int:
        """Durable visit count plus visits still waiting in the buffer."""
        prompt = self._store.get_prompt(prompt_id)
        return prompt.visit_count + self._tracker.pending_delta(prompt_id)

    def record_download(self, public_id: int) -> DownloadResult:
        count = self._store.increment_download(public_id)
        result = DownloadResult(public_id=public_id, download_count=count)
        try:
            result.score = self._scorer.recompute_public(public_id)
        except RepositoryError as exc:
            logger.warning(
                "Score recompute after download failed",
                exc_info=exc,
                extra={"public_id": public_id},
            )
        return result

    def like(self, prompt_id: int, user_id: str) -> LikeResult:
        return self._set_like(prompt_id, user_id, liked=True)

    def unlike(self, prompt_id: int, user_id: str) -> LikeResult:
        return self._set_like(prompt_id, user_id, liked=False)

    def _set_like(self, prompt_id: int, user_id: str, *, liked: bool) -> LikeResult:
        if not user_id.strip():
            raise ValueError("user_id is required")
        changed, like_count = self._store.set_like(prompt_id, user_id.strip(), liked)
        if changed:
            self._recompute_sources(prompt_id)
        return LikeResult(prompt_id=prompt_id, liked=liked, changed=changed, like_count=like_count)

    def _recompute_sources(self, prompt_id: int) -> None:
        try:
            public_ids = self._store.list_public_ids_for_prompt(prompt_id)
        except RepositoryError as exc:
            logger.warning(
                "Listing public entries for score recompute failed",
                exc_info=exc,
                extra={"prompt_id": prompt_id},
            )
            return
        for public_id in public_ids:
            try:
                self._scorer.recompute_public(public_id)
            except RepositoryNotFoundError:
                continue
            except RepositoryError as exc:
                logger.warning(
                    "Score recompute after like failed",
                    exc_info=exc,
                    extra={"public_id": public_id, "prompt_id": prompt_id},
                )


__all__ = ["DownloadResult", "EngagementService", "EngagementStore", "LikeResult"]
