"""Quality scoring for public prompt listings.

The score combines log-scaled engagement counters with an exponentially
decaying recency bonus::

    base + wD*log1p(downloads) + wL*log1p(likes) + wV*log1p(visits)
         + wR*exp(-age_hours / half_life_hours)

Persisted scores use durable counters only. Display scores additionally count
visits still waiting in the buffer.

Updates:
  v0.2.1 - 2026-10-19 - Log and continue when a refresh pass fails unexpectedly.
  v0.2.0 - 2026-10-19 - Add cursor-paginated refresh worker.
  v0.1.0 - 2026-10-19 - Introduce weighted score function and scorer service.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from .repository import RepositoryError, RepositoryNotFoundError

if TYPE_CHECKING:
    from collections.abc import Callable

    from models.prompt_record import ScoreCandidate

    from .repository import ScoreStore

logger = logging.getLogger("prompt_workbench.quality")

DEFAULT_REFRESH_INTERVAL_SECONDS = 300.0
DEFAULT_REFRESH_BATCH = 200


@dataclass(slots=True, frozen=True)
class ScoreWeights:
    """Weights and decay parameters for :func:`compute_quality_score`."""

    base: float = 1.0
    download: float = 4.0
    like: float = 3.0
    visit: float = 1.0
    recency: float = 2.0
    half_life_hours: float = 24.0


def compute_quality_score(
    downloads: int,
    likes: int,
    visits: int,
    updated_at: datetime | None,
    weights: ScoreWeights | None = None,
    now: datetime | None = None,
) -> float:
    """Return the quality score for the given counters.

    Negative counters are treated as zero, a timestamp in the future counts as
    age zero, and the recency term is omitted when its weight is zero or no
    timestamp is known.
    """
    weights = weights or ScoreWeights()
    score = weights.base
    score += weights.download * math.log1p(max(0, downloads))
    score += weights.like * math.log1p(max(0, likes))
    score += weights.visit * math.log1p(max(0, visits))
    if weights.recency > 0 and updated_at is not None:
        reference = now or datetime.now(UTC)
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=UTC)
        age_hours = max(0.0, (reference - updated_at).total_seconds() / 3600.0)
        half_life = weights.half_life_hours if weights.half_life_hours > 0 else 24.0
        score += weights.recency * math.exp(-age_hours / half_life)
    return score


class PendingVisitSource(Protocol):
    """Anything able to report buffered visits for a prompt."""

    def pending_delta(self, prompt_id: int) -> int: ...


@dataclass(slots=True, frozen=True)
class ScoreResult:
    """Outcome of a single recompute."""

    public_id: int
    persisted_score: float
    display_score: float
    pending_visits: int


@dataclass(slots=True)
class RefreshSummary:
    """Counters describing one full refresh pass."""

    batches: int = 0
    scored: int = 0
    failed: int = 0
    last_id: int = 0
    interrupted: bool = False


class QualityScorer:
    """Compute and persist quality scores for public listings."""

    def __init__(
        self,
        store: ScoreStore,
        *,
        weights: ScoreWeights | None = None,
        pending: PendingVisitSource | None = None,
        batch_size: int = DEFAULT_REFRESH_BATCH,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._weights = weights or ScoreWeights()
        self._pending = pending
        self._batch_size = max(1, batch_size)
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def weights(self) -> ScoreWeights:
        return self._weights

    def _pending_for(self, candidate: ScoreCandidate) -> int:
        if self._pending is None or not candidate.prompt_id:
            return 0
        return max(0, self._pending.pending_delta(candidate.prompt_id))

    def score(self, candidate: ScoreCandidate, *, extra_visits: int = 0) -> float:
        return compute_quality_score(
            candidate.downloads,
            candidate.likes,
            candidate.visits + extra_visits,
            candidate.updated_at,
            self._weights,
            self._clock(),
        )

    def live_score(self, candidate: ScoreCandidate) -> float:
        """Return the display score including buffered visits."""
        return self.score(candidate, extra_visits=self._pending_for(candidate))

    def recompute_and_persist(self, candidate: ScoreCandidate) -> ScoreResult:
        """Persist the durable-only score and return it with the display score."""
        persisted = self.score(candidate)
        self._store.update_quality_score(candidate.public_id, persisted)
        pending = self._pending_for(candidate)
        display = self.score(candidate, extra_visits=pending) if pending else persisted
        return ScoreResult(
            public_id=candidate.public_id,
            persisted_score=persisted,
            display_score=display,
            pending_visits=pending,
        )

    def recompute_public(self, public_id: int) -> ScoreResult:
        """Load current counters for *public_id* and recompute its score."""
        return self.recompute_and_persist(self._store.get_score_candidate(public_id))

    def refresh_all(self, stop_event: threading.Event | None = None) -> RefreshSummary:
        """Recompute every listing in primary-key order, batch by batch."""
        summary = RefreshSummary()
        after_id = 0
        while True:
            if stop_event is not None and stop_event.is_set():
                summary.interrupted = True
                break
            batch = self._store.list_for_score(after_id, self._batch_size)
            if not batch:
                break
            summary.batches += 1
            for candidate in batch:
                try:
                    self._store.update_quality_score(candidate.public_id, self.score(candidate))
                except RepositoryNotFoundError:
                    logger.debug(
                        "Public prompt vanished during score refresh",
                        extra={"public_id": candidate.public_id},
                    )
                except RepositoryError as exc:
                    summary.failed += 1
                    logger.warning(
                        "Quality score update failed",
                        exc_info=exc,
                        extra={"public_id": candidate.public_id},
                    )
                else:
                    summary.scored += 1
                after_id = candidate.public_id
            summary.last_id = after_id
            if len(batch) < self._batch_size:
                break
        return summary


class ScoreRefreshWorker:
    """Background loop refreshing all scores once at start, then periodically."""

    def __init__(
        self,
        scorer: QualityScorer,
        *,
        interval_seconds: float = DEFAULT_REFRESH_INTERVAL_SECONDS,
    ) -> None:
        self._scorer = scorer
        self._interval = max(0.01, interval_seconds)
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None

    def start(self, stop_event: threading.Event) -> None:
        """Start the refresh loop bound to *stop_event*."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event = stop_event
        self._thread = threading.Thread(
            target=self._run, name="prompt-score-refresh", daemon=True
        )
        self._thread.start()

    def run_once(self) -> RefreshSummary | None:
        try:
            summary = self._scorer.refresh_all(self._stop_event)
        except RepositoryError as exc:
            logger.error("Quality score refresh failed", exc_info=exc)
            return None
        except Exception:  # noqa: BLE001 - keep the refresh loop alive
            logger.exception("Unexpected quality score refresh failure")
            return None
        logger.info(
            "Quality score refresh complete",
            extra={"batches": summary.batches, "scored": summary.scored, "failed": summary.failed},
        )
        return summary

    def _run(self) -> None:
        stop_event = self._stop_event
        assert stop_event is not None  # pragma: no cover - set by start()
        self.run_once()
        while not stop_event.wait(self._interval):
            self.run_once()

    def join(self, timeout: float | None = 2.0) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


__all__ = [
    "DEFAULT_REFRESH_BATCH",
    "DEFAULT_REFRESH_INTERVAL_SECONDS",
    "PendingVisitSource",
    "QualityScorer",
    "RefreshSummary",
    "ScoreRefreshWorker",
    "ScoreResult",
    "ScoreWeights",
    "compute_quality_score",
]
