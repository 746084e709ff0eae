"""Factories for constructing the workbench runtime from validated settings.

Updates:
  v0.2.0 - 2026-10-19 - Wire visit buffering, flush lease, and score refresh workers.
  v0.1.0 - 2026-10-19 - Build workspace, queue, and persistence worker from settings with
    in-process fallbacks when Redis is unavailable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .backends import build_redis_client
from .detached import DetachedCaller
from .engagement import EngagementService
from .lease import InMemoryLease, RedisLease
from .llm import LiteLLMInvoker
from .persistence_queue import InMemoryPersistenceQueue, RedisPersistenceQueue
from .persistence_worker import PersistenceWorker
from .prompt_commit import PromptCommitter
from .quality import QualityScorer, ScoreRefreshWorker, ScoreWeights
from .repository import PromptRepository
from .visits import (
    InMemoryVisitBuffer,
    RedisVisitBuffer,
    VisitFlusher,
    VisitFlushWorker,
    VisitTracker,
)
from .workbench import WorkbenchService
from .workspace_store import InMemoryWorkspaceStore, RedisWorkspaceStore

if TYPE_CHECKING:  # pragma: no cover - typing only
    from config import WorkbenchSettings

    from .backends import RedisClientProtocol
    from .lease import Lease
    from .llm import ModelInvoker
    from .persistence_queue import PersistenceQueue
    from .visits import VisitBuffer
    from .workspace_store import WorkspaceStore

factory_logger = logging.getLogger("prompt_workbench.factory")


@dataclass(slots=True)
class Runtime:
    """Every long-lived collaborator built from one settings object."""

    settings: WorkbenchSettings
    repository: PromptRepository
    workspace: WorkspaceStore
    queue: PersistenceQueue
    lease: Lease
    visit_buffer: VisitBuffer | None
    detached: DetachedCaller
    committer: PromptCommitter
    scorer: QualityScorer
    tracker: VisitTracker
    workbench: WorkbenchService
    engagement: EngagementService
    persistence_worker: PersistenceWorker
    flush_worker: VisitFlushWorker | None
    refresh_worker: ScoreRefreshWorker | None
    redis_client: RedisClientProtocol | None = None
    degraded_reason: str | None = None

    def close(self) -> None:
        """Release pool threads and the Redis connection."""
        self.detached.shutdown(wait=False)
        if self.redis_client is not None:
            self.redis_client.close()


def _resolve_redis_client(
    settings: WorkbenchSettings, redis_client: RedisClientProtocol | None
) -> tuple[RedisClientProtocol | None, str | None]:
    if redis_client is not None or not settings.redis_dsn:
        return redis_client, None
    return build_redis_client(settings.redis_dsn)


def build_score_weights(settings: WorkbenchSettings) -> ScoreWeights:
    return ScoreWeights(
        base=settings.score_base,
        download=settings.score_download_weight,
        like=settings.score_like_weight,
        visit=settings.score_visit_weight,
        recency=settings.score_recency_weight,
        half_life_hours=settings.score_recency_half_life_hours,
    )


def build_runtime(
    settings: WorkbenchSettings,
    *,
    redis_client: RedisClientProtocol | None = None,
    invoker: ModelInvoker | None = None,
    repository: PromptRepository | None = None,
) -> Runtime:
    """Return a fully wired :class:`Runtime`.

    Redis-backed stores are used when a client is supplied or ``redis_dsn`` is
    configured and reachable; otherwise in-process stores stand in and the
    reason is kept on ``degraded_reason``.
    """
    client, degraded_reason = _resolve_redis_client(settings, redis_client)
    if settings.redis_dsn is None and redis_client is None:
        degraded_reason = "Redis not configured; using in-process stores."
    if degraded_reason:
        factory_logger.info(degraded_reason)

    repository = repository or PromptRepository(settings.db_path)

    workspace: WorkspaceStore
    queue: PersistenceQueue
    lease: Lease
    visit_buffer: VisitBuffer | None
    if client is not None:
        workspace = RedisWorkspaceStore(
            client,
            ttl_seconds=settings.workspace_ttl_seconds,
            key_prefix=settings.workspace_key_prefix,
        )
        queue = RedisPersistenceQueue(client, key=settings.queue_key)
        lease = RedisLease(client)
        visit_buffer = (
            RedisVisitBuffer(
                client,
                buffer_key=settings.visit_buffer_key,
                guard_prefix=settings.visit_guard_prefix,
            )
            if settings.visit_buffer_enabled
            else None
        )
    else:
        workspace = InMemoryWorkspaceStore(ttl_seconds=settings.workspace_ttl_seconds)
        queue = InMemoryPersistenceQueue()
        lease = InMemoryLease()
        visit_buffer = InMemoryVisitBuffer() if settings.visit_buffer_enabled else None

    detached = DetachedCaller(
        workspace_timeout=settings.workspace_write_timeout_seconds,
        model_timeout=settings.model_invoke_timeout_seconds,
    )
    if invoker is None:
        invoker = LiteLLMInvoker(
            api_key=settings.litellm_api_key,
            api_base=settings.litellm_api_base,
            default_model=settings.default_model_key,
            timeout_seconds=settings.model_invoke_timeout_seconds,
        )
    committer = PromptCommitter(repository, version_retention=settings.version_retention)
    tracker = VisitTracker(
        visit_buffer,
        repository,
        guard_ttl_seconds=settings.visit_guard_ttl_seconds,
    )
    scorer = QualityScorer(
        repository,
        weights=build_score_weights(settings),
        pending=tracker,
        batch_size=settings.score_refresh_batch,
    )
    workbench = WorkbenchService(
        workspace,
        queue,
        committer,
        invoker,
        detached=detached,
        keyword_limit=settings.keyword_limit,
        keyword_max_length=settings.keyword_max_length,
        tag_limit=settings.tag_limit,
        tag_max_length=settings.tag_max_length,
        default_model=settings.default_model_key or "",
    )
    engagement = EngagementService(repository, tracker, scorer)
    persistence_worker = PersistenceWorker(
        queue,
        workspace,
        committer,
        poll_timeout=settings.queue_poll_timeout_seconds,
    )
    flush_worker: VisitFlushWorker | None = None
    if visit_buffer is not None:
        flusher = VisitFlusher(
            visit_buffer,
            repository,
            lease,
            lock_key=settings.visit_flush_lock_key,
            lock_ttl_seconds=settings.visit_flush_lock_ttl_seconds,
            batch_size=settings.visit_flush_batch,
        )
        flush_worker = VisitFlushWorker(
            flusher, interval_seconds=settings.visit_flush_interval_seconds
        )
    refresh_worker = (
        ScoreRefreshWorker(scorer, interval_seconds=settings.score_refresh_interval_seconds)
        if settings.score_refresh_enabled
        else None
    )
    return Runtime(
        settings=settings,
        repository=repository,
        workspace=workspace,
        queue=queue,
        lease=lease,
        visit_buffer=visit_buffer,
        detached=detached,
        committer=committer,
        scorer=scorer,
        tracker=tracker,
        workbench=workbench,
        engagement=engagement,
        persistence_worker=persistence_worker,
        flush_worker=flush_worker,
        refresh_worker=refresh_worker,
        redis_client=client,
        degraded_reason=degraded_reason,
    )


__all__ = ["Runtime", "build_runtime", "build_score_weights"]
