"""Core service layer for the prompt workbench pipeline.

Updates:
  v0.3.0 - 2026-10-19 - Export engagement, visit buffering, and quality scoring helpers.
  v0.2.0 - 2026-10-19 - Export persistence queue, worker, and runtime factory.
  v0.1.0 - 2026-10-19 - Surface PromptRepository, workspace stores, and WorkbenchService.
"""

from .detached import DetachedCaller, DetachedTimeoutError
from .engagement import EngagementService
from .exceptions import (
    DuplicateKeywordError,
    KeywordLimitError,
    MalformedEntryError,
    ModelInvocationError,
    PromptValidationError,
    PublishValidationError,
    QueueEmpty,
    TagLimitError,
    TransientStoreError,
    WorkbenchError,
    WorkbenchServiceError,
    WorkspaceNotFoundError,
)
from .factory import Runtime, build_runtime
from .lease import InMemoryLease, RedisLease
from .persistence_queue import InMemoryPersistenceQueue, RedisPersistenceQueue
from .persistence_worker import PersistenceWorker, TaskOutcome, WorkerState
from .prompt_commit import CommitRequest, CommitResult, PromptCommitter
from .quality import QualityScorer, ScoreRefreshWorker, ScoreWeights, compute_quality_score
from .repository import PromptRepository, RepositoryError, RepositoryNotFoundError
from .runtime import WorkerHost
from .visits import (
    InMemoryVisitBuffer,
    RedisVisitBuffer,
    VisitFlusher,
    VisitFlushWorker,
    VisitTracker,
)
from .workbench import SaveRequest, SaveResult, WorkbenchService
from .workspace_store import InMemoryWorkspaceStore, RedisWorkspaceStore

__all__ = [
    "CommitRequest",
    "CommitResult",
    "DetachedCaller",
    "DetachedTimeoutError",
    "DuplicateKeywordError",
    "EngagementService",
    "InMemoryLease",
    "InMemoryPersistenceQueue",
    "InMemoryVisitBuffer",
    "InMemoryWorkspaceStore",
    "KeywordLimitError",
    "MalformedEntryError",
    "ModelInvocationError",
    "PersistenceWorker",
    "PromptCommitter",
    "PromptRepository",
    "PromptValidationError",
    "PublishValidationError",
    "QualityScorer",
    "QueueEmpty",
    "RedisLease",
    "RedisPersistenceQueue",
    "RedisVisitBuffer",
    "RedisWorkspaceStore",
    "RepositoryError",
    "RepositoryNotFoundError",
    "Runtime",
    "SaveRequest",
    "SaveResult",
    "ScoreRefreshWorker",
    "ScoreWeights",
    "TagLimitError",
    "TaskOutcome",
    "TransientStoreError",
    "VisitFlushWorker",
    "VisitFlusher",
    "VisitTracker",
    "WorkbenchError",
    "WorkbenchService",
    "WorkbenchServiceError",
    "WorkerHost",
    "WorkerState",
    "WorkspaceNotFoundError",
    "build_runtime",
    "compute_quality_score",
]
