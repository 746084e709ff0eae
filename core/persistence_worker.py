"""Single-consumer background worker draining the persistence queue.

Each task moves through ``IDLE -> POPPED -> LOADING -> COMMITTING -> IDLE``.
Failed tasks are logged and dropped; the worker never re-enqueues.

Updates:
  v0.2.0 - 2026-10-19 - Fall back to task-carried fields when the workspace expired.
  v0.1.0 - 2026-10-19 - Introduce persistence worker thread and task outcomes.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from models.workspace import ATTRIBUTE_INSTRUCTIONS, ATTRIBUTE_TAGS

from .exceptions import (
    MalformedEntryError,
    QueueEmpty,
    TransientStoreError,
    WorkbenchError,
    WorkspaceNotFoundError,
)
from .prompt_commit import CommitRequest
from .repository import RepositoryError

if TYPE_CHECKING:
    from collections.abc import Callable

    from models.persistence_task import PersistenceTask
    from models.workspace import WorkspaceSnapshot

    from .persistence_queue import PersistenceQueue
    from .prompt_commit import PromptCommitter
    from .workspace_store import WorkspaceStore

logger = logging.getLogger("prompt_workbench.persistence_worker")

DEFAULT_POLL_TIMEOUT_SECONDS = 2.0


class WorkerState(StrEnum):
    IDLE = "idle"
    POPPED = "popped"
    LOADING = "loading"
    COMMITTING = "committing"


@dataclass(slots=True)
class TaskOutcome:
    """What happened to one popped task."""

    task_id: str
    prompt_id: int = 0
    status: str = ""
    error: str | None = None
    session_expired: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def _first_non_empty(*values: str) -> str:
    for value in values:
        if value and value.strip():
            return value.strip()
    return ""


def _snapshot_tags(snapshot: WorkspaceSnapshot) -> list[str]:
    raw = snapshot.attributes.get(ATTRIBUTE_TAGS, "")
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return [str(item) for item in parsed] if isinstance(parsed, list) else []


class PersistenceWorker:
    """Consume persistence tasks and commit them to the durable store."""

    def __init__(
        self,
        queue: PersistenceQueue,
        workspace: WorkspaceStore,
        committer: PromptCommitter,
        *,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT_SECONDS,
        on_outcome: Callable[[TaskOutcome], None] | None = None,
    ) -> None:
        self._queue = queue
        self._workspace = workspace
        self._committer = committer
        self._poll_timeout = max(0.01, poll_timeout)
        self._on_outcome = on_outcome
        self._state = WorkerState.IDLE
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None

    @property
    def state(self) -> WorkerState:
        return self._state

    def start(self, stop_event: threading.Event) -> None:
        """Start consuming on a daemon thread until *stop_event* is set."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event = stop_event
        self._thread = threading.Thread(
            target=self._run, name="prompt-persistence-worker", daemon=True
        )
        self._thread.start()

    def join(self, timeout: float | None = 2.0) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        stop_event = self._stop_event
        assert stop_event is not None  # pragma: no cover - set by start()
        while not stop_event.is_set():
            try:
                self.run_once(self._poll_timeout)
            except TransientStoreError as exc:
                logger.warning("Persistence queue unavailable", exc_info=exc)
                stop_event.wait(self._poll_timeout)
            except Exception:  # noqa: BLE001 - keep the consumer alive
                logger.exception("Unexpected persistence worker failure")
                self._state = WorkerState.IDLE

    def run_once(self, timeout: float | None = None) -> TaskOutcome | None:
        """Pop and process at most one task; returns None when nothing was processed."""
        self._state = WorkerState.IDLE
        try:
            task = self._queue.blocking_pop(self._poll_timeout if timeout is None else timeout)
        except QueueEmpty:
            return None
        except MalformedEntryError as exc:
            logger.warning("Dropping malformed persistence task", exc_info=exc)
            return None
        self._state = WorkerState.POPPED
        try:
            outcome = self._process(task)
        finally:
            self._state = WorkerState.IDLE
        if outcome.ok:
            logger.info(
                "Persistence task committed",
                extra={"task_id": outcome.task_id, "prompt_id": outcome.prompt_id},
            )
        else:
            logger.warning(
                "Persistence task failed",
                extra={"task_id": outcome.task_id, "error": outcome.error},
            )
        if self._on_outcome is not None:
            self._on_outcome(outcome)
        return outcome

    def _load_snapshot(self, task: PersistenceTask) -> WorkspaceSnapshot | None:
        if not task.workspace_token:
            return None
        try:
            return self._workspace.snapshot(task.user_id, task.workspace_token)
        except WorkspaceNotFoundError:
            logger.info(
                "Workspace expired before persistence; using task fallback",
                extra={"task_id": task.task_id, "workspace_token": task.workspace_token},
            )
        except TransientStoreError as exc:
            logger.warning(
                "Workspace unavailable; using task fallback",
                exc_info=exc,
                extra={"task_id": task.task_id},
            )
        return None

    def _build_request(
        self, task: PersistenceTask, snapshot: WorkspaceSnapshot | None
    ) -> CommitRequest:
        if snapshot is None:
            linked = task.linked_record_id
            return CommitRequest(
                user_id=task.user_id,
                topic=task.topic.strip(),
                body=task.body.strip(),
                instructions=task.instructions.strip(),
                model=task.model_key.strip(),
                status=task.status,
                publish=task.publish,
                tags=list(task.tags),
                linked_record_id=linked,
            )
        linked = task.linked_record_id or snapshot.linked_record_id
        return CommitRequest(
            user_id=task.user_id,
            topic=_first_non_empty(snapshot.topic, task.topic),
            body=_first_non_empty(snapshot.draft_body, task.body),
            instructions=_first_non_empty(
                snapshot.attributes.get(ATTRIBUTE_INSTRUCTIONS, ""), task.instructions
            ),
            model=_first_non_empty(snapshot.model_key, task.model_key),
            status=task.status,
            publish=task.publish,
            tags=list(task.tags) or _snapshot_tags(snapshot),
            positive_keywords=list(snapshot.positive_keywords),
            negative_keywords=list(snapshot.negative_keywords),
            linked_record_id=linked,
        )

    def _process(self, task: PersistenceTask) -> TaskOutcome:
        outcome = TaskOutcome(task_id=task.task_id)
        self._state = WorkerState.LOADING
        snapshot = self._load_snapshot(task)
        outcome.session_expired = snapshot is None and bool(task.workspace_token)
        request = self._build_request(task, snapshot)
        if not request.topic or not request.body:
            outcome.error = "workspace expired and task carries no topic/body fallback"
            return outcome

        self._state = WorkerState.COMMITTING
        try:
            result = self._committer.commit(request)
        except (RepositoryError, WorkbenchError) as exc:
            outcome.error = str(exc) or exc.__class__.__name__
            return outcome
        outcome.prompt_id = result.prompt.id
        outcome.status = result.prompt.status

        if snapshot is not None:
            try:
                self._workspace.set_meta(
                    task.user_id, task.workspace_token, result.prompt.id, result.prompt.status
                )
                self._workspace.set_attributes(
                    task.user_id,
                    task.workspace_token,
                    {ATTRIBUTE_TAGS: json.dumps(result.prompt.tags, ensure_ascii=False)},
                )
            except (WorkspaceNotFoundError, TransientStoreError) as exc:
                logger.info(
                    "Workspace write-back skipped",
                    exc_info=exc,
                    extra={"task_id": task.task_id, "prompt_id": result.prompt.id},
                )
        return outcome


__all__ = [
    "DEFAULT_POLL_TIMEOUT_SECONDS",
    "PersistenceWorker",
    "TaskOutcome",
    "WorkerState",
]
