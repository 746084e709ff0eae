"""Durable create/update of prompts with version history and retention.

Updates:
  v0.2.0 - 2026-10-19 - Run each commit in one transaction and re-check publish fields.
  v0.1.1 - 2026-10-19 - Fall back to topic lookup when the linked prompt has vanished.
  v0.1.0 - 2026-10-19 - Extract durable commit routine shared by save paths and the worker.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from models.persistence_task import PromptStatus, TaskAction, normalize_status
from models.prompt_record import PromptRecord, PromptVersion

from .exceptions import PublishValidationError
from .repository import RepositoryNotFoundError

if TYPE_CHECKING:
    from collections.abc import Callable

    from models.workspace import WorkspaceKeyword

    from .repository import PromptStore

logger = logging.getLogger("prompt_workbench.commit")

DEFAULT_VERSION_RETENTION = 5


@dataclass(slots=True)
class CommitRequest:
    """Fully resolved values to write for one prompt.

    ``positive_keywords``/``negative_keywords`` set to ``None`` leave the
    stored keywords and their links untouched.
    """

    user_id: str
    topic: str
    body: str
    instructions: str = ""
    model: str = ""
    status: str = PromptStatus.DRAFT.value
    publish: bool = False
    tags: list[str] = field(default_factory=list)
    positive_keywords: list[WorkspaceKeyword] | None = None
    negative_keywords: list[WorkspaceKeyword] | None = None
    linked_record_id: int = 0
    action: str = ""


@dataclass(slots=True)
class CommitResult:
    prompt: PromptRecord
    created: bool
    version: PromptVersion | None = None
    pruned_versions: int = 0


def _require_publishable(prompt: PromptRecord) -> None:
    missing = [
        name
        for name, value in (
            ("topic", prompt.topic),
            ("body", prompt.body),
            ("model", prompt.model),
        )
        if not value.strip()
    ]
    if missing:
        raise PublishValidationError(f"Publishing requires {', '.join(missing)}")


class PromptCommitter:
    """Write prompts, keyword links, and published versions to the durable store."""

    def __init__(
        self,
        store: PromptStore,
        *,
        version_retention: int = DEFAULT_VERSION_RETENTION,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._retention = max(1, version_retention)
        self._clock = clock or (lambda: datetime.now(UTC))

    def commit(self, request: CommitRequest) -> CommitResult:
        """Create or update the prompt described by *request*.

        Publishing bumps ``latest_version_no``, stamps ``published_at``,
        appends a version row, and prunes versions beyond the retention count.
        All writes share one transaction; any failure leaves the store as it was.
        """
        status = normalize_status(request.status, publish=request.publish)
        action = request.action or (
            TaskAction.UPDATE.value if request.linked_record_id > 0 else TaskAction.CREATE.value
        )
        with self._store.transaction():
            existing = (
                self._resolve_existing(request) if action == TaskAction.UPDATE.value else None
            )
            created = existing is None
            if existing is None:
                prompt = self._store.create_prompt(
                    PromptRecord(
                        user_id=request.user_id,
                        topic=request.topic.strip(),
                        body=request.body.strip(),
                        instructions=request.instructions.strip(),
                        model=request.model.strip(),
                        status=status,
                        positive_keywords=list(request.positive_keywords or []),
                        negative_keywords=list(request.negative_keywords or []),
                        tags=list(request.tags),
                    )
                )
            else:
                existing.topic = request.topic.strip() or existing.topic
                existing.body = request.body.strip()
                existing.instructions = request.instructions.strip()
                existing.model = request.model.strip() or existing.model
                existing.status = status
                existing.tags = list(request.tags)
                if request.positive_keywords is not None:
                    existing.positive_keywords = list(request.positive_keywords)
                if request.negative_keywords is not None:
                    existing.negative_keywords = list(request.negative_keywords)
                prompt = self._store.update_prompt(existing)

            if request.positive_keywords is not None or request.negative_keywords is not None:
                self._store.replace_prompt_keywords(
                    prompt.id,
                    prompt.user_id,
                    prompt.topic,
                    [*prompt.positive_keywords, *prompt.negative_keywords],
                )

            result = CommitResult(prompt=prompt, created=created)
            if status == PromptStatus.PUBLISHED.value:
                self._publish(result)
        logger.info(
            "Prompt committed",
            extra={
                "prompt_id": result.prompt.id,
                "status": result.prompt.status,
                "created": created,
                "version_no": result.prompt.latest_version_no,
            },
        )
        return result

    def _resolve_existing(self, request: CommitRequest) -> PromptRecord | None:
        if request.linked_record_id > 0:
            try:
                prompt = self._store.get_prompt(request.linked_record_id)
            except RepositoryNotFoundError:
                prompt = None
            if prompt is not None and prompt.user_id == request.user_id:
                return prompt
        fallback = self._store.find_prompt_by_topic(request.user_id, request.topic.strip())
        if fallback is None:
            raise RepositoryNotFoundError(
                f"Prompt {request.linked_record_id} not found for user {request.user_id}"
            )
        return fallback

    def _publish(self, result: CommitResult) -> None:
        prompt = result.prompt
        _require_publishable(prompt)
        current = max(prompt.latest_version_no, self._store.max_version_no(prompt.id))
        prompt.latest_version_no = current + 1
        prompt.published_at = self._clock()
        result.prompt = self._store.update_prompt(prompt)
        result.version = self._store.record_version(PromptVersion.from_prompt(result.prompt))
        result.pruned_versions = self._store.delete_versions_beyond(prompt.id, self._retention)


__all__ = [
    "CommitRequest",
    "CommitResult",
    "DEFAULT_VERSION_RETENTION",
    "PromptCommitter",
]
