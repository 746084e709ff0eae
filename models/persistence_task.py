"""Persistence task model carried on the durable-write queue.

Updates:
  v0.1.1 - 2026-10-19 - Carry fallback instructions and tags for expired sessions.
  v0.1.0 - 2026-10-19 - Introduce PersistenceTask with JSON round-tripping.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, cast


class TaskAction(StrEnum):
    """Durable write intent recorded on a task."""

    CREATE = "create"
    UPDATE = "update"


class PromptStatus(StrEnum):
    """Lifecycle status of a durable prompt."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


def normalize_status(value: str | None, *, publish: bool = False) -> str:
    """Return a canonical status; ``publish`` forces the published state."""
    if publish:
        return PromptStatus.PUBLISHED.value
    candidate = (value or "").strip().lower()
    if candidate in {PromptStatus.PUBLISHED.value, PromptStatus.ARCHIVED.value}:
        return candidate
    return PromptStatus.DRAFT.value


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return _utc_now()
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return _utc_now()


@dataclass(slots=True)
class PersistenceTask:
    """Deferred durable-write request produced by a save/publish action."""

    user_id: str
    workspace_token: str = ""
    linked_record_id: int = 0
    action: str = ""
    status: str = PromptStatus.DRAFT.value
    publish: bool = False
    tags: list[str] = field(default_factory=list)
    topic: str = ""
    body: str = ""
    instructions: str = ""
    model_key: str = ""
    task_id: str = ""
    requested_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.action:
            self.action = (
                TaskAction.UPDATE.value if self.linked_record_id > 0 else TaskAction.CREATE.value
            )

    def ensure_identity(self) -> None:
        """Assign a task id and request timestamp when missing."""
        if not self.task_id.strip():
            self.task_id = uuid.uuid4().hex
        if self.requested_at is None:
            self.requested_at = _utc_now()

    def to_json(self) -> str:
        payload = {
            "task_id": self.task_id,
            "user_id": self.user_id,
            "workspace_token": self.workspace_token,
            "linked_record_id": self.linked_record_id,
            "action": self.action,
            "status": self.status,
            "publish": self.publish,
            "tags": list(self.tags),
            "topic": self.topic,
            "body": self.body,
            "instructions": self.instructions,
            "model_key": self.model_key,
            "requested_at": self.requested_at.isoformat() if self.requested_at else None,
        }
        return json.dumps(payload, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str | bytes) -> PersistenceTask:
        """Decode a queue payload; raises ``ValueError`` for malformed input."""
        try:
            data: object = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ValueError("persistence task payload is not valid JSON") from exc
        if not isinstance(data, dict):
            raise ValueError("persistence task payload must be a JSON object")
        payload = cast("dict[str, Any]", data)
        user_id = str(payload.get("user_id") or "").strip()
        if not user_id:
            raise ValueError("persistence task payload is missing user_id")
        raw_tags = payload.get("tags") or []
        if not isinstance(raw_tags, list):
            raise ValueError("persistence task tags must be a list")
        try:
            linked = int(payload.get("linked_record_id") or 0)
        except (TypeError, ValueError) as exc:
            raise ValueError("persistence task linked_record_id must be an integer") from exc
        return cls(
            task_id=str(payload.get("task_id") or ""),
            user_id=user_id,
            workspace_token=str(payload.get("workspace_token") or ""),
            linked_record_id=linked,
            action=str(payload.get("action") or ""),
            status=str(payload.get("status") or PromptStatus.DRAFT.value),
            publish=bool(payload.get("publish", False)),
            tags=[str(item) for item in cast("list[object]", raw_tags)],
            topic=str(payload.get("topic") or ""),
            body=str(payload.get("body") or ""),
            instructions=str(payload.get("instructions") or ""),
            model_key=str(payload.get("model_key") or ""),
            requested_at=_parse_timestamp(payload.get("requested_at")),
        )


__all__ = ["PersistenceTask", "PromptStatus", "TaskAction", "normalize_status"]
