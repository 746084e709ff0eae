"""Request-path service for interpreting, editing, generating, and saving prompts.

Workspace writes and model calls run through :class:`DetachedCaller` so an
abandoned request never aborts them mid-flight.

Updates:
  v0.3.1 - 2026-10-19 - Fill queued saves from the live workspace before publish checks.
  v0.3.0 - 2026-10-19 - Add asynchronous save via the persistence queue.
  v0.2.0 - 2026-10-19 - Add manual keyword editing and draft generation.
  v0.1.0 - 2026-10-19 - Introduce WorkbenchService with model-backed interpretation.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, cast

from models.persistence_task import PersistenceTask, normalize_status
from models.workspace import (
    ATTRIBUTE_INSTRUCTIONS,
    ATTRIBUTE_TAGS,
    DEFAULT_KEYWORD_MAX_LENGTH,
    KEYWORD_SOURCE_MANUAL,
    KEYWORD_SOURCE_MODEL,
    POLARITY_NEGATIVE,
    POLARITY_POSITIVE,
    WorkspaceKeyword,
    WorkspaceSnapshot,
    dedupe_keywords,
    normalize_polarity,
)
from prompt_templates import (
    DEFAULT_LANGUAGE,
    GENERATION_SYSTEM_PROMPT,
    INTERPRETATION_SYSTEM_PROMPT,
    INTERPRETATION_USER_TEMPLATE,
    build_generation_user_prompt,
)

from .detached import DetachedCaller, DetachedTimeoutError
from .exceptions import (
    DuplicateKeywordError,
    KeywordLimitError,
    ModelInvocationError,
    PromptValidationError,
    PublishValidationError,
    TagLimitError,
    TransientStoreError,
    WorkbenchServiceError,
    WorkspaceNotFoundError,
)
from .llm import ChatCompletionRequest, ChatMessage
from .prompt_commit import CommitRequest, PromptCommitter
from .repository import RepositoryError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .llm import ChatCompletionResponse, ModelInvoker
    from .persistence_queue import PersistenceQueue
    from .workspace_store import WorkspaceStore

logger = logging.getLogger("prompt_workbench.workbench")

DEFAULT_KEYWORD_LIMIT = 10
DEFAULT_TAG_LIMIT = 3
DEFAULT_TAG_MAX_LENGTH = 16


@dataclass(slots=True)
class InterpretResult:
    topic: str
    positive_keywords: list[WorkspaceKeyword] = field(default_factory=list)
    negative_keywords: list[WorkspaceKeyword] = field(default_factory=list)
    instructions: str = ""
    tags: list[str] = field(default_factory=list)
    workspace_token: str = ""


@dataclass(slots=True)
class GenerateResult:
    body: str
    model: str = ""
    duration_ms: int = 0
    usage: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SaveRequest:
    """Caller-supplied values for a save or publish; blanks are filled from the workspace."""

    user_id: str
    workspace_token: str = ""
    linked_record_id: int = 0
    topic: str = ""
    body: str = ""
    instructions: str = ""
    model: str = ""
    status: str = ""
    publish: bool = False
    tags: list[str] = field(default_factory=list)
    positive_keywords: list[WorkspaceKeyword] = field(default_factory=list)
    negative_keywords: list[WorkspaceKeyword] = field(default_factory=list)


@dataclass(slots=True)
class SaveResult:
    prompt_id: int
    status: str
    created: bool
    version_no: int = 0
    workspace_token: str = ""
    session_expired: bool = False


def _keyword_entries(value: Any) -> list[Mapping[str, Any]]:
    if not isinstance(value, list):
        return []
    entries: list[Mapping[str, Any]] = []
    for item in cast("list[Any]", value):
        if isinstance(item, Mapping):
            entries.append(cast("Mapping[str, Any]", item))
        elif isinstance(item, str):
            entries.append({"word": item})
    return entries


def parse_interpretation_payload(content: str) -> dict[str, Any]:
    """Decode the JSON object returned by the interpretation model call."""
    text = content.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ModelInvocationError("Model returned invalid interpretation JSON") from exc
    if not isinstance(payload, dict):
        raise ModelInvocationError("Model interpretation must be a JSON object")
    return cast("dict[str, Any]", payload)


def encode_tags_attribute(tags: Sequence[str]) -> str:
    return json.dumps(list(tags), ensure_ascii=False)


def decode_tags_attribute(raw: str | None) -> list[str]:
    """Decode tags stored as a JSON array, tolerating comma-separated legacy values."""
    if not raw or not raw.strip():
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return [part.strip() for part in raw.split(",") if part.strip()]
    if isinstance(parsed, list):
        return [str(item).strip() for item in cast("list[Any]", parsed) if str(item).strip()]
    return []


class WorkbenchService:
    """Coordinate workspace editing, model calls, and durable saves."""

    def __init__(
        self,
        workspace: WorkspaceStore,
        queue: PersistenceQueue,
        committer: PromptCommitter,
        invoker: ModelInvoker,
        *,
        detached: DetachedCaller | None = None,
        keyword_limit: int = DEFAULT_KEYWORD_LIMIT,
        keyword_max_length: int = DEFAULT_KEYWORD_MAX_LENGTH,
        tag_limit: int = DEFAULT_TAG_LIMIT,
        tag_max_length: int = DEFAULT_TAG_MAX_LENGTH,
        default_model: str = "",
    ) -> None:
        self._workspace = workspace
        self._queue = queue
        self._committer = committer
        self._invoker = invoker
        self._detached = detached or DetachedCaller()
        self._keyword_limit = max(1, keyword_limit)
        self._keyword_max_length = keyword_max_length
        self._tag_limit = tag_limit
        self._tag_max_length = tag_max_length
        self._default_model = default_model.strip()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _resolve_model(self, model_key: str | None) -> str:
        model = (model_key or "").strip() or self._default_model
        if not model:
            raise PromptValidationError("A model key is required")
        return model

    def _build_keyword(
        self, word: str, *, polarity: str, weight: Any = None, source: str = KEYWORD_SOURCE_MANUAL
    ) -> WorkspaceKeyword:
        return WorkspaceKeyword.build(
            word,
            source=source,
            polarity=polarity,
            weight=weight,
            max_length=self._keyword_max_length,
        )

    def _enforce_keyword_limit(
        self, positive: Sequence[WorkspaceKeyword], negative: Sequence[WorkspaceKeyword]
    ) -> None:
        if len(positive) > self._keyword_limit:
            raise KeywordLimitError(f"At most {self._keyword_limit} positive keywords are allowed")
        if len(negative) > self._keyword_limit:
            raise KeywordLimitError(f"At most {self._keyword_limit} negative keywords are allowed")

    def _clamp_tag(self, tag: str) -> str:
        text = (tag or "").strip()
        if self._tag_max_length > 0 and len(text) > self._tag_max_length:
            text = text[: self._tag_max_length].rstrip()
        return text

    def normalize_tags(self, tags: Sequence[str]) -> list[str]:
        """Trim, clamp, and deduplicate tags; raise when more than the limit remain."""
        cleaned: list[str] = []
        seen: set[str] = set()
        for tag in tags:
            value = self._clamp_tag(tag)
            if not value or value.lower() in seen:
                continue
            if self._tag_limit > 0 and len(cleaned) >= self._tag_limit:
                raise TagLimitError(f"At most {self._tag_limit} tags are allowed")
            seen.add(value.lower())
            cleaned.append(value)
        return cleaned

    def _truncate_tags(self, tags: Sequence[str]) -> list[str]:
        cleaned: list[str] = []
        seen: set[str] = set()
        for tag in tags:
            value = self._clamp_tag(tag)
            if not value or value.lower() in seen:
                continue
            if self._tag_limit > 0 and len(cleaned) >= self._tag_limit:
                break
            seen.add(value.lower())
            cleaned.append(value)
        return cleaned

    def _invoke(
        self, user_id: str, model: str, request: ChatCompletionRequest
    ) -> ChatCompletionResponse:
        try:
            return self._detached.model(self._invoker.invoke, user_id, model, request)
        except DetachedTimeoutError as exc:
            raise ModelInvocationError(f"Model {model} timed out") from exc

    def _load_snapshot(self, user_id: str, token: str) -> WorkspaceSnapshot:
        return self._detached.workspace(self._workspace.snapshot, user_id, token)

    # ------------------------------------------------------------------
    # Interpretation
    # ------------------------------------------------------------------
    def interpret(
        self,
        user_id: str,
        description: str,
        model_key: str = "",
        language: str = "",
        workspace_token: str | None = None,
    ) -> InterpretResult:
        """Ask the model to turn *description* into a topic, keywords, and tags."""
        text = description.strip()
        if not text:
            raise PromptValidationError("Description is empty")
        model = self._resolve_model(model_key)
        request = ChatCompletionRequest(
            messages=[
                ChatMessage("system", INTERPRETATION_SYSTEM_PROMPT),
                ChatMessage(
                    "user",
                    INTERPRETATION_USER_TEMPLATE.format(
                        language=language.strip() or DEFAULT_LANGUAGE, description=text
                    ),
                ),
            ],
            json_mode=True,
        )
        response = self._invoke(user_id, model, request)
        payload = parse_interpretation_payload(response.content)

        topic = str(payload.get("topic") or "").strip()
        if not topic:
            raise ModelInvocationError("Model did not return a topic")
        positive = dedupe_keywords(
            self._build_keyword(
                str(entry.get("word", "")),
                polarity=POLARITY_POSITIVE,
                weight=entry.get("weight"),
                source=KEYWORD_SOURCE_MODEL,
            )
            for entry in _keyword_entries(payload.get("positive_keywords"))
        )
        negative = dedupe_keywords(
            self._build_keyword(
                str(entry.get("word", "")),
                polarity=POLARITY_NEGATIVE,
                weight=entry.get("weight"),
                source=KEYWORD_SOURCE_MODEL,
            )
            for entry in _keyword_entries(payload.get("negative_keywords"))
        )
        if not positive:
            raise ModelInvocationError("Model did not return positive keywords")
        positive = positive[: self._keyword_limit]
        negative = negative[: self._keyword_limit]

        raw_tags = payload.get("tags")
        tags: list[str] = []
        if isinstance(raw_tags, list):
            tag_values = [str(item) for item in cast("list[Any]", raw_tags)]
            try:
                tags = self.normalize_tags(tag_values)
            except TagLimitError:
                tags = self._truncate_tags(tag_values)
        instructions = str(payload.get("instructions") or "").strip()

        result = InterpretResult(
            topic=topic,
            positive_keywords=positive,
            negative_keywords=negative,
            instructions=instructions,
            tags=tags,
        )
        attributes: dict[str, str] = {}
        if instructions:
            attributes[ATTRIBUTE_INSTRUCTIONS] = instructions
        if tags:
            attributes[ATTRIBUTE_TAGS] = encode_tags_attribute(tags)
        snapshot = WorkspaceSnapshot(
            token=(workspace_token or "").strip(),
            owner_id=user_id,
            topic=topic,
            language=language.strip(),
            model_key=model,
            positive_keywords=positive,
            negative_keywords=negative,
            version=1,
            attributes=attributes,
        )
        try:
            result.workspace_token = self._detached.workspace(
                self._workspace.create_or_replace, user_id, snapshot
            )
        except (TransientStoreError, DetachedTimeoutError) as exc:
            logger.warning(
                "Storing workspace snapshot failed",
                exc_info=exc,
                extra={"user_id": user_id, "topic": topic},
            )
        return result

    # ------------------------------------------------------------------
    # Keyword editing
    # ------------------------------------------------------------------
    def add_manual_keyword(
        self,
        user_id: str,
        workspace_token: str,
        word: str,
        *,
        polarity: str = POLARITY_POSITIVE,
        weight: int | None = None,
    ) -> WorkspaceKeyword:
        """Append one user-entered keyword to the workspace."""
        keyword = self._build_keyword(word, polarity=polarity, weight=weight)
        if not keyword.word:
            raise PromptValidationError("Keyword is empty")
        snapshot = self._load_snapshot(user_id, workspace_token)
        current = (
            snapshot.negative_keywords
            if keyword.polarity == POLARITY_NEGATIVE
            else snapshot.positive_keywords
        )
        if any(item.identity == keyword.identity for item in current):
            raise DuplicateKeywordError(f"Keyword '{keyword.word}' already exists")
        if len(current) >= self._keyword_limit:
            raise KeywordLimitError(
                f"At most {self._keyword_limit} {keyword.polarity} keywords are allowed"
            )
        added = self._detached.workspace(
            self._workspace.merge_keywords, user_id, workspace_token, [keyword]
        )
        if not added:
            raise DuplicateKeywordError(f"Keyword '{keyword.word}' already exists")
        return keyword

    def remove_keyword(self, user_id: str, workspace_token: str, polarity: str, word: str) -> bool:
        if not word.strip():
            raise PromptValidationError("Keyword is empty")
        return self._detached.workspace(
            self._workspace.remove_keyword,
            user_id,
            workspace_token,
            normalize_polarity(polarity),
            word,
        )

    def sync_keywords(
        self,
        user_id: str,
        workspace_token: str,
        positive: Sequence[WorkspaceKeyword],
        negative: Sequence[WorkspaceKeyword],
    ) -> None:
        """Replace both keyword lists with the order and weights the editor shows."""
        ordered_positive = dedupe_keywords(
            self._build_keyword(
                item.word, polarity=POLARITY_POSITIVE, weight=item.weight, source=item.source
            )
            for item in positive
        )
        ordered_negative = dedupe_keywords(
            self._build_keyword(
                item.word, polarity=POLARITY_NEGATIVE, weight=item.weight, source=item.source
            )
            for item in negative
        )
        self._enforce_keyword_limit(ordered_positive, ordered_negative)
        self._detached.workspace(
            self._workspace.replace_keywords,
            user_id,
            workspace_token,
            ordered_positive,
            ordered_negative,
        )

    # ------------------------------------------------------------------
    # Draft generation
    # ------------------------------------------------------------------
    def generate_prompt(
        self, user_id: str, workspace_token: str, model_key: str = ""
    ) -> GenerateResult:
        """Draft a prompt body from the workspace and write it back."""
        snapshot = self._load_snapshot(user_id, workspace_token)
        if not snapshot.topic.strip():
            raise PromptValidationError("Workspace has no topic")
        if not snapshot.positive_keywords:
            raise PromptValidationError("At least one positive keyword is required")
        self._enforce_keyword_limit(snapshot.positive_keywords, snapshot.negative_keywords)
        model = self._resolve_model(model_key or snapshot.model_key)
        request = ChatCompletionRequest(
            messages=[
                ChatMessage("system", GENERATION_SYSTEM_PROMPT),
                ChatMessage(
                    "user",
                    build_generation_user_prompt(
                        language=snapshot.language,
                        topic=snapshot.topic,
                        positive=[item.word for item in snapshot.positive_keywords],
                        negative=[item.word for item in snapshot.negative_keywords],
                        instructions=snapshot.instructions,
                        existing_body=snapshot.draft_body,
                    ),
                ),
            ],
        )
        response = self._invoke(user_id, model, request)
        body = response.content.strip()
        try:
            self._detached.workspace(
                self._workspace.update_draft_body, user_id, workspace_token, body
            )
            self._detached.workspace(self._workspace.touch, user_id, workspace_token)
        except (WorkspaceNotFoundError, TransientStoreError, DetachedTimeoutError) as exc:
            logger.warning(
                "Writing generated draft to workspace failed",
                exc_info=exc,
                extra={"user_id": user_id, "workspace_token": workspace_token},
            )
        return GenerateResult(
            body=body,
            model=response.model or model,
            duration_ms=response.duration_ms,
            usage=dict(response.usage),
        )

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------
    def _try_snapshot(self, request: SaveRequest) -> WorkspaceSnapshot | None:
        token = request.workspace_token.strip()
        if not token:
            return None
        try:
            return self._load_snapshot(request.user_id, token)
        except WorkspaceNotFoundError:
            logger.warning(
                "Workspace snapshot expired",
                extra={"user_id": request.user_id, "workspace_token": token},
            )
        except (TransientStoreError, DetachedTimeoutError) as exc:
            logger.warning(
                "Loading workspace snapshot failed",
                exc_info=exc,
                extra={"user_id": request.user_id, "workspace_token": token},
            )
        return None

    def _merge_snapshot(self, request: SaveRequest, snapshot: WorkspaceSnapshot) -> SaveRequest:
        merged = SaveRequest(
            user_id=request.user_id,
            workspace_token=request.workspace_token,
            linked_record_id=request.linked_record_id or snapshot.linked_record_id,
            topic=request.topic.strip() or snapshot.topic,
            body=request.body.strip() or snapshot.draft_body,
            instructions=request.instructions.strip() or snapshot.instructions,
            model=request.model.strip() or snapshot.model_key,
            status=request.status.strip() or snapshot.status,
            publish=request.publish,
            tags=list(request.tags)
            or self._truncate_tags(decode_tags_attribute(snapshot.attributes.get(ATTRIBUTE_TAGS))),
            positive_keywords=list(request.positive_keywords) or list(snapshot.positive_keywords),
            negative_keywords=list(request.negative_keywords) or list(snapshot.negative_keywords),
        )
        return merged

    def save(self, request: SaveRequest) -> SaveResult:
        """Commit synchronously, merging workspace content into blank request fields."""
        if not request.user_id.strip():
            raise PromptValidationError("A user id is required")
        snapshot = self._try_snapshot(request)
        session_expired = snapshot is None and bool(request.workspace_token.strip())
        merged = self._merge_snapshot(request, snapshot) if snapshot else request
        if not merged.topic.strip() or not merged.body.strip():
            if session_expired:
                raise WorkspaceNotFoundError("Workspace expired and no content was supplied")
            raise PromptValidationError("Topic and body are required")
        if merged.publish and not merged.model.strip():
            raise PublishValidationError("Publishing requires a model")
        self._enforce_keyword_limit(merged.positive_keywords, merged.negative_keywords)
        tags = self.normalize_tags(merged.tags)
        instructions = merged.instructions.strip()
        keywords_supplied = snapshot is not None or bool(
            merged.positive_keywords or merged.negative_keywords
        )

        try:
            result = self._committer.commit(
                CommitRequest(
                    user_id=merged.user_id,
                    topic=merged.topic,
                    body=merged.body,
                    instructions=instructions,
                    model=merged.model,
                    status=normalize_status(merged.status, publish=merged.publish),
                    publish=merged.publish,
                    tags=tags,
                    positive_keywords=merged.positive_keywords if keywords_supplied else None,
                    negative_keywords=merged.negative_keywords if keywords_supplied else None,
                    linked_record_id=merged.linked_record_id,
                )
            )
        except RepositoryError as exc:
            raise WorkbenchServiceError(f"Unable to save prompt: {exc}") from exc

        output = SaveResult(
            prompt_id=result.prompt.id,
            status=result.prompt.status,
            created=result.created,
            version_no=result.prompt.latest_version_no,
            session_expired=session_expired,
        )
        if snapshot is not None:
            token = request.workspace_token.strip()
            try:
                self._detached.workspace(
                    self._workspace.set_attributes,
                    request.user_id,
                    token,
                    {
                        ATTRIBUTE_TAGS: encode_tags_attribute(tags),
                        ATTRIBUTE_INSTRUCTIONS: instructions,
                    },
                )
                self._detached.workspace(
                    self._workspace.set_meta,
                    request.user_id,
                    token,
                    result.prompt.id,
                    result.prompt.status,
                )
            except (WorkspaceNotFoundError, TransientStoreError, DetachedTimeoutError) as exc:
                logger.warning(
                    "Workspace write-back after save failed",
                    exc_info=exc,
                    extra={"user_id": request.user_id, "prompt_id": result.prompt.id},
                )
            output.workspace_token = token
        return output

    def enqueue_save(self, request: SaveRequest) -> str:
        """Queue a deferred save and return its task id.

        Blank topic, body, instructions and model are filled from the live
        workspace so the task carries a usable fallback if the session expires
        before the worker reaches it.
        """
        if not request.user_id.strip():
            raise PromptValidationError("A user id is required")
        snapshot = self._try_snapshot(request)
        merged = self._merge_snapshot(request, snapshot) if snapshot else request
        if merged.publish:
            missing = [
                name
                for name, value in (
                    ("topic", merged.topic),
                    ("body", merged.body),
                    ("model", merged.model),
                )
                if not value.strip()
            ]
            if missing:
                raise PublishValidationError(f"Publishing requires {', '.join(missing)}")
        task = PersistenceTask(
            user_id=request.user_id,
            workspace_token=request.workspace_token.strip(),
            linked_record_id=request.linked_record_id,
            status=normalize_status(request.status, publish=request.publish),
            publish=request.publish,
            tags=self.normalize_tags(request.tags),
            topic=merged.topic.strip(),
            body=merged.body.strip(),
            instructions=merged.instructions.strip(),
            model_key=merged.model.strip(),
        )
        task_id = self._detached.workspace(self._queue.enqueue, task)
        logger.info(
            "Persistence task enqueued",
            extra={"task_id": task_id, "user_id": request.user_id, "action": task.action},
        )
        return task_id


__all__ = [
    "DEFAULT_KEYWORD_LIMIT",
    "DEFAULT_TAG_LIMIT",
    "DEFAULT_TAG_MAX_LENGTH",
    "GenerateResult",
    "InterpretResult",
    "SaveRequest",
    "SaveResult",
    "WorkbenchService",
    "decode_tags_attribute",
    "encode_tags_attribute",
    "parse_interpretation_payload",
]
