"""Durable prompt, version, and public listing data models.

Updates: v0.3.0 - 2026-10-19 - Add score candidates joining public entries with prompt counters.
Updates: v0.2.0 - 2026-10-19 - Add prompt version rows and public prompt listings.
Updates: v0.1.0 - 2026-10-19 - Initial PromptRecord schema with serialization helpers.
"""
from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .persistence_task import PromptStatus
from .workspace import WorkspaceKeyword


def _utc_now() -> datetime:
    """Return an aware UTC timestamp."""
    return datetime.now(UTC)


def _ensure_datetime(value: Any) -> datetime:
    """Parse incoming datetime values (isoformat strings or datetime)."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if value is None or value == "":
        return _utc_now()
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _optional_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    return _ensure_datetime(value)


def serialize_keywords(items: Iterable[WorkspaceKeyword]) -> str:
    """Serialize keywords to the JSON blob stored on prompt rows."""
    payload = [
        {"word": item.word, "source": item.source, "weight": item.weight} for item in items
    ]
    return json.dumps(payload, ensure_ascii=False)


def deserialize_keywords(value: Any, polarity: str) -> list[WorkspaceKeyword]:
    """Hydrate keyword blobs, tolerating legacy plain-string lists."""
    if value is None or value in ("", "null"):
        return []
    parsed: Any = value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
    if not isinstance(parsed, list):
        return []
    keywords: list[WorkspaceKeyword] = []
    for entry in parsed:
        if isinstance(entry, Mapping):
            keywords.append(
                WorkspaceKeyword.build(
                    str(entry.get("word", "")),
                    source=entry.get("source"),
                    polarity=polarity,
                    weight=entry.get("weight"),
                )
            )
        elif isinstance(entry, str):
            keywords.append(WorkspaceKeyword.build(entry, polarity=polarity))
    return [item for item in keywords if item.word]


def _deserialize_tags(value: Any) -> list[str]:
    if value is None or value in ("", "null"):
        return []
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return [value]
        if isinstance(parsed, list):
            return [str(item) for item in parsed]
        return [str(parsed)]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return [str(value)]


@dataclass(slots=True)
class PromptRecord:
    """Durable prompt owned by a user."""

    user_id: str
    topic: str
    body: str = ""
    instructions: str = ""
    model: str = ""
    status: str = PromptStatus.DRAFT.value
    positive_keywords: list[WorkspaceKeyword] = field(default_factory=list)
    negative_keywords: list[WorkspaceKeyword] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    published_at: datetime | None = None
    latest_version_no: int = 0
    like_count: int = 0
    visit_count: int = 0
    id: int = 0
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    @property
    def is_published(self) -> bool:
        return self.status == PromptStatus.PUBLISHED.value

    def to_record(self) -> dict[str, Any]:
        """Return a column mapping suitable for SQLite persistence."""
        return {
            "id": self.id or None,
            "user_id": self.user_id,
            "topic": self.topic,
            "body": self.body,
            "instructions": self.instructions,
            "model": self.model,
            "status": self.status,
            "positive_keywords": serialize_keywords(self.positive_keywords),
            "negative_keywords": serialize_keywords(self.negative_keywords),
            "tags": json.dumps(list(self.tags), ensure_ascii=False),
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "latest_version_no": self.latest_version_no,
            "like_count": self.like_count,
            "visit_count": self.visit_count,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> PromptRecord:
        """Create a PromptRecord from a SQLite row or mapping."""
        return cls(
            id=int(data["id"]),
            user_id=str(data["user_id"]),
            topic=str(data["topic"]),
            body=str(data["body"] or ""),
            instructions=str(data["instructions"] or ""),
            model=str(data["model"] or ""),
            status=str(data["status"] or PromptStatus.DRAFT.value),
            positive_keywords=deserialize_keywords(data["positive_keywords"], "positive"),
            negative_keywords=deserialize_keywords(data["negative_keywords"], "negative"),
            tags=_deserialize_tags(data["tags"]),
            published_at=_optional_datetime(data["published_at"]),
            latest_version_no=int(data["latest_version_no"] or 0),
            like_count=int(data["like_count"] or 0),
            visit_count=int(data["visit_count"] or 0),
            created_at=_ensure_datetime(data["created_at"]),
            updated_at=_ensure_datetime(data["updated_at"]),
        )


@dataclass(slots=True)
class PromptVersion:
    """Immutable snapshot of a prompt recorded on publish."""

    prompt_id: int
    version_no: int
    body: str
    instructions: str = ""
    model: str = ""
    positive_keywords: list[WorkspaceKeyword] = field(default_factory=list)
    negative_keywords: list[WorkspaceKeyword] = field(default_factory=list)
    id: int = 0
    created_at: datetime = field(default_factory=_utc_now)

    @classmethod
    def from_prompt(cls, prompt: PromptRecord) -> PromptVersion:
        return cls(
            prompt_id=prompt.id,
            version_no=prompt.latest_version_no,
            body=prompt.body,
            instructions=prompt.instructions,
            model=prompt.model,
            positive_keywords=list(prompt.positive_keywords),
            negative_keywords=list(prompt.negative_keywords),
        )

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> PromptVersion:
        return cls(
            id=int(data["id"]),
            prompt_id=int(data["prompt_id"]),
            version_no=int(data["version_no"]),
            body=str(data["body"] or ""),
            instructions=str(data["instructions"] or ""),
            model=str(data["model"] or ""),
            positive_keywords=deserialize_keywords(data["positive_keywords"], "positive"),
            negative_keywords=deserialize_keywords(data["negative_keywords"], "negative"),
            created_at=_ensure_datetime(data["created_at"]),
        )


@dataclass(slots=True)
class PublicPrompt:
    """Publicly shared listing derived from a durable prompt."""

    title: str
    author_user_id: str
    source_prompt_id: int | None = None
    status: str = "approved"
    download_count: int = 0
    quality_score: float = 0.0
    id: int = 0
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> PublicPrompt:
        source = data["source_prompt_id"]
        return cls(
            id=int(data["id"]),
            title=str(data["title"]),
            author_user_id=str(data["author_user_id"]),
            source_prompt_id=int(source) if source is not None else None,
            status=str(data["status"] or "approved"),
            download_count=int(data["download_count"] or 0),
            quality_score=float(data["quality_score"] or 0.0),
            created_at=_ensure_datetime(data["created_at"]),
            updated_at=_ensure_datetime(data["updated_at"]),
        )


@dataclass(slots=True, frozen=True)
class ScoreCandidate:
    """Counters required to score a public entry.

    ``prompt_id`` is the source prompt whose buffered visits count towards the
    entry; it is ``None`` for listings without a source prompt.
    """

    public_id: int
    prompt_id: int | None
    downloads: int
    likes: int
    visits: int
    updated_at: datetime | None

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> ScoreCandidate:
        source = data["prompt_id"]
        return cls(
            public_id=int(data["public_id"]),
            prompt_id=int(source) if source is not None else None,
            downloads=int(data["downloads"] or 0),
            likes=int(data["likes"] or 0),
            visits=int(data["visits"] or 0),
            updated_at=_optional_datetime(data["updated_at"]),
        )


__all__ = [
    "PromptRecord",
    "PromptVersion",
    "PublicPrompt",
    "ScoreCandidate",
    "deserialize_keywords",
    "serialize_keywords",
]
