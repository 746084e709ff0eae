"""Workspace session models shared by the fast store and the workbench service.

Updates:
  v0.2.0 - 2026-10-19 - Add keyword ordering positions and attribute helpers.
  v0.1.0 - 2026-10-19 - Introduce workspace keyword and snapshot dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

POLARITY_POSITIVE = "positive"
POLARITY_NEGATIVE = "negative"

KEYWORD_SOURCE_MODEL = "model"
KEYWORD_SOURCE_MANUAL = "manual"
KEYWORD_SOURCE_LOCAL = "local"
_KEYWORD_SOURCES = {KEYWORD_SOURCE_MODEL, KEYWORD_SOURCE_MANUAL, KEYWORD_SOURCE_LOCAL}

DEFAULT_KEYWORD_WEIGHT = 5
MAX_KEYWORD_WEIGHT = 5
DEFAULT_KEYWORD_MAX_LENGTH = 32

ATTRIBUTE_INSTRUCTIONS = "instructions"
ATTRIBUTE_TAGS = "tags"


def _utc_now() -> datetime:
    return datetime.now(UTC)


def normalize_polarity(value: str | None) -> str:
    """Return ``negative`` for case-insensitive matches, otherwise ``positive``."""
    if value is not None and value.strip().lower() == POLARITY_NEGATIVE:
        return POLARITY_NEGATIVE
    return POLARITY_POSITIVE


def clamp_weight(value: Any) -> int:
    """Coerce *value* into the 0..5 weight range, defaulting to the maximum."""
    if value is None or value == "":
        return DEFAULT_KEYWORD_WEIGHT
    try:
        weight = int(value)
    except (TypeError, ValueError):
        return DEFAULT_KEYWORD_WEIGHT
    return max(0, min(MAX_KEYWORD_WEIGHT, weight))


def _normalize_source(value: str | None) -> str:
    source = (value or "").strip().lower()
    return source if source in _KEYWORD_SOURCES else KEYWORD_SOURCE_MANUAL


@dataclass(slots=True)
class WorkspaceKeyword:
    """Keyword held in a workspace session."""

    word: str
    source: str = KEYWORD_SOURCE_MANUAL
    polarity: str = POLARITY_POSITIVE
    weight: int = DEFAULT_KEYWORD_WEIGHT
    position: float | None = None

    @classmethod
    def build(
        cls,
        word: str,
        *,
        source: str | None = None,
        polarity: str | None = None,
        weight: Any = None,
        position: float | None = None,
        max_length: int = DEFAULT_KEYWORD_MAX_LENGTH,
    ) -> WorkspaceKeyword:
        """Return a normalised keyword (trimmed, clamped, polarity defaulted)."""
        text = (word or "").strip()
        if max_length > 0 and len(text) > max_length:
            text = text[:max_length].rstrip()
        return cls(
            word=text,
            source=_normalize_source(source),
            polarity=normalize_polarity(polarity),
            weight=clamp_weight(weight),
            position=position,
        )

    @property
    def identity(self) -> tuple[str, str]:
        """Case-insensitive identity used for deduplication."""
        return (normalize_polarity(self.polarity), self.word.strip().lower())

    @property
    def field_name(self) -> str:
        """Hash field name used by key-value stores."""
        polarity, lowered = self.identity
        return f"{polarity}|{lowered}"

    def to_payload(self) -> dict[str, Any]:
        return {
            "word": self.word,
            "source": self.source,
            "polarity": normalize_polarity(self.polarity),
            "weight": self.weight,
            "position": self.position,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> WorkspaceKeyword:
        raw_position = payload.get("position")
        position = float(raw_position) if isinstance(raw_position, int | float) else None
        return cls(
            word=str(payload.get("word", "")).strip(),
            source=_normalize_source(payload.get("source")),
            polarity=normalize_polarity(payload.get("polarity")),
            weight=clamp_weight(payload.get("weight")),
            position=position,
        )


def dedupe_keywords(
    keywords: Iterable[WorkspaceKeyword],
    *,
    existing: Iterable[WorkspaceKeyword] = (),
) -> list[WorkspaceKeyword]:
    """Return *keywords* without blanks or identities already seen (first wins)."""
    seen = {item.identity for item in existing}
    result: list[WorkspaceKeyword] = []
    for keyword in keywords:
        if not keyword.word:
            continue
        identity = keyword.identity
        if identity in seen:
            continue
        seen.add(identity)
        result.append(keyword)
    return result


def split_by_polarity(
    keywords: Iterable[WorkspaceKeyword],
) -> tuple[list[WorkspaceKeyword], list[WorkspaceKeyword]]:
    """Split *keywords* into positive and negative lists preserving order."""
    positive: list[WorkspaceKeyword] = []
    negative: list[WorkspaceKeyword] = []
    for keyword in keywords:
        if normalize_polarity(keyword.polarity) == POLARITY_NEGATIVE:
            negative.append(keyword)
        else:
            positive.append(keyword)
    return positive, negative


@dataclass(slots=True)
class WorkspaceSnapshot:
    """Point-in-time view of an in-progress editing session."""

    token: str = ""
    owner_id: str = ""
    topic: str = ""
    language: str = ""
    model_key: str = ""
    draft_body: str = ""
    positive_keywords: list[WorkspaceKeyword] = field(default_factory=list)
    negative_keywords: list[WorkspaceKeyword] = field(default_factory=list)
    linked_record_id: int = 0
    status: str = ""
    version: int = 1
    updated_at: datetime = field(default_factory=_utc_now)
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def keywords(self) -> list[WorkspaceKeyword]:
        return [*self.positive_keywords, *self.negative_keywords]

    @property
    def instructions(self) -> str:
        return self.attributes.get(ATTRIBUTE_INSTRUCTIONS, "")

    def copy(self) -> WorkspaceSnapshot:
        """Return a deep-enough copy that callers can mutate safely."""
        return replace(
            self,
            positive_keywords=[replace(item) for item in self.positive_keywords],
            negative_keywords=[replace(item) for item in self.negative_keywords],
            attributes=dict(self.attributes),
        )


__all__ = [
    "ATTRIBUTE_INSTRUCTIONS",
    "ATTRIBUTE_TAGS",
    "DEFAULT_KEYWORD_MAX_LENGTH",
    "DEFAULT_KEYWORD_WEIGHT",
    "KEYWORD_SOURCE_LOCAL",
    "KEYWORD_SOURCE_MANUAL",
    "KEYWORD_SOURCE_MODEL",
    "MAX_KEYWORD_WEIGHT",
    "POLARITY_NEGATIVE",
    "POLARITY_POSITIVE",
    "WorkspaceKeyword",
    "WorkspaceSnapshot",
    "clamp_weight",
    "dedupe_keywords",
    "normalize_polarity",
    "split_by_polarity",
]
