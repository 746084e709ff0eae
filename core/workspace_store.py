"""Ephemeral workspace session store backed by Redis or process memory.

A workspace holds the in-progress state of one editing session (topic,
keywords, draft body) so that request handlers never write to SQLite on every
keystroke. Entries expire after a sliding TTL; durable writes happen later via
the persistence queue.

Updates:
  v0.3.1 - 2026-10-19 - Guard session writes with a script so expired sessions are not revived.
  v0.3.0 - 2026-10-19 - Add ordered keyword replacement and single keyword removal.
  v0.2.0 - 2026-10-19 - Merge keywords with HSETNX so concurrent merges form a union.
  v0.1.0 - 2026-10-19 - Introduce Redis and in-memory workspace stores.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

import redis

from models.workspace import (
    POLARITY_NEGATIVE,
    WorkspaceKeyword,
    WorkspaceSnapshot,
    dedupe_keywords,
    normalize_polarity,
    split_by_polarity,
)

from .backends import decode_value
from .exceptions import TransientStoreError, WorkspaceNotFoundError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence

    from .backends import RedisClientProtocol, RedisScriptProtocol, RedisValue

logger = logging.getLogger("prompt_workbench.workspace")

DEFAULT_WORKSPACE_TTL_SECONDS = 45 * 60
DEFAULT_WORKSPACE_PREFIX = "prompt:workspace"

_FIELD_TOPIC = "topic"
_FIELD_LANGUAGE = "language"
_FIELD_MODEL_KEY = "model_key"
_FIELD_DRAFT_BODY = "draft_body"
_FIELD_VERSION = "version"
_FIELD_UPDATED_AT = "updated_at"
_FIELD_LINKED_ID = "prompt_id"
_FIELD_STATUS = "status"
_ATTRIBUTE_PREFIX = "attr:"

# Writes to an existing session only: the base hash must still exist, otherwise
# nothing is written and 0 is returned. ARGV: ttl, version bump flag, then
# field/value pairs for the base hash.
UPDATE_WORKSPACE_SCRIPT = """
if redis.call("EXISTS", KEYS[1]) == 0 then
    return 0
end
if #ARGV > 2 then
    redis.call("HSET", KEYS[1], unpack(ARGV, 3))
end
if ARGV[2] == "1" then
    redis.call("HINCRBY", KEYS[1], "version", 1)
end
redis.call("EXPIRE", KEYS[1], ARGV[1])
redis.call("EXPIRE", KEYS[2], ARGV[1])
return 1
"""


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _ordered_keywords(
    positive: Sequence[WorkspaceKeyword],
    negative: Sequence[WorkspaceKeyword],
) -> list[WorkspaceKeyword]:
    rebuilt = [
        WorkspaceKeyword.build(item.word, source=item.source, weight=item.weight)
        for item in positive
    ]
    rebuilt.extend(
        WorkspaceKeyword.build(
            item.word, source=item.source, polarity=POLARITY_NEGATIVE, weight=item.weight
        )
        for item in negative
    )
    return dedupe_keywords(rebuilt)


def _sort_keywords(keywords: Iterable[WorkspaceKeyword]) -> list[WorkspaceKeyword]:
    return sorted(
        keywords,
        key=lambda item: (item.position if item.position is not None else float("inf")),
    )


class WorkspaceStore(Protocol):
    """Capability interface for short-lived editing sessions."""

    def create_or_replace(self, owner_id: str, snapshot: WorkspaceSnapshot) -> str: ...

    def merge_keywords(
        self, owner_id: str, token: str, items: Sequence[WorkspaceKeyword]
    ) -> int: ...

    def replace_keywords(
        self,
        owner_id: str,
        token: str,
        positive: Sequence[WorkspaceKeyword],
        negative: Sequence[WorkspaceKeyword],
    ) -> None: ...

    def remove_keyword(self, owner_id: str, token: str, polarity: str, word: str) -> bool: ...

    def update_draft_body(self, owner_id: str, token: str, body: str) -> None: ...

    def set_attributes(self, owner_id: str, token: str, attributes: Mapping[str, str]) -> None: ...

    def touch(self, owner_id: str, token: str) -> None: ...

    def snapshot(self, owner_id: str, token: str) -> WorkspaceSnapshot: ...

    def set_meta(self, owner_id: str, token: str, linked_record_id: int, status: str) -> None: ...

    def get_meta(self, owner_id: str, token: str) -> tuple[int, str]: ...

    def delete(self, owner_id: str, token: str) -> bool: ...


@contextmanager
def _redis_errors(action: str) -> Iterator[None]:
    try:
        yield
    except redis.RedisError as exc:
        raise TransientStoreError(f"Failed to {action} workspace in Redis") from exc


class RedisWorkspaceStore:
    """Workspace store keeping each session in two Redis hashes.

    ``{prefix}:{owner}:{token}`` holds scalar fields and attributes while
    ``{prefix}:{owner}:{token}:keywords`` maps ``polarity|word`` to a JSON
    keyword payload. Both keys share the same TTL.
    """

    def __init__(
        self,
        client: RedisClientProtocol,
        *,
        ttl_seconds: int = DEFAULT_WORKSPACE_TTL_SECONDS,
        key_prefix: str = DEFAULT_WORKSPACE_PREFIX,
    ) -> None:
        self._client = client
        self._ttl_seconds = max(1, int(ttl_seconds))
        self._prefix = key_prefix.rstrip(":") or DEFAULT_WORKSPACE_PREFIX
        self._update_script: RedisScriptProtocol = client.register_script(
            UPDATE_WORKSPACE_SCRIPT
        )

    def _base_key(self, owner_id: str, token: str) -> str:
        return f"{self._prefix}:{owner_id}:{token}"

    def _keywords_key(self, owner_id: str, token: str) -> str:
        return f"{self._base_key(owner_id, token)}:keywords"

    def _require(self, owner_id: str, token: str) -> tuple[str, str]:
        base_key = self._base_key(owner_id, token)
        if not token or not self._client.exists(base_key):
            raise WorkspaceNotFoundError(f"Workspace {token!r} not found for owner {owner_id!r}")
        return base_key, self._keywords_key(owner_id, token)

    @staticmethod
    def _keyword_mapping(keywords: Sequence[WorkspaceKeyword], start: float) -> dict[str, str]:
        mapping: dict[str, str] = {}
        for offset, keyword in enumerate(keywords):
            if keyword.position is None:
                keyword = replace(keyword, position=start + offset)
            mapping[keyword.field_name] = json.dumps(keyword.to_payload(), ensure_ascii=False)
        return mapping

    def _write_existing(
        self,
        owner_id: str,
        token: str,
        fields: Mapping[str, RedisValue | int] | None = None,
        *,
        bump_version: bool = False,
    ) -> None:
        """Update the base hash and refresh both TTLs, failing if the session expired."""
        base_key = self._base_key(owner_id, token)
        keywords_key = self._keywords_key(owner_id, token)
        args: list[RedisValue | int] = [self._ttl_seconds, 1 if bump_version else 0]
        for name, value in (fields or {}).items():
            args.extend((name, value))
        written = self._update_script(keys=[base_key, keywords_key], args=args)
        if int(decode_value(written) or 0) == 0:
            # Keyword writes racing the expiry must not outlive the session.
            self._client.delete(keywords_key)
            raise WorkspaceNotFoundError(f"Workspace {token!r} expired for owner {owner_id!r}")

    def create_or_replace(self, owner_id: str, snapshot: WorkspaceSnapshot) -> str:
        """Store *snapshot* and return its token, replacing any prior content."""
        token = snapshot.token.strip() or uuid.uuid4().hex
        base_key = self._base_key(owner_id, token)
        keywords_key = self._keywords_key(owner_id, token)
        keywords = dedupe_keywords([*snapshot.positive_keywords, *snapshot.negative_keywords])
        fields: dict[str, RedisValue | int] = {
            _FIELD_TOPIC: snapshot.topic,
            _FIELD_LANGUAGE: snapshot.language,
            _FIELD_MODEL_KEY: snapshot.model_key,
            _FIELD_DRAFT_BODY: snapshot.draft_body,
            _FIELD_VERSION: max(1, snapshot.version),
            _FIELD_UPDATED_AT: _utc_now().isoformat(),
            _FIELD_LINKED_ID: snapshot.linked_record_id,
            _FIELD_STATUS: snapshot.status,
        }
        for name, value in snapshot.attributes.items():
            fields[f"{_ATTRIBUTE_PREFIX}{name}"] = value
        with _redis_errors("create"):
            pipe = self._client.pipeline(transaction=True)
            pipe.delete(base_key, keywords_key)
            pipe.hset(base_key, mapping=fields)
            if keywords:
                pipe.hset(keywords_key, mapping=self._keyword_mapping(keywords, 0.0))
                pipe.expire(keywords_key, self._ttl_seconds)
            pipe.expire(base_key, self._ttl_seconds)
            pipe.execute()
        logger.debug(
            "Workspace stored",
            extra={"owner_id": owner_id, "workspace_token": token, "keywords": len(keywords)},
        )
        return token

    def merge_keywords(self, owner_id: str, token: str, items: Sequence[WorkspaceKeyword]) -> int:
        """Add keywords not yet present and return how many were inserted."""
        with _redis_errors("merge keywords into"):
            _, keywords_key = self._require(owner_id, token)
            candidates = dedupe_keywords(items)
            added = 0
            if candidates:
                # Microsecond clock keeps appended keywords after existing ones.
                start = time.time() * 1_000_000
                mapping = self._keyword_mapping(candidates, start)
                pipe = self._client.pipeline(transaction=True)
                for field_name, payload in mapping.items():
                    pipe.hsetnx(keywords_key, field_name, payload)
                added = sum(1 for result in pipe.execute() if int(result or 0) > 0)
            self._write_existing(
                owner_id,
                token,
                {_FIELD_UPDATED_AT: _utc_now().isoformat()} if added else None,
                bump_version=added > 0,
            )
        return added

    def replace_keywords(
        self,
        owner_id: str,
        token: str,
        positive: Sequence[WorkspaceKeyword],
        negative: Sequence[WorkspaceKeyword],
    ) -> None:
        """Replace both keyword lists, keeping the supplied order."""
        ordered = _ordered_keywords(positive, negative)
        with _redis_errors("replace keywords in"):
            _, keywords_key = self._require(owner_id, token)
            pipe = self._client.pipeline(transaction=True)
            pipe.delete(keywords_key)
            if ordered:
                pipe.hset(keywords_key, mapping=self._keyword_mapping(ordered, 0.0))
            pipe.execute()
            self._write_existing(
                owner_id, token, {_FIELD_UPDATED_AT: _utc_now().isoformat()}, bump_version=True
            )

    def remove_keyword(self, owner_id: str, token: str, polarity: str, word: str) -> bool:
        """Remove a keyword by case-insensitive word; returns True when removed."""
        field_name = f"{normalize_polarity(polarity)}|{word.strip().lower()}"
        with _redis_errors("remove keyword from"):
            _, keywords_key = self._require(owner_id, token)
            removed = int(self._client.hdel(keywords_key, field_name) or 0) > 0
            self._write_existing(
                owner_id,
                token,
                {_FIELD_UPDATED_AT: _utc_now().isoformat()} if removed else None,
                bump_version=removed,
            )
        return removed

    def update_draft_body(self, owner_id: str, token: str, body: str) -> None:
        with _redis_errors("update draft body of"):
            self._require(owner_id, token)
            self._write_existing(
                owner_id,
                token,
                {_FIELD_DRAFT_BODY: body, _FIELD_UPDATED_AT: _utc_now().isoformat()},
            )

    def set_attributes(self, owner_id: str, token: str, attributes: Mapping[str, str]) -> None:
        if not attributes:
            self.touch(owner_id, token)
            return
        mapping: dict[str, RedisValue | int] = {
            f"{_ATTRIBUTE_PREFIX}{name}": str(value) for name, value in attributes.items()
        }
        with _redis_errors("set attributes on"):
            self._require(owner_id, token)
            self._write_existing(owner_id, token, mapping)

    def touch(self, owner_id: str, token: str) -> None:
        """Refresh the TTL without modifying content."""
        with _redis_errors("touch"):
            self._require(owner_id, token)
            self._write_existing(owner_id, token)

    def snapshot(self, owner_id: str, token: str) -> WorkspaceSnapshot:
        """Return the current session state."""
        base_key = self._base_key(owner_id, token)
        with _redis_errors("read"):
            raw_fields = self._client.hgetall(base_key) if token else {}
            if not raw_fields:
                raise WorkspaceNotFoundError(
                    f"Workspace {token!r} not found for owner {owner_id!r}"
                )
            raw_keywords = self._client.hgetall(self._keywords_key(owner_id, token))
        fields = {
            decode_value(key) or "": decode_value(value) or "" for key, value in raw_fields.items()
        }
        keywords: list[WorkspaceKeyword] = []
        for raw_value in raw_keywords.values():
            text = decode_value(raw_value)
            try:
                payload = json.loads(text or "")
            except json.JSONDecodeError:
                logger.warning(
                    "Skipping undecodable workspace keyword",
                    extra={"owner_id": owner_id, "workspace_token": token},
                )
                continue
            if isinstance(payload, dict):
                keyword = WorkspaceKeyword.from_payload(payload)
                if keyword.word:
                    keywords.append(keyword)
        positive, negative = split_by_polarity(_sort_keywords(keywords))
        attributes = {
            name.removeprefix(_ATTRIBUTE_PREFIX): value
            for name, value in fields.items()
            if name.startswith(_ATTRIBUTE_PREFIX)
        }
        return WorkspaceSnapshot(
            token=token,
            owner_id=owner_id,
            topic=fields.get(_FIELD_TOPIC, ""),
            language=fields.get(_FIELD_LANGUAGE, ""),
            model_key=fields.get(_FIELD_MODEL_KEY, ""),
            draft_body=fields.get(_FIELD_DRAFT_BODY, ""),
            positive_keywords=positive,
            negative_keywords=negative,
            linked_record_id=_as_int(fields.get(_FIELD_LINKED_ID)),
            status=fields.get(_FIELD_STATUS, ""),
            version=max(1, _as_int(fields.get(_FIELD_VERSION))),
            updated_at=_parse_timestamp(fields.get(_FIELD_UPDATED_AT)),
            attributes=attributes,
        )

    def set_meta(self, owner_id: str, token: str, linked_record_id: int, status: str) -> None:
        """Record the durable prompt id and status produced by a commit."""
        with _redis_errors("set meta on"):
            self._require(owner_id, token)
            self._write_existing(
                owner_id, token, {_FIELD_LINKED_ID: linked_record_id, _FIELD_STATUS: status}
            )

    def get_meta(self, owner_id: str, token: str) -> tuple[int, str]:
        with _redis_errors("read meta of"):
            base_key, _ = self._require(owner_id, token)
            linked = decode_value(self._client.hget(base_key, _FIELD_LINKED_ID))
            status = decode_value(self._client.hget(base_key, _FIELD_STATUS))
        return _as_int(linked), status or ""

    def delete(self, owner_id: str, token: str) -> bool:
        with _redis_errors("delete"):
            removed = self._client.delete(
                self._base_key(owner_id, token), self._keywords_key(owner_id, token)
            )
        return int(removed or 0) > 0


def _as_int(value: str | None) -> int:
    try:
        return int(value or 0)
    except ValueError:
        return 0


def _parse_timestamp(value: str | None) -> datetime:
    if not value:
        return _utc_now()
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return _utc_now()
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class InMemoryWorkspaceStore:
    """Single-process workspace store with the same TTL semantics as Redis."""

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_WORKSPACE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_seconds = max(1, int(ttl_seconds))
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, str], tuple[WorkspaceSnapshot, float]] = {}
        self._next_position = 0.0

    def _live(self, owner_id: str, token: str) -> WorkspaceSnapshot:
        key = (owner_id, token)
        entry = self._entries.get(key)
        if entry is None:
            raise WorkspaceNotFoundError(f"Workspace {token!r} not found for owner {owner_id!r}")
        snapshot, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            raise WorkspaceNotFoundError(f"Workspace {token!r} expired for owner {owner_id!r}")
        return snapshot

    def _store(self, snapshot: WorkspaceSnapshot) -> None:
        expires_at = self._clock() + self._ttl_seconds
        self._entries[(snapshot.owner_id, snapshot.token)] = (snapshot, expires_at)

    def _assign_positions(self, keywords: Sequence[WorkspaceKeyword]) -> None:
        for keyword in keywords:
            if keyword.position is None:
                keyword.position = self._next_position
            self._next_position = max(self._next_position, keyword.position) + 1

    def create_or_replace(self, owner_id: str, snapshot: WorkspaceSnapshot) -> str:
        token = snapshot.token.strip() or uuid.uuid4().hex
        stored = snapshot.copy()
        keywords = dedupe_keywords([*stored.positive_keywords, *stored.negative_keywords])
        with self._lock:
            self._assign_positions(keywords)
            stored.positive_keywords, stored.negative_keywords = split_by_polarity(keywords)
            stored.token = token
            stored.owner_id = owner_id
            stored.version = max(1, stored.version)
            stored.updated_at = _utc_now()
            self._store(stored)
        return token

    def merge_keywords(self, owner_id: str, token: str, items: Sequence[WorkspaceKeyword]) -> int:
        with self._lock:
            current = self._live(owner_id, token)
            additions = dedupe_keywords(
                [WorkspaceKeyword.from_payload(item.to_payload()) for item in items],
                existing=current.keywords,
            )
            self._assign_positions(additions)
            positive, negative = split_by_polarity(additions)
            current.positive_keywords.extend(positive)
            current.negative_keywords.extend(negative)
            if additions:
                current.version += 1
                current.updated_at = _utc_now()
            self._store(current)
            return len(additions)

    def replace_keywords(
        self,
        owner_id: str,
        token: str,
        positive: Sequence[WorkspaceKeyword],
        negative: Sequence[WorkspaceKeyword],
    ) -> None:
        ordered = _ordered_keywords(positive, negative)
        with self._lock:
            current = self._live(owner_id, token)
            self._assign_positions(ordered)
            current.positive_keywords, current.negative_keywords = split_by_polarity(ordered)
            current.version += 1
            current.updated_at = _utc_now()
            self._store(current)

    def remove_keyword(self, owner_id: str, token: str, polarity: str, word: str) -> bool:
        identity = (normalize_polarity(polarity), word.strip().lower())
        with self._lock:
            current = self._live(owner_id, token)
            before = len(current.keywords)
            current.positive_keywords = [
                item for item in current.positive_keywords if item.identity != identity
            ]
            current.negative_keywords = [
                item for item in current.negative_keywords if item.identity != identity
            ]
            removed = len(current.keywords) < before
            if removed:
                current.version += 1
                current.updated_at = _utc_now()
            self._store(current)
            return removed

    def update_draft_body(self, owner_id: str, token: str, body: str) -> None:
        with self._lock:
            current = self._live(owner_id, token)
            current.draft_body = body
            current.updated_at = _utc_now()
            self._store(current)

    def set_attributes(self, owner_id: str, token: str, attributes: Mapping[str, str]) -> None:
        with self._lock:
            current = self._live(owner_id, token)
            current.attributes.update({name: str(value) for name, value in attributes.items()})
            self._store(current)

    def touch(self, owner_id: str, token: str) -> None:
        with self._lock:
            self._store(self._live(owner_id, token))

    def snapshot(self, owner_id: str, token: str) -> WorkspaceSnapshot:
        with self._lock:
            return self._live(owner_id, token).copy()

    def set_meta(self, owner_id: str, token: str, linked_record_id: int, status: str) -> None:
        with self._lock:
            current = self._live(owner_id, token)
            current.linked_record_id = linked_record_id
            current.status = status
            self._store(current)

    def get_meta(self, owner_id: str, token: str) -> tuple[int, str]:
        with self._lock:
            current = self._live(owner_id, token)
            return current.linked_record_id, current.status

    def delete(self, owner_id: str, token: str) -> bool:
        with self._lock:
            return self._entries.pop((owner_id, token), None) is not None


__all__ = [
    "DEFAULT_WORKSPACE_PREFIX",
    "DEFAULT_WORKSPACE_TTL_SECONDS",
    "InMemoryWorkspaceStore",
    "RedisWorkspaceStore",
    "WorkspaceStore",
]
