"""Pytest configuration for shared test fixtures and environment hooks.

Updates:
  v0.2.1 - 2026-10-19 - Emulate the guarded workspace update script.
  v0.2.0 - 2026-10-19 - Provide an in-process Redis double and repository fixtures.
  v0.1.0 - 2026-10-19 - Isolate settings tests from developer environment variables.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest
import redis

from core.lease import RELEASE_LEASE_SCRIPT
from core.prompt_commit import PromptCommitter
from core.repository import PromptRepository
from core.visits import SETTLE_VISIT_SCRIPT
from core.workspace_store import UPDATE_WORKSPACE_SCRIPT
from models.prompt_record import PromptRecord, PublicPrompt


class ManualClock:
    """Monotonic clock advanced explicitly by tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _FakePipeline:
    def __init__(self, client: FakeRedis) -> None:
        self._client = client
        self._calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []

    def __getattr__(self, name: str) -> Callable[..., _FakePipeline]:
        def _queue(*args: Any, **kwargs: Any) -> _FakePipeline:
            self._calls.append((name, args, kwargs))
            return self

        return _queue

    def execute(self) -> list[Any]:
        self._client._check()
        results = [
            getattr(self._client, name)(*args, **kwargs) for name, args, kwargs in self._calls
        ]
        self._calls.clear()
        return results


class _FakeScript:
    def __init__(self, client: FakeRedis, script: str) -> None:
        self._client = client
        self._script = script

    def __call__(
        self, keys: Sequence[str] | None = None, args: Sequence[Any] | None = None
    ) -> Any:
        self._client._check()
        keys = list(keys or [])
        args = list(args or [])
        if self._script == RELEASE_LEASE_SCRIPT:
            if self._client.get(keys[0]) == str(args[0]):
                return self._client.delete(keys[0])
            return 0
        if self._script == SETTLE_VISIT_SCRIPT:
            remaining = self._client.hincrby(keys[0], str(args[0]), -int(args[1]))
            if remaining <= 0:
                self._client.hdel(keys[0], str(args[0]))
            return remaining
        if self._script == UPDATE_WORKSPACE_SCRIPT:
            if not self._client.exists(keys[0]):
                return 0
            pairs = args[2:]
            if pairs:
                self._client.hset(keys[0], mapping=dict(zip(pairs[::2], pairs[1::2], strict=True)))
            if str(args[1]) == "1":
                self._client.hincrby(keys[0], "version", 1)
            self._client.expire(keys[0], int(args[0]))
            self._client.expire(keys[1], int(args[0]))
            return 1
        raise NotImplementedError("script not emulated by FakeRedis")


class FakeRedis:
    """Single-process stand-in for the redis-py commands the stores use.

    Values are returned as ``str`` to mirror ``decode_responses=True``. Setting
    ``fail`` makes every command raise :class:`redis.ConnectionError`.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or ManualClock()
        self._data: dict[str, Any] = {}
        self._expiry: dict[str, float] = {}
        self.fail = False
        self.closed = False

    # Helpers ---------------------------------------------------------- #

    def _check(self) -> None:
        if self.fail:
            raise redis.ConnectionError("fake redis is down")

    def _purge(self, name: str) -> None:
        expires_at = self._expiry.get(name)
        if expires_at is not None and self._clock() >= expires_at:
            self._data.pop(name, None)
            self._expiry.pop(name, None)

    def _hash(self, name: str, *, create: bool = False) -> dict[str, str]:
        self._purge(name)
        value = self._data.get(name)
        if value is None:
            value = {}
            if create:
                self._data[name] = value
        return value

    def ttl(self, name: str) -> float | None:
        """Seconds until *name* expires, or None when it has no TTL."""
        self._purge(name)
        expires_at = self._expiry.get(name)
        return None if expires_at is None else expires_at - self._clock()

    def keys(self) -> list[str]:
        for name in list(self._data):
            self._purge(name)
        return sorted(self._data)

    # Generic ---------------------------------------------------------- #

    def ping(self) -> bool:
        self._check()
        return True

    def close(self) -> None:
        self.closed = True

    def exists(self, *names: str) -> int:
        self._check()
        count = 0
        for name in names:
            self._purge(name)
            if name in self._data:
                count += 1
        return count

    def expire(self, name: str, time: int) -> bool:
        self._check()
        self._purge(name)
        if name not in self._data:
            return False
        self._expiry[name] = self._clock() + time
        return True

    def delete(self, *names: str) -> int:
        self._check()
        removed = 0
        for name in names:
            self._purge(name)
            if self._data.pop(name, None) is not None:
                removed += 1
            self._expiry.pop(name, None)
        return removed

    # Strings ---------------------------------------------------------- #

    def get(self, name: str) -> str | None:
        self._check()
        self._purge(name)
        value = self._data.get(name)
        return value if isinstance(value, str) else None

    def set(
        self,
        name: str,
        value: Any,
        ex: int | None = None,
        px: int | None = None,
        nx: bool = False,
    ) -> bool | None:
        self._check()
        self._purge(name)
        if nx and name in self._data:
            return None
        self._data[name] = str(value)
        self._expiry.pop(name, None)
        if ex is not None:
            self._expiry[name] = self._clock() + ex
        elif px is not None:
            self._expiry[name] = self._clock() + px / 1000.0
        return True

    # Hashes ----------------------------------------------------------- #

    def hget(self, name: str, key: str) -> str | None:
        self._check()
        return self._hash(name).get(key)

    def hgetall(self, name: str) -> dict[str, str]:
        self._check()
        return dict(self._hash(name))

    def hset(
        self,
        name: str,
        key: str | None = None,
        value: Any = None,
        mapping: Mapping[str, Any] | None = None,
    ) -> int:
        self._check()
        target = self._hash(name, create=True)
        items: dict[str, Any] = dict(mapping or {})
        if key is not None:
            items[key] = value
        added = 0
        for field, field_value in items.items():
            if field not in target:
                added += 1
            target[field] = str(field_value)
        return added

    def hsetnx(self, name: str, key: str, value: Any) -> int:
        self._check()
        target = self._hash(name, create=True)
        if key in target:
            return 0
        target[key] = str(value)
        return 1

    def hincrby(self, name: str, key: str, amount: int = 1) -> int:
        self._check()
        target = self._hash(name, create=True)
        try:
            current = int(target.get(key, "0"))
        except ValueError as exc:
            raise redis.ResponseError("hash value is not an integer") from exc
        current += int(amount)
        target[key] = str(current)
        return current

    def hdel(self, name: str, *keys: str) -> int:
        self._check()
        target = self._hash(name)
        removed = sum(1 for key in keys if target.pop(key, None) is not None)
        if not target:
            self._data.pop(name, None)
            self._expiry.pop(name, None)
        return removed

    def hscan(
        self,
        name: str,
        cursor: int = 0,
        match: str | None = None,
        count: int | None = None,
    ) -> tuple[int, dict[str, str]]:
        self._check()
        items = sorted(self._hash(name).items())
        size = count or 10
        window = items[cursor : cursor + size]
        next_cursor = cursor + len(window)
        return (0 if next_cursor >= len(items) else next_cursor), dict(window)

    # Lists ------------------------------------------------------------ #

    def rpush(self, name: str, *values: Any) -> int:
        self._check()
        self._purge(name)
        target = self._data.setdefault(name, [])
        target.extend(str(value) for value in values)
        return len(target)

    def blpop(self, keys: Sequence[str], timeout: float = 0) -> tuple[str, str] | None:
        self._check()
        for name in keys:
            self._purge(name)
            target = self._data.get(name)
            if target:
                value = target.pop(0)
                if not target:
                    self._data.pop(name, None)
                return name, value
        return None

    def llen(self, name: str) -> int:
        self._purge(name)
        return len(self._data.get(name, []))

    # Batching --------------------------------------------------------- #

    def pipeline(self, transaction: bool = True) -> _FakePipeline:
        return _FakePipeline(self)

    def register_script(self, script: str) -> _FakeScript:
        return _FakeScript(self, script)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer configuration out of settings resolution."""
    for name in list(os.environ):
        if name.startswith("PROMPT_WORKBENCH_"):
            monkeypatch.delenv(name, raising=False)
    for name in ("DB_PATH", "DATABASE_PATH", "REDIS_DSN", "REDIS_URL", "LITELLM_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("LITELLM_API_BASE", raising=False)
    monkeypatch.setenv("PROMPT_WORKBENCH_ENV_FILE", "")


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def fake_redis(clock: ManualClock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def repository(tmp_path: Path) -> PromptRepository:
    return PromptRepository(tmp_path / "prompts.db")


@pytest.fixture
def committer(repository: PromptRepository) -> PromptCommitter:
    return PromptCommitter(repository, version_retention=5)


@pytest.fixture
def make_prompt(repository: PromptRepository) -> Callable[..., PromptRecord]:
    """Return a factory inserting prompt rows directly."""

    def _make(
        *,
        user_id: str = "user-1",
        topic: str = "Release notes",
        body: str = "Summarise the changes.",
        **fields: Any,
    ) -> PromptRecord:
        return repository.create_prompt(
            PromptRecord(user_id=user_id, topic=topic, body=body, **fields)
        )

    return _make


@pytest.fixture
def make_public(repository: PromptRepository) -> Callable[..., PublicPrompt]:
    """Return a factory inserting public listings optionally sourced from a prompt."""

    def _make(prompt: PromptRecord | None = None, **fields: Any) -> PublicPrompt:
        return repository.create_public_prompt(
            PublicPrompt(
                title=prompt.topic if prompt else "Standalone",
                author_user_id=prompt.user_id if prompt else "author",
                source_prompt_id=prompt.id if prompt else None,
                **fields,
            )
        )

    return _make
