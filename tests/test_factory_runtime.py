"""Tests for runtime wiring, Redis fallback, and background worker hosting.

Updates:
  v0.2.0 - 2026-10-19 - Cover WorkerHost lifecycle and logging setup fallbacks.
  v0.1.0 - 2026-10-19 - Cover backend selection from settings.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from pathlib import Path

import pytest
import redis
from pytest import LogCaptureFixture, MonkeyPatch

from config import WorkbenchSettings, load_settings
from core import backends
from core.factory import build_runtime, build_score_weights
from core.lease import InMemoryLease, RedisLease
from core.persistence_queue import InMemoryPersistenceQueue, RedisPersistenceQueue
from core.runtime import WorkerHost, configure_litellm_logging, setup_logging
from core.visits import InMemoryVisitBuffer, RedisVisitBuffer
from core.workspace_store import InMemoryWorkspaceStore, RedisWorkspaceStore

from .conftest import FakeRedis


class _NoopInvoker:
    def invoke(self, user_id: str, model_key: str, request: object) -> object:
        raise AssertionError("not expected to be called")


class _RecordingWorker:
    def __init__(self) -> None:
        self.started_with: threading.Event | None = None
        self.joined = False

    def start(self, stop_event: threading.Event) -> None:
        self.started_with = stop_event

    def join(self, timeout: float | None = 2.0) -> None:
        self.joined = True


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    level, handlers = root.level, list(root.handlers)
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _settings(tmp_path: Path, **overrides: object) -> WorkbenchSettings:
    return load_settings(db_path=tmp_path / "runtime.db", **overrides)


def test_runtime_without_redis_uses_in_process_stores(tmp_path: Path) -> None:
    """An unset DSN selects in-memory backends and records why."""
    runtime = build_runtime(_settings(tmp_path), invoker=_NoopInvoker())
    try:
        assert isinstance(runtime.workspace, InMemoryWorkspaceStore)
        assert isinstance(runtime.queue, InMemoryPersistenceQueue)
        assert isinstance(runtime.lease, InMemoryLease)
        assert isinstance(runtime.visit_buffer, InMemoryVisitBuffer)
        assert runtime.flush_worker is not None
        assert runtime.refresh_worker is not None
        assert runtime.redis_client is None
        assert runtime.degraded_reason is not None
        assert runtime.repository.db_path == tmp_path / "runtime.db"
    finally:
        runtime.close()


def test_runtime_with_redis_client_uses_redis_stores(
    tmp_path: Path, fake_redis: FakeRedis
) -> None:
    """A supplied client backs every fast-store collaborator."""
    runtime = build_runtime(_settings(tmp_path), redis_client=fake_redis, invoker=_NoopInvoker())

    assert isinstance(runtime.workspace, RedisWorkspaceStore)
    assert isinstance(runtime.queue, RedisPersistenceQueue)
    assert isinstance(runtime.lease, RedisLease)
    assert isinstance(runtime.visit_buffer, RedisVisitBuffer)
    assert runtime.degraded_reason is None
    runtime.close()
    assert fake_redis.closed is True


def test_disabled_features_skip_their_workers(tmp_path: Path) -> None:
    """Turning off buffering or refresh leaves the matching worker unset."""
    runtime = build_runtime(
        _settings(tmp_path, visit_buffer_enabled=False, score_refresh_enabled=False),
        invoker=_NoopInvoker(),
    )
    try:
        assert runtime.visit_buffer is None
        assert runtime.flush_worker is None
        assert runtime.refresh_worker is None
    finally:
        runtime.close()


def test_unreachable_redis_falls_back(tmp_path: Path, monkeypatch: MonkeyPatch) -> None:
    """A DSN whose server refuses PING degrades to in-process stores."""

    class _DownClient:
        def ping(self) -> bool:
            raise redis.ConnectionError("connection refused")

    monkeypatch.setattr(backends.redis.Redis, "from_url", lambda *a, **k: _DownClient())

    runtime = build_runtime(
        _settings(tmp_path, redis_dsn="redis://localhost:6390/0"), invoker=_NoopInvoker()
    )
    try:
        assert isinstance(runtime.workspace, InMemoryWorkspaceStore)
        assert runtime.degraded_reason is not None
        assert "connection refused" in runtime.degraded_reason
    finally:
        runtime.close()


def test_score_weights_follow_settings(tmp_path: Path) -> None:
    """Score weights are copied from settings."""
    weights = build_score_weights(
        _settings(tmp_path, score_like_weight=7.0, score_recency_half_life_hours=12.0)
    )

    assert weights.like == pytest.approx(7.0)
    assert weights.half_life_hours == pytest.approx(12.0)


def test_worker_host_shares_one_stop_event() -> None:
    """All workers start on the same event and are joined on stop."""
    workers = [_RecordingWorker(), _RecordingWorker()]
    host = WorkerHost([workers[0], None, workers[1]])

    host.start()
    host.start()
    assert all(worker.started_with is host.stop_event for worker in workers)
    assert host.wait(0) is False

    host.stop()

    assert host.wait(0) is True
    assert all(worker.joined for worker in workers)
    assert len(host.workers) == 2


def test_setup_logging_reads_file_config(tmp_path: Path, restore_root_logger: None) -> None:
    """A valid fileConfig document configures the named loggers."""
    conf = tmp_path / "logging.conf"
    conf.write_text(
        "[loggers]\nkeys=root,workbench\n\n"
        "[handlers]\nkeys=null\n\n"
        "[formatters]\nkeys=\n\n"
        "[logger_root]\nlevel=WARNING\nhandlers=null\n\n"
        "[logger_workbench]\nlevel=DEBUG\nhandlers=null\nqualname=prompt_workbench.test\n\n"
        "[handler_null]\nclass=NullHandler\nargs=()\n",
        encoding="utf-8",
    )

    setup_logging(conf)

    assert logging.getLogger("prompt_workbench.test").level == logging.DEBUG


def test_setup_logging_warns_on_broken_config(
    tmp_path: Path, caplog: LogCaptureFixture, restore_root_logger: None
) -> None:
    """An unreadable logging config falls back to basicConfig with a warning."""
    conf = tmp_path / "logging.conf"
    conf.write_text("[loggers]\nkeys=missing\n", encoding="utf-8")
    caplog.set_level(logging.WARNING, logger="prompt_workbench.runtime")

    setup_logging(conf)

    assert "Invalid logging config" in caplog.text


def test_configure_litellm_logging_toggles_loggers() -> None:
    """LiteLLM loggers are silenced unless explicitly enabled."""
    configure_litellm_logging(False)
    assert logging.getLogger("litellm").disabled is True

    configure_litellm_logging(True)
    assert logging.getLogger("litellm").disabled is False
