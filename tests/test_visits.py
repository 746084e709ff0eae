"""Tests for buffered visit counting and the lease-guarded flusher.

Updates:
  v0.3.1 - 2026-10-19 - Cover one flush of many distinct viewers on a single entity.
  v0.3.0 - 2026-10-19 - Cover settle-by-subtraction when visits arrive mid-flush.
  v0.2.0 - 2026-10-19 - Cover flush batching, lease contention, and malformed entries.
  v0.1.0 - 2026-10-19 - Cover viewer dedup and durable fallback.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

import pytest
from pytest import LogCaptureFixture

from core.lease import InMemoryLease
from core.repository import PromptRepository, RepositoryError
from core.visits import (
    MAX_VISIT_DELTA,
    InMemoryVisitBuffer,
    RedisVisitBuffer,
    VisitBuffer,
    VisitFlusher,
    VisitFlushWorker,
    VisitTracker,
)
from models.prompt_record import PromptRecord

from .conftest import FakeRedis, ManualClock

BUFFER_KEY = "test:visits"
LOCK_KEY = "test:visits:lock"


@pytest.fixture(params=["redis", "memory"])
def buffer(
    request: pytest.FixtureRequest, clock: ManualClock, fake_redis: FakeRedis
) -> VisitBuffer:
    if request.param == "redis":
        return RedisVisitBuffer(fake_redis, buffer_key=BUFFER_KEY, guard_prefix="test:guard")
    return InMemoryVisitBuffer(clock=clock)


def _flusher(
    buffer: VisitBuffer,
    counters: object,
    lease: InMemoryLease | None = None,
    *,
    batch_size: int = 128,
) -> VisitFlusher:
    return VisitFlusher(
        buffer,
        counters,  # type: ignore[arg-type]
        lease or InMemoryLease(),
        lock_key=LOCK_KEY,
        batch_size=batch_size,
    )


def test_repeat_viewer_is_counted_once_per_window(
    buffer: VisitBuffer,
    repository: PromptRepository,
    make_prompt: Callable[..., PromptRecord],
    clock: ManualClock,
) -> None:
    """The guard drops repeat visits until it expires; anonymous visits always count."""
    prompt = make_prompt()
    tracker = VisitTracker(buffer, repository, guard_ttl_seconds=60)

    assert tracker.record_visit(prompt.id, "viewer-a") is True
    assert tracker.record_visit(prompt.id, "viewer-a") is False
    assert tracker.record_visit(prompt.id) is True
    assert tracker.pending_delta(prompt.id) == 2

    clock.advance(61)
    assert tracker.record_visit(prompt.id, "viewer-a") is True
    assert tracker.pending_delta(prompt.id) == 3
    assert repository.get_prompt(prompt.id).visit_count == 0


def test_disabled_buffer_increments_durably(
    repository: PromptRepository, make_prompt: Callable[..., PromptRecord]
) -> None:
    """Without a buffer every visit goes straight to the durable counter."""
    prompt = make_prompt()
    tracker = VisitTracker(None, repository)

    assert tracker.record_visit(prompt.id, "viewer-a") is True
    assert tracker.record_visit(prompt.id, "viewer-a") is True

    assert repository.get_prompt(prompt.id).visit_count == 2
    assert tracker.pending_delta(prompt.id) == 0


def test_buffer_outage_falls_back_to_durable_increment(
    fake_redis: FakeRedis,
    repository: PromptRepository,
    make_prompt: Callable[..., PromptRecord],
    caplog: LogCaptureFixture,
) -> None:
    """A fast-store outage never loses the visit."""
    prompt = make_prompt()
    tracker = VisitTracker(RedisVisitBuffer(fake_redis, buffer_key=BUFFER_KEY), repository)
    fake_redis.fail = True

    assert tracker.record_visit(prompt.id, "viewer-a") is True

    assert repository.get_prompt(prompt.id).visit_count == 1
    assert tracker.pending_delta(prompt.id) == 0
    assert "applying durable increment" in caplog.text


def test_flush_moves_pending_visits_into_durable_counter(
    buffer: VisitBuffer,
    repository: PromptRepository,
    make_prompt: Callable[..., PromptRecord],
) -> None:
    """A flush applies the buffered delta and removes the settled entry."""
    prompt = make_prompt()
    for _ in range(3):
        buffer.add(prompt.id)

    report = _flusher(buffer, repository).flush_once()

    assert report.acquired is True
    assert report.applied == 1
    assert report.visits == 3
    assert repository.get_prompt(prompt.id).visit_count == 3
    assert buffer.pending(prompt.id) is None


@pytest.mark.parametrize(("viewers", "already_durable"), [(5, 0), (1, 7), (12, 3)])
def test_distinct_viewers_flush_exactly_once(
    buffer: VisitBuffer,
    repository: PromptRepository,
    make_prompt: Callable[..., PromptRecord],
    viewers: int,
    already_durable: int,
) -> None:
    """Each distinct viewer adds one visit and a single flush moves them all."""
    prompt = make_prompt(id=42, visit_count=already_durable)
    tracker = VisitTracker(buffer, repository, guard_ttl_seconds=60)

    for index in range(viewers):
        assert tracker.record_visit(42, f"viewer-{index}") is True

    report = _flusher(buffer, repository).flush_once()

    assert report.acquired is True
    assert report.visits == viewers
    assert repository.get_prompt(prompt.id).visit_count == already_durable + viewers
    assert buffer.pending(42) is None
    assert tracker.pending_delta(42) == 0


def test_visits_added_during_flush_survive(
    buffer: VisitBuffer,
    repository: PromptRepository,
    make_prompt: Callable[..., PromptRecord],
) -> None:
    """Settling subtracts only the applied delta, keeping concurrent additions."""
    prompt = make_prompt()
    for _ in range(3):
        buffer.add(prompt.id)

    class _RacingCounters:
        def increment_counter(self, prompt_id: int, column: str, delta: int) -> int:
            value = repository.increment_counter(prompt_id, column, delta)
            buffer.add(prompt_id)
            return value

    _flusher(buffer, _RacingCounters()).flush_once()

    assert repository.get_prompt(prompt.id).visit_count == 3
    assert buffer.pending(prompt.id) == "1"


def test_missing_prompt_entries_are_discarded(
    buffer: VisitBuffer, repository: PromptRepository
) -> None:
    """Deltas for prompts that no longer exist are dropped."""
    buffer.add(999, 4)

    report = _flusher(buffer, repository).flush_once()

    assert report.discarded == 1
    assert buffer.pending(999) is None


def test_failed_increment_keeps_entry_for_next_cycle(buffer: VisitBuffer) -> None:
    """A durable write failure leaves the buffered delta untouched."""
    buffer.add(5, 2)

    class _BrokenCounters:
        def increment_counter(self, prompt_id: int, column: str, delta: int) -> int:
            raise RepositoryError("database is locked")

    report = _flusher(buffer, _BrokenCounters()).flush_once()

    assert report.failed == 1
    assert buffer.pending(5) == "2"


def test_malformed_entries_are_skipped(
    repository: PromptRepository,
    make_prompt: Callable[..., PromptRecord],
    fake_redis: FakeRedis,
) -> None:
    """Non-numeric keys or values are logged and left in place."""
    prompt = make_prompt()
    buffer = RedisVisitBuffer(fake_redis, buffer_key=BUFFER_KEY)
    fake_redis.hset(BUFFER_KEY, "not-a-number", "5")
    fake_redis.hset(BUFFER_KEY, str(prompt.id), "lots")

    report = _flusher(buffer, repository).flush_once()

    assert report.malformed == 2
    assert report.applied == 0
    assert repository.get_prompt(prompt.id).visit_count == 0


def test_oversized_delta_is_clamped(
    repository: PromptRepository, make_prompt: Callable[..., PromptRecord]
) -> None:
    """Deltas above the 32-bit range are applied in capped steps."""
    prompt = make_prompt()
    buffer = InMemoryVisitBuffer()
    buffer.put_raw(str(prompt.id), str(MAX_VISIT_DELTA + 10))

    report = _flusher(buffer, repository).flush_once()

    assert report.visits == MAX_VISIT_DELTA
    assert buffer.pending(prompt.id) == "10"


def test_flush_is_skipped_while_lease_is_held(
    buffer: VisitBuffer,
    repository: PromptRepository,
    make_prompt: Callable[..., PromptRecord],
) -> None:
    """Only the lease holder flushes; others return without touching the buffer."""
    prompt = make_prompt()
    buffer.add(prompt.id)
    lease = InMemoryLease()
    lease.acquire(LOCK_KEY, "other-instance", 30)

    report = _flusher(buffer, repository, lease).flush_once()

    assert report.acquired is False
    assert buffer.pending(prompt.id) == "1"
    assert lease.holder(LOCK_KEY) == "other-instance"


def test_flush_releases_lease_afterwards(
    buffer: VisitBuffer, repository: PromptRepository
) -> None:
    """The flusher gives the lease back when it is done."""
    lease = InMemoryLease()

    _flusher(buffer, repository, lease).flush_once()

    assert lease.holder(LOCK_KEY) is None


def test_flush_caps_entries_per_cycle(
    buffer: VisitBuffer,
    repository: PromptRepository,
    make_prompt: Callable[..., PromptRecord],
) -> None:
    """At most ``batch_size`` entries are processed per cycle."""
    prompts = [make_prompt(topic=f"topic {index}") for index in range(3)]
    for prompt in prompts:
        buffer.add(prompt.id)
    flusher = _flusher(buffer, repository, batch_size=2)

    first = flusher.flush_once()
    second = flusher.flush_once()

    assert first.processed == 2
    assert second.processed == 1
    assert [repository.get_prompt(p.id).visit_count for p in prompts] == [1, 1, 1]


def test_flush_worker_runs_until_stopped(
    repository: PromptRepository, make_prompt: Callable[..., PromptRecord]
) -> None:
    """The background loop flushes on its interval and exits on stop."""
    prompt = make_prompt()
    buffer = InMemoryVisitBuffer()
    buffer.add(prompt.id, 2)
    worker = VisitFlushWorker(_flusher(buffer, repository), interval_seconds=0.01)
    stop_event = threading.Event()

    worker.start(stop_event)
    deadline = time.monotonic() + 2.0
    while buffer.pending(prompt.id) is not None and time.monotonic() < deadline:
        time.sleep(0.01)
    stop_event.set()
    worker.join(1.0)

    assert repository.get_prompt(prompt.id).visit_count == 2
    assert worker.is_alive is False
