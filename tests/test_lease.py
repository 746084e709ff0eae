"""Tests for advisory single-owner leases.

Updates:
  v0.1.0 - 2026-10-19 - Cover exclusive acquire, owner-checked release, and expiry.
"""

from __future__ import annotations

import pytest

from core.lease import InMemoryLease, Lease, RedisLease

from .conftest import FakeRedis, ManualClock


@pytest.fixture(params=["redis", "memory"])
def lease(request: pytest.FixtureRequest, clock: ManualClock, fake_redis: FakeRedis) -> Lease:
    if request.param == "redis":
        return RedisLease(fake_redis)
    return InMemoryLease(clock=clock)


def test_second_owner_cannot_acquire(lease: Lease) -> None:
    """Only one owner holds a lease at a time."""
    assert lease.acquire("flush", "a", 10) is True
    assert lease.acquire("flush", "b", 10) is False


def test_release_requires_current_owner(lease: Lease) -> None:
    """A non-owner release is a no-op; the owner release frees the lease."""
    lease.acquire("flush", "a", 10)

    assert lease.release("flush", "b") is False
    assert lease.acquire("flush", "b", 10) is False
    assert lease.release("flush", "a") is True
    assert lease.acquire("flush", "b", 10) is True


def test_lease_expires_after_ttl(lease: Lease, clock: ManualClock) -> None:
    """An abandoned lease becomes available once its TTL passes."""
    lease.acquire("flush", "a", 10)

    clock.advance(10.5)

    assert lease.acquire("flush", "b", 10) is True
    assert lease.release("flush", "a") is False


def test_redis_lease_outage_counts_as_not_acquired(fake_redis: FakeRedis) -> None:
    """Store errors never raise from acquire or release."""
    lease = RedisLease(fake_redis)
    fake_redis.fail = True

    assert lease.acquire("flush", "a", 10) is False
    assert lease.release("flush", "a") is False


def test_in_memory_lease_reports_holder(clock: ManualClock) -> None:
    """The in-process lease exposes its live holder."""
    lease = InMemoryLease(clock=clock)
    lease.acquire("flush", "a", 5)

    assert lease.holder("flush") == "a"
    clock.advance(6)
    assert lease.holder("flush") is None
