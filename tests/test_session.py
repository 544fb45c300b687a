"""
Tests for session coordination and TTL caches.

Verifies:
- TTL expiry, hit/miss counting and periodic sweeping
- Concurrent requests for one session share a single computation
- Cached results are served without recomputing
- Degraded results are not cached
- The in-flight entry is released on failure and on requester cancellation
"""

import asyncio

import pytest
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.comparables.models import PropertyRecord
from core.comparables.session import (
    RESULT_CACHE_TTL,
    SessionCoordinator,
    TTLCache,
    intermediate_cache_key,
)


# =============================================================================
# Test Fixtures
# =============================================================================

class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator(clock):
    return SessionCoordinator(clock=clock)


@pytest.fixture
def counting_compute():
    """Factory for a slow compute coroutine that counts its invocations."""
    def _create(result="result", delay=0.01):
        calls = {"count": 0}

        async def compute():
            calls["count"] += 1
            await asyncio.sleep(delay)
            return result

        return compute, calls
    return _create


# =============================================================================
# Test: TTLCache
# =============================================================================

class TestTTLCache:
    """Tests for the in-memory TTL cache."""

    def test_get_and_expire(self, clock):
        cache = TTLCache(60, clock=clock)
        cache.set("k", "v")

        assert cache.get("k") == "v"
        assert "k" in cache

        clock.advance(60)

        assert cache.get("k") is None
        assert "k" not in cache

    def test_hit_rate(self, clock):
        cache = TTLCache(60, name="test", clock=clock)
        cache.set("k", "v")
        cache.get("k")
        cache.get("missing")

        stats = cache.stats()
        assert stats["name"] == "test"
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["size"] == 1

    def test_periodic_sweep(self, clock):
        cache = TTLCache(10, clock=clock)
        cache.set("old", 1)

        clock.advance(400)
        cache.set("new", 2)

        assert list(cache._entries) == ["new"]

    def test_delete_and_clear(self, clock):
        cache = TTLCache(60, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.delete("a") is True
        assert cache.delete("a") is False
        assert len(cache) == 1

        cache.clear()
        assert len(cache) == 0

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValueError):
            TTLCache(0)


# =============================================================================
# Test: Cache Keys
# =============================================================================

class TestIntermediateCacheKey:
    """Tests for the intermediate cache key."""

    def test_stable_for_same_inputs(self):
        subject = PropertyRecord(id="1", reference="R1", sale_price=900_000, bedrooms=4)
        assert intermediate_cache_key("s", subject) == intermediate_cache_key("s", subject)

    def test_changes_with_subject_and_session(self):
        subject = PropertyRecord(id="1", reference="R1", sale_price=900_000, bedrooms=4)
        repriced = PropertyRecord(id="1", reference="R1", sale_price=950_000, bedrooms=4)

        assert intermediate_cache_key("s", subject) != intermediate_cache_key("s", repriced)
        assert intermediate_cache_key("s", subject) != intermediate_cache_key("t", subject)


# =============================================================================
# Test: Single Flight
# =============================================================================

class TestSingleFlight:
    """Tests for one computation per session."""

    def test_concurrent_requests_share_result(self, coordinator, counting_compute):
        compute, calls = counting_compute(result=object())

        async def scenario():
            return await asyncio.gather(
                coordinator.run("s1", compute),
                coordinator.run("s1", compute),
                coordinator.run("s1", compute),
            )

        first, second, third = asyncio.run(scenario())

        assert first is second is third
        assert calls["count"] == 1
        assert coordinator.joined == 2
        assert not coordinator.is_in_flight("s1")

    def test_different_sessions_run_independently(self, coordinator, counting_compute):
        compute, calls = counting_compute()

        async def scenario():
            await asyncio.gather(coordinator.run("s1", compute), coordinator.run("s2", compute))

        asyncio.run(scenario())

        assert calls["count"] == 2

    def test_cached_result_served(self, coordinator, counting_compute):
        compute, calls = counting_compute(result={"status": "complete"})

        first = asyncio.run(coordinator.run("s1", compute))
        second = asyncio.run(coordinator.run("s1", compute))

        assert first is second
        assert calls["count"] == 1
        assert coordinator.cached_result("s1") is first

    def test_result_cache_expires(self, coordinator, clock, counting_compute):
        compute, calls = counting_compute()

        asyncio.run(coordinator.run("s1", compute))
        clock.advance(RESULT_CACHE_TTL + 1)
        asyncio.run(coordinator.run("s1", compute))

        assert calls["count"] == 2

    def test_degraded_result_not_cached(self, coordinator, counting_compute):
        compute, calls = counting_compute(result="degraded")

        asyncio.run(coordinator.run("s1", compute, should_cache=lambda r: False))
        asyncio.run(coordinator.run("s1", compute, should_cache=lambda r: False))

        assert calls["count"] == 2
        assert coordinator.cached_result("s1") is None

    def test_invalidate(self, coordinator, counting_compute):
        compute, calls = counting_compute()
        asyncio.run(coordinator.run("s1", compute))

        assert coordinator.invalidate("s1") is True
        assert coordinator.invalidate("s1") is False

        asyncio.run(coordinator.run("s1", compute))
        assert calls["count"] == 2


# =============================================================================
# Test: Failure & Cancellation
# =============================================================================

class TestLockRelease:
    """Tests that the in-flight entry never leaks."""

    def test_released_on_failure(self, coordinator):
        async def failing():
            await asyncio.sleep(0)
            raise RuntimeError("boom")

        async def scenario():
            return await asyncio.gather(
                coordinator.run("s1", failing),
                coordinator.run("s1", failing),
                return_exceptions=True,
            )

        results = asyncio.run(scenario())

        assert all(isinstance(r, RuntimeError) for r in results)
        assert not coordinator.is_in_flight("s1")
        assert coordinator.cached_result("s1") is None

    def test_retry_after_failure(self, coordinator, counting_compute):
        async def failing():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            asyncio.run(coordinator.run("s1", failing))

        compute, calls = counting_compute()
        assert asyncio.run(coordinator.run("s1", compute)) == "result"
        assert calls["count"] == 1

    def test_cancelled_requester_does_not_cancel_shared_task(self, coordinator):
        async def scenario():
            gate = asyncio.Event()

            async def compute():
                await gate.wait()
                return "done"

            owner = asyncio.ensure_future(coordinator.run("s1", compute))
            await asyncio.sleep(0)
            waiter = asyncio.ensure_future(coordinator.run("s1", compute))
            await asyncio.sleep(0)

            owner.cancel()
            gate.set()
            result = await waiter

            with pytest.raises(asyncio.CancelledError):
                await owner
            return result

        assert asyncio.run(scenario()) == "done"
        assert not coordinator.is_in_flight("s1")
        assert coordinator.cached_result("s1") == "done"
