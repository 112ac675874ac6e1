"""
EdgeGuard — Local Token Bucket Limiter Tests
=============================================

What:  Tests for LocalTokenBucketLimiter, the in-process fallback.
How:   Drives the limiter with a fake clock so refill maths is exact.

What we test:
    ✅ Burst capacity admitted, next request rejected
    ✅ Refill at R tokens/second after the burst
    ✅ Buckets are per client
    ✅ Idle visitors swept, active ones kept
    ✅ Visitor map bounded by max_visitors (least recently seen evicted)
    ✅ Sweeper task lifecycle
"""

import asyncio

import pytest

from edgeguard.services.memory_limiter import LocalTokenBucketLimiter, TokenBucket


class TestTokenBucket:
    def test_starts_full(self):
        bucket = TokenBucket(rate=1.0, capacity=3, now=0.0)
        assert [bucket.take(0.0) for _ in range(4)] == [True, True, True, False]

    def test_refill_never_exceeds_capacity(self):
        bucket = TokenBucket(rate=10.0, capacity=2, now=0.0)
        bucket.take(0.0)
        bucket.take(0.0)
        bucket.take(100.0)
        assert bucket.tokens == pytest.approx(1.0)


class TestLocalTokenBucketLimiter:
    """Admission behavior with R=5/sec and B=10."""

    @pytest.fixture
    def limiter(self, fake_clock):
        return LocalTokenBucketLimiter(rate_per_second=5, burst=10, clock=fake_clock)

    @pytest.mark.asyncio
    async def test_burst_then_reject(self, limiter):
        """A burst of B is admitted in the same instant; the next is rejected."""
        results = [await limiter.allow("10.0.0.1") for _ in range(10)]
        assert all(results)
        assert await limiter.allow("10.0.0.1") is False

    @pytest.mark.asyncio
    async def test_refills_after_one_second(self, limiter, fake_clock):
        for _ in range(11):
            await limiter.allow("10.0.0.1")

        fake_clock.advance(1.0)
        admitted = 0
        for _ in range(10):
            if await limiter.allow("10.0.0.1"):
                admitted += 1
        assert admitted >= 5

    @pytest.mark.asyncio
    async def test_clients_have_separate_buckets(self, limiter):
        for _ in range(10):
            await limiter.allow("10.0.0.1")
        assert await limiter.allow("10.0.0.1") is False
        assert await limiter.allow("10.0.0.2") is True

    def test_retry_after_is_one_refill_interval(self):
        assert LocalTokenBucketLimiter(rate_per_second=5, burst=10).retry_after == 1
        assert LocalTokenBucketLimiter(rate_per_second=0.5, burst=1).retry_after == 2

    def test_rejects_bad_parameters(self):
        with pytest.raises(ValueError):
            LocalTokenBucketLimiter(rate_per_second=0, burst=10)
        with pytest.raises(ValueError):
            LocalTokenBucketLimiter(rate_per_second=5, burst=0)

    def test_from_settings_defaults_burst_to_twice_rate(self, settings_factory):
        limiter = LocalTokenBucketLimiter.from_settings(
            settings_factory(local_rate_per_second=7)
        )
        assert limiter.rate_per_second == 7
        assert limiter.burst == 14


class TestVisitorBounds:
    @pytest.mark.asyncio
    async def test_sweep_removes_only_idle_visitors(self, fake_clock):
        limiter = LocalTokenBucketLimiter(
            rate_per_second=5, burst=10, idle_seconds=900, clock=fake_clock
        )
        await limiter.allow("idle")
        fake_clock.advance(1000)
        await limiter.allow("active")

        assert limiter.sweep() == 1
        assert len(limiter) == 1

    @pytest.mark.asyncio
    async def test_recent_activity_keeps_visitor(self, fake_clock):
        limiter = LocalTokenBucketLimiter(
            rate_per_second=5, burst=10, idle_seconds=900, clock=fake_clock
        )
        await limiter.allow("a")
        fake_clock.advance(800)
        await limiter.allow("a")
        fake_clock.advance(800)

        assert limiter.sweep() == 0
        assert len(limiter) == 1

    @pytest.mark.asyncio
    async def test_capacity_evicts_least_recently_seen(self, fake_clock):
        limiter = LocalTokenBucketLimiter(
            rate_per_second=1, burst=1, max_visitors=2, clock=fake_clock
        )
        await limiter.allow("a")
        await limiter.allow("b")
        await limiter.allow("a")  # "b" is now the oldest
        await limiter.allow("c")

        assert len(limiter) == 2
        assert limiter.evictions == 1
        # "a" kept its (empty) bucket; "b" was evicted and starts full again.
        assert await limiter.allow("a") is False
        assert await limiter.allow("b") is True

    @pytest.mark.asyncio
    async def test_sweeper_task_starts_and_stops(self):
        limiter = LocalTokenBucketLimiter(rate_per_second=5, burst=10, sweep_interval=60)
        await limiter.start()
        sweeper = limiter._sweeper
        assert sweeper is not None and not sweeper.done()

        await limiter.close()
        assert sweeper.cancelled()
        assert limiter._sweeper is None

    @pytest.mark.asyncio
    async def test_sweeper_runs_periodically(self, fake_clock):
        limiter = LocalTokenBucketLimiter(
            rate_per_second=5, burst=10, idle_seconds=10, sweep_interval=0.01, clock=fake_clock
        )
        await limiter.allow("stale")
        fake_clock.advance(60)

        await limiter.start()
        await asyncio.sleep(0.05)
        await limiter.close()

        assert len(limiter) == 0
