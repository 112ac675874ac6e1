"""
EdgeGuard — In-Process Token Bucket Limiter
============================================

What:  Fallback rate limiter used when the shared Redis store is unreachable.
Why:   Losing Redis must degrade enforcement, not availability.
How:   One token bucket per client key. Buckets refill at R tokens/second up
       to a burst capacity B (default 2R); each request takes one token.

Memory bounds:
    - Idle sweep: a background task runs every `sweep_interval` seconds and
      drops visitors not seen for `idle_seconds` (default 15 min).
    - Capacity: the visitor map holds at most `max_visitors` entries; when
      full, the least-recently-seen visitor is evicted to make room.

Locking:
    The visitor map lock is held only for lookup/insert. Each bucket has its
    own lock for the refill-and-take step, so requests from different
    clients never contend on the same lock after the lookup.

The map is ordered by last-seen time (OrderedDict.move_to_end on every hit),
which lets the sweep stop at the first visitor that is still active.
"""

import asyncio
import contextlib
import logging
import math
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

from edgeguard.config import Settings
from edgeguard.services.limiter_base import RateLimiter

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class TokenBucket:
    """A single client's bucket. Starts full."""

    def __init__(self, rate: float, capacity: int, now: float):
        self.rate = rate
        self.capacity = capacity
        self.tokens = float(capacity)
        self.last_refill = now
        self._lock = threading.Lock()

    def take(self, now: float) -> bool:
        with self._lock:
            elapsed = max(0.0, now - self.last_refill)
            self.tokens = min(float(self.capacity), self.tokens + elapsed * self.rate)
            self.last_refill = now
            if self.tokens >= 1.0:
                self.tokens -= 1.0
                return True
            return False


class _Visitor:
    __slots__ = ("bucket", "last_seen")

    def __init__(self, bucket: TokenBucket, last_seen: float):
        self.bucket = bucket
        self.last_seen = last_seen


class LocalTokenBucketLimiter(RateLimiter):
    name = "local_token_bucket"

    def __init__(
        self,
        rate_per_second: float,
        burst: int,
        idle_seconds: float = 900,
        sweep_interval: float = 60,
        max_visitors: int = 100_000,
        clock: Clock = time.monotonic,
    ):
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        self.rate_per_second = rate_per_second
        self.burst = burst
        self.idle_seconds = idle_seconds
        self.sweep_interval = sweep_interval
        self.max_visitors = max_visitors
        self._clock = clock
        self._visitors: "OrderedDict[str, _Visitor]" = OrderedDict()
        self._lock = threading.Lock()
        self._sweeper: Optional["asyncio.Task[None]"] = None
        self.evictions = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocalTokenBucketLimiter":
        return cls(
            rate_per_second=settings.local_rate_per_second,
            burst=settings.local_burst_size,
            idle_seconds=settings.visitor_idle_seconds,
            sweep_interval=settings.visitor_sweep_interval_seconds,
            max_visitors=settings.visitor_max_entries,
        )

    @property
    def retry_after(self) -> int:
        return max(1, math.ceil(1 / self.rate_per_second))

    def __len__(self) -> int:
        return len(self._visitors)

    def _get_bucket(self, key: str, now: float) -> TokenBucket:
        with self._lock:
            visitor = self._visitors.get(key)
            if visitor is None:
                if len(self._visitors) >= self.max_visitors:
                    self._visitors.popitem(last=False)
                    self.evictions += 1
                visitor = _Visitor(TokenBucket(self.rate_per_second, self.burst, now), now)
                self._visitors[key] = visitor
            else:
                visitor.last_seen = now
                self._visitors.move_to_end(key)
            return visitor.bucket

    async def allow(self, key: str) -> bool:
        now = self._clock()
        return self._get_bucket(key, now).take(now)

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop visitors idle for longer than idle_seconds. Returns how many were removed."""
        now = self._clock() if now is None else now
        cutoff = now - self.idle_seconds
        removed = 0
        with self._lock:
            while self._visitors:
                key, visitor = next(iter(self._visitors.items()))
                if visitor.last_seen >= cutoff:
                    break
                del self._visitors[key]
                removed += 1
        return removed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.sweep()
            if removed:
                logger.debug("Swept %d idle rate limit visitors", removed)

    async def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
