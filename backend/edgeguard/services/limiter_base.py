"""
EdgeGuard — Abstract Rate Limiter Interface
============================================

What:  Abstract base class for admission control keyed by client.
How:   Concrete strategies inherit from RateLimiter and implement allow().
Who:   Called by RateLimitMiddleware once per request; the active strategy is
       chosen by Pipeline.startup() and never branched on in the request path.

Implementations:
    - DistributedWindowLimiter: sliding window in Redis sorted sets (preferred)
    - LocalTokenBucketLimiter:  per-IP token buckets in process memory (fallback)
"""

from abc import ABC, abstractmethod


class RateLimiter(ABC):
    """
    Contract:
        - allow() returns True to admit and False to reject
        - allow() never raises for store failures; strategies that depend on
          an external store fail open and log a warning
        - retry_after is a static hint in seconds for the Retry-After header;
          it never reveals per-client counters
    """

    name: str = "abstract"

    @property
    @abstractmethod
    def retry_after(self) -> int:
        ...

    @abstractmethod
    async def allow(self, key: str) -> bool:
        """
        Decide whether one request from `key` is admitted.

        Args:
            key: Client identifier, normally the resolved client IP.

        Returns:
            True if the request may proceed, False if it must get a 429.
        """
        ...

    async def start(self) -> None:
        """Start background work (sweepers). Default: nothing to start."""

    async def close(self) -> None:
        """Release resources. Default: nothing to release."""
