"""
EdgeGuard — Pipeline State
===========================

What:  Owns the long-lived state shared by the middleware stages.
Why:   Middleware instances are built before startup runs, so anything
       startup may replace (the limiter) has to live on a shared object.
How:   One Pipeline per app instance, stored on `app.state.pipeline` and
       handed to each stage at construction.

Owned resources:
    - limiter         active RateLimiter strategy (local until startup proves
                      Redis reachable)
    - redis           the Redis client, when the distributed limiter is active
    - token_verifier  TokenVerifier built from the shared secret
    - orphans         handler tasks still running after a 408 was sent
    - metrics         Prometheus collectors on a per-pipeline registry

Lifecycle:
    startup()   select the limiter (Redis with retries, else local fallback)
                and start its background work
    shutdown()  cancel orphans, stop the limiter, close Redis
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from edgeguard.config import Settings
from edgeguard.metrics import PipelineMetrics
from edgeguard.services.limiter_base import RateLimiter
from edgeguard.services.memory_limiter import LocalTokenBucketLimiter
from edgeguard.services.redis_limiter import (
    STORE_ERRORS,
    DistributedWindowLimiter,
    connect_redis,
)
from edgeguard.services.token_service import TokenVerifier

logger = logging.getLogger(__name__)


class Pipeline:
    def __init__(
        self,
        settings: Settings,
        limiter: Optional[RateLimiter] = None,
        token_verifier: Optional[TokenVerifier] = None,
    ):
        self.settings = settings
        # An injected limiter is used as-is; startup() will not replace it.
        self._limiter_injected = limiter is not None
        # Explicit None checks: LocalTokenBucketLimiter defines __len__, so an
        # injected limiter with no visitors yet is falsy.
        self.limiter: RateLimiter = (
            limiter if limiter is not None else LocalTokenBucketLimiter.from_settings(settings)
        )
        self.token_verifier = (
            token_verifier if token_verifier is not None else TokenVerifier.from_settings(settings)
        )
        self.metrics = PipelineMetrics(enabled=settings.metrics_enabled)
        self.metrics.track_orphans(lambda: self.orphan_count)
        self.redis = None
        self.started_at = time.monotonic()
        self._orphans: Dict["asyncio.Task[None]", str] = {}

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self.started_at

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def startup(self) -> None:
        if not self._limiter_injected and self.settings.redis_url:
            try:
                client = await connect_redis(self.settings)
            except STORE_ERRORS as e:
                logger.warning(
                    "Redis unavailable, falling back to in-memory rate limiter: %s",
                    e,
                )
            else:
                self.redis = client
                self.limiter = DistributedWindowLimiter.from_settings(client, self.settings)

        await self.limiter.start()
        logger.info("Rate limiter active: %s", self.limiter.name)

    async def shutdown(self) -> None:
        await self.cancel_orphans()
        await self.limiter.close()
        self.redis = None
        logger.info("Pipeline shut down")

    # ── Orphaned requests ─────────────────────────────────────────────────

    @property
    def orphan_count(self) -> int:
        return len(self._orphans)

    def track_orphan(self, task: "asyncio.Task[None]", request_id: str) -> None:
        self._orphans[task] = request_id
        task.add_done_callback(self._orphan_done)

    def _orphan_done(self, task: "asyncio.Task[None]") -> None:
        rid = self._orphans.pop(task, "unknown")
        if task.cancelled():
            logger.info("Orphaned request cancelled", extra={"request_id": rid})
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Orphaned request failed after timeout: %s",
                exc,
                exc_info=exc,
                extra={"request_id": rid},
            )
            return
        logger.info("Orphaned request finished after timeout", extra={"request_id": rid})

    async def drain_orphans(self, timeout: Optional[float] = None) -> None:
        """Wait for orphaned handlers to finish on their own."""
        tasks = list(self._orphans)
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)

    async def cancel_orphans(self) -> None:
        tasks = list(self._orphans)
        for task in tasks:
            task.cancel()
        if tasks:
            logger.warning("Cancelling %d orphaned request(s)", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Health ────────────────────────────────────────────────────────────

    async def redis_health(self) -> Dict[str, Any]:
        """
        PING the shared store and time it.

        Returns {"status": ...} plus "latency_ms" when the PING succeeded or
        "error" when it failed. Status is one of "disabled", "healthy" or
        "unhealthy"; a store that never connected at startup is "unhealthy".
        The error names the exception type only, never the connection URL.
        """
        if not self.settings.redis_url:
            return {"status": "disabled"}
        if self.redis is None:
            return {"status": "unhealthy", "error": "not connected"}
        started = time.perf_counter()
        try:
            await self.redis.ping()
        except STORE_ERRORS as e:
            return {"status": "unhealthy", "error": type(e).__name__}
        return {
            "status": "healthy",
            "latency_ms": round((time.perf_counter() - started) * 1000, 3),
        }

    async def redis_status(self) -> str:
        """One of "disabled", "connected" or "unavailable"."""
        if not self.settings.redis_url:
            return "disabled"
        if self.redis is None:
            return "unavailable"
        try:
            await self.redis.ping()
        except STORE_ERRORS:
            return "unavailable"
        return "connected"
