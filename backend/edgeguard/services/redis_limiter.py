"""
EdgeGuard — Distributed Sliding Window Limiter
===============================================

What:  Preferred rate limiter, shared by every worker and instance.
Why:   Per-process buckets multiply the effective limit by the number of
       workers; a shared store enforces one limit across all of them.
How:   One Redis sorted set per client (`rate_limit:<client>`), one member
       per request scored by its timestamp. Each check runs a single
       MULTI/EXEC pipeline:

           ZREMRANGEBYSCORE key -inf (now - window)   prune old entries
           ZCARD            key                       count before insert
           ZADD             key now <member>          record this request
           EXPIRE           key grace                 drop abandoned clients

       The request is admitted when the pre-insertion count is below the
       limit, so exactly `limit` requests pass per window.

Atomicity:
    The four commands execute as one transaction, so two concurrent requests
    from the same client can never both read a stale count.

Failure policy:
    Any Redis or socket error → fail open (admit and log a warning). Store
    outages never produce a 429 or a 500.

Members are "<timestamp>-<random hex>", so simultaneous requests are stored
as distinct entries. Rejected requests are recorded too.
"""

import asyncio
import logging
import secrets
import time
from typing import Any, Callable

import redis.asyncio as redis
from redis.exceptions import RedisError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from edgeguard.config import Settings
from edgeguard.exceptions import UpstreamStoreError
from edgeguard.services.limiter_base import RateLimiter

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

STORE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


async def connect_redis(settings: Settings) -> "redis.Redis":
    """
    Open a Redis client and confirm it answers PING.

    Retries with exponential backoff + jitter (tenacity) up to
    `redis_connect_attempts` times. Raises the last connection error if
    every attempt fails; the caller decides whether to fall back.
    """
    client = redis.from_url(
        settings.redis_url,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
        decode_responses=True,
    )
    retrying = AsyncRetrying(
        stop=stop_after_attempt(settings.redis_connect_attempts),
        wait=wait_exponential_jitter(multiplier=0.5, max=5),
        retry=retry_if_exception_type(STORE_ERRORS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                await client.ping()
    except STORE_ERRORS:
        await client.aclose()
        raise
    return client


class DistributedWindowLimiter(RateLimiter):
    name = "distributed_window"

    KEY_PREFIX = "rate_limit:"

    def __init__(
        self,
        client: Any,
        limit: int,
        window_seconds: int = 60,
        grace_seconds: int = 120,
        clock: Clock = time.time,
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._client = client
        self.limit = limit
        self.window_seconds = window_seconds
        self.grace_seconds = grace_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, client: Any, settings: Settings) -> "DistributedWindowLimiter":
        return cls(
            client,
            limit=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
            grace_seconds=settings.rate_limit_window_grace_seconds,
        )

    @property
    def retry_after(self) -> int:
        return self.window_seconds

    async def _record(self, key: str, now: float) -> int:
        """Run the window transaction and return the pre-insertion count."""
        redis_key = f"{self.KEY_PREFIX}{key}"
        member = f"{now:.6f}-{secrets.token_hex(4)}"

        pipe = self._client.pipeline(transaction=True)
        pipe.zremrangebyscore(redis_key, "-inf", now - self.window_seconds)
        pipe.zcard(redis_key)
        pipe.zadd(redis_key, {member: now})
        pipe.expire(redis_key, self.grace_seconds)
        try:
            results = await pipe.execute()
        except STORE_ERRORS as e:
            raise UpstreamStoreError(context={"key": redis_key, "error": repr(e)}) from e
        return int(results[1])

    async def allow(self, key: str) -> bool:
        try:
            count = await self._record(key, self._clock())
        except UpstreamStoreError as exc:
            logger.warning(
                "Redis rate limiter failed, allowing request: %s",
                exc.context.get("error"),
                extra={"client_key": key},
            )
            return True
        return count < self.limit

    async def ping(self) -> bool:
        try:
            await self._client.ping()
        except STORE_ERRORS:
            return False
        return True

    async def close(self) -> None:
        await self._client.aclose()
