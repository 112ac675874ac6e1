"""
EdgeGuard — Test Configuration (conftest.py)
=============================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy (all function-scoped):
    ├── settings_factory: build_settings(**overrides)
    ├── test_settings: isolated Settings (no .env, Redis disabled)
    ├── fake_redis: in-memory sorted-set double for the distributed limiter
    ├── fake_clock: manually advanced clock for bucket/window tests
    ├── token_factory: signs test tokens with PyJWT
    ├── app: create_app() built from test_settings
    └── test_client: HTTPX AsyncClient bound to `app`
"""

import os
import time
from typing import Any, Dict, List, Optional, Tuple

import jwt
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from redis.exceptions import ConnectionError as RedisConnectionError

# Keep the import-time default Settings away from a developer's .env values.
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("REDIS_URL", "")

from edgeguard.config import Settings  # noqa: E402
from edgeguard.main import create_app  # noqa: E402

TEST_SECRET = "test-secret-that-is-at-least-32-characters"
OTHER_SECRET = "another-secret-that-is-also-32-characters-long"


# ══════════════════════════════════════════════════════════════════════════
# Test Doubles
# ══════════════════════════════════════════════════════════════════════════

class FakeClock:
    """Callable clock whose time only moves when a test says so."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedisPipeline:
    """Queues commands and applies them in order on execute(), like MULTI/EXEC."""

    def __init__(self, store: "FakeRedis"):
        self._store = store
        self._ops: List[Tuple[str, tuple]] = []

    def zremrangebyscore(self, key: str, min_score: Any, max_score: Any):
        self._ops.append(("zremrangebyscore", (key, float(min_score), float(max_score))))
        return self

    def zcard(self, key: str):
        self._ops.append(("zcard", (key,)))
        return self

    def zadd(self, key: str, mapping: Dict[str, float]):
        self._ops.append(("zadd", (key, dict(mapping))))
        return self

    def expire(self, key: str, seconds: int):
        self._ops.append(("expire", (key, seconds)))
        return self

    async def execute(self) -> list:
        if self._store.fail:
            raise RedisConnectionError("Connection refused")
        self._store.transactions += 1
        results = []
        for name, args in self._ops:
            results.append(getattr(self._store, f"_{name}")(*args))
        self._ops = []
        return results


class FakeRedis:
    """
    Just enough of redis.asyncio.Redis for DistributedWindowLimiter.

    Set `fail = True` to simulate an unreachable store.
    """

    def __init__(self):
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.ttls: Dict[str, int] = {}
        self.fail = False
        self.closed = False
        self.transactions = 0

    def pipeline(self, transaction: bool = True) -> FakeRedisPipeline:
        return FakeRedisPipeline(self)

    async def ping(self) -> bool:
        if self.fail:
            raise RedisConnectionError("Connection refused")
        return True

    async def aclose(self) -> None:
        self.closed = True

    def _zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        zset = self.zsets.get(key, {})
        doomed = [m for m, s in zset.items() if min_score <= s <= max_score]
        for member in doomed:
            del zset[member]
        return len(doomed)

    def _zcard(self, key: str) -> int:
        return len(self.zsets.get(key, {}))

    def _zadd(self, key: str, mapping: Dict[str, float]) -> int:
        zset = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update(mapping)
        return added

    def _expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return key in self.zsets


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════

def build_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "app_secret": TEST_SECRET,
        "redis_url": "",
        "log_level": "WARNING",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings_factory():
    """Build Settings with test defaults plus per-test overrides."""
    return build_settings


@pytest.fixture
def test_settings() -> Settings:
    """Settings with a valid secret and Redis disabled."""
    return build_settings()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token_factory():
    """
    Returns a function that signs a token.

    Usage:
        token = token_factory(sub="alice", expires_in=-10)   # already expired
        token = token_factory(secret=OTHER_SECRET)           # wrong key
    """

    def _make(
        sub: Optional[str] = "user-123",
        expires_in: Optional[int] = 3600,
        secret: str = TEST_SECRET,
        algorithm: str = "HS256",
        **claims: Any,
    ) -> str:
        now = int(time.time())
        payload: Dict[str, Any] = {"iat": now}
        if sub is not None:
            payload["sub"] = sub
        if expires_in is not None:
            payload["exp"] = now + expires_in
        payload.update(claims)
        return jwt.encode(payload, secret, algorithm=algorithm)

    return _make


@pytest.fixture
def app(test_settings):
    return create_app(test_settings)


@pytest_asyncio.fixture
async def test_client(app):
    """
    Provides an async HTTP test client for endpoint testing.

    ASGITransport does not run the lifespan; tests that need startup call
    `app.state.pipeline.startup()` or enter `app.router.lifespan_context`.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
