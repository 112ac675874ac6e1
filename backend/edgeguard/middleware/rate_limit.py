"""
EdgeGuard — Rate Limiting Middleware (RateLimiter stage)
=========================================================

What:  Per-client admission control.
Why:   One noisy client must not exhaust capacity shared by everyone.
How:   Asks the pipeline's active RateLimiter whether the client may proceed.
       The strategy (distributed sliding window or local token bucket) is
       chosen once at startup; this stage never branches on it.
Who:   Sixth stage, after TimeoutGuard and before TokenAuthenticator, so
       unauthenticated floods are rejected before any signature work.

Client key:
    The resolved client IP (see client_ip.get_client_ip). Requests that
    cannot be attributed share the "unknown" bucket.

Response on rejection:
    HTTP 429 with the standard error envelope and a Retry-After header.
    Retry-After is a static hint from the strategy (the window length, or
    one refill interval); per-client counters are never exposed.

Paths in `rate_limit_exempt_paths` (default: /health) are never limited.
"""

import logging
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from edgeguard.exceptions import RateLimitExceededError
from edgeguard.middleware.client_ip import get_client_ip
from edgeguard.middleware.request_id import get_request_id
from edgeguard.responses import json_error
from edgeguard.utils import path_has_prefix

if TYPE_CHECKING:
    from edgeguard.pipeline import Pipeline

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, pipeline: "Pipeline") -> None:
        super().__init__(app)
        self.pipeline = pipeline
        self.exempt_paths = pipeline.settings.rate_limit_exempt_paths_list
        self.trust_proxy_headers = pipeline.settings.trust_proxy_headers

    def is_exempt(self, path: str) -> bool:
        return any(path_has_prefix(path, exempt) for exempt in self.exempt_paths)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if self.is_exempt(request.url.path):
            return await call_next(request)

        client_ip = get_client_ip(request, self.trust_proxy_headers)
        # Read per request: startup may swap the local limiter for Redis.
        limiter = self.pipeline.limiter

        if await limiter.allow(client_ip):
            return await call_next(request)

        exc = RateLimitExceededError(retry_after=limiter.retry_after)
        rid = get_request_id()
        self.pipeline.metrics.rate_limit_rejected(limiter.name)
        logger.warning(
            "Rate limit exceeded for IP %s",
            client_ip,
            extra={
                "request_id": rid,
                "client_ip": client_ip,
                "path": request.url.path,
                "limiter": limiter.name,
            },
        )
        return json_error(
            exc.status_code,
            exc.message,
            rid,
            headers={"Retry-After": str(exc.retry_after)},
        )
