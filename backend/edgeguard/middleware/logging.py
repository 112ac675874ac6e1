"""
EdgeGuard — Access Logging Middleware (AccessLogger)
=====================================================

What:  One structured log line and one metrics observation per HTTP request.
Why:   Status, latency and size per request are what operators alert
       on; uvicorn's own access log lacks the correlation id.
How:   Pure ASGI middleware. Records the start time, observes the final status
       and response size through a wrapped `send`, and logs once the
       downstream returns (or raises).
Who:   Third stage, inside RecoveryMiddleware.

Log Fields (passed via `extra=`):
    request_id, method, path, query, status, duration_ms, client_ip,
    user_agent, request_size, response_size

Level:
    status >= 500 → ERROR
    status >= 400 → WARNING
    otherwise     → INFO

If the downstream raises, the line is logged with status 500 and the
exception continues to RecoveryMiddleware. A failure inside the logging call
itself is reported on stderr and never affects the response.

Request bodies and credential headers are never logged.

Paths in `access_log_skip_paths` and the metrics endpoint itself are neither
logged nor counted.
"""

import logging
import sys
import time
import traceback
from typing import TYPE_CHECKING

from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from edgeguard.middleware.client_ip import get_client_ip
from edgeguard.middleware.request_id import get_request_id

if TYPE_CHECKING:
    from edgeguard.pipeline import Pipeline

logger = logging.getLogger("edgeguard.access")


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


def _request_size(conn: HTTPConnection) -> int:
    try:
        return int(conn.headers.get("content-length", "0"))
    except ValueError:
        return 0


class RequestLoggingMiddleware:
    """
    Logs structured information about each HTTP request and response.

    Duration is measured with time.perf_counter() from middleware entry until
    the downstream returns, so it includes every inner stage (timeout guard,
    rate limiter, authentication) and the handler.
    """

    def __init__(self, app: ASGIApp, pipeline: "Pipeline") -> None:
        self.app = app
        self.trust_proxy_headers = pipeline.settings.trust_proxy_headers
        self.skip_paths = set(pipeline.settings.access_log_skip_paths_list)
        self.metrics = pipeline.metrics
        # Scrapes are neither logged nor counted.
        self.skip_paths.add(pipeline.settings.metrics_path)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope.get("path") in self.skip_paths:
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        status = 500
        response_size = 0

        async def send_wrapper(message: Message) -> None:
            nonlocal status, response_size
            if message["type"] == "http.response.start":
                status = message["status"]
            elif message["type"] == "http.response.body":
                response_size += len(message.get("body", b""))
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration = time.perf_counter() - start_time
            try:
                self.metrics.observe_request(
                    scope.get("method", ""), scope.get("path", ""), status, duration, response_size
                )
                self._log(scope, status, duration * 1000, response_size)
            except Exception:
                traceback.print_exc(file=sys.stderr)

    def _log(self, scope: Scope, status: int, duration_ms: float, response_size: int) -> None:
        conn = HTTPConnection(scope)
        rid = get_request_id()
        method = scope.get("method", "")
        path = scope.get("path", "")
        client_ip = get_client_ip(conn, self.trust_proxy_headers)

        logger.log(
            level_for_status(status),
            "%s %s %d %.1fms [%s] from %s",
            method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": method,
                "path": path,
                "query": scope.get("query_string", b"").decode("latin-1"),
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
                "user_agent": conn.headers.get("user-agent", ""),
                "request_size": _request_size(conn),
                "response_size": response_size,
            },
        )
