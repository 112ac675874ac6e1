"""
EdgeGuard — Request Timeout Middleware (TimeoutGuard)
======================================================

What:  Bounds how long a client waits for a response.
Why:   A slow dependency must not hold a client connection open
       indefinitely.
How:   Runs the rest of the pipeline as its own asyncio task and waits for it
       up to the route's timeout. If the task finishes first, its response
       (or exception) passes through unchanged. If the deadline passes
       first, the guard sends a 408 envelope and returns.
Who:   Fifth stage, inside the security headers and CORS.

Overrun semantics:
    The downstream task is NOT cancelled by default. It keeps running after
    the 408 has been sent ("orphaned request") and may try to write its own
    response. Those late writes are discarded and logged once per request.

    The leak is bounded:
      - orphaned tasks are tracked on the Pipeline; a fault raised by one is
        logged at ERROR
      - once `max_orphaned_requests` orphans are alive, further overruns are
        cancelled instead of orphaned
      - `cancel_on_timeout=true` cancels every overrun
      - Pipeline.shutdown() cancels orphans that are still alive

    Handlers can cooperate with the deadline through time_remaining() and
    deadline_exceeded(), which read request.state.deadline.

    If the downstream already started streaming its response when the
    deadline passes, a 408 can no longer be sent. The guard logs the overrun
    and lets the response complete.

Per-route durations come from `route_timeouts` (longest prefix wins),
falling back to `request_timeout_seconds`.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from edgeguard.exceptions import RequestTimeoutError
from edgeguard.middleware.request_id import get_request_id
from edgeguard.responses import json_error
from edgeguard.utils import path_has_prefix

if TYPE_CHECKING:
    from edgeguard.pipeline import Pipeline

logger = logging.getLogger(__name__)


def time_remaining(request: Request) -> Optional[float]:
    """Seconds left before the request's deadline, or None if no deadline is set."""
    deadline = getattr(request.state, "deadline", None)
    if deadline is None:
        return None
    return deadline - asyncio.get_running_loop().time()


def deadline_exceeded(request: Request) -> bool:
    remaining = time_remaining(request)
    return remaining is not None and remaining <= 0


class _GuardedSend:
    """
    `send` handed to the downstream task.

    Once the guard has replied, `closed` is set and every further message is
    dropped; the first dropped message is logged.
    """

    def __init__(self, send: Send, request_id: str) -> None:
        self._send = send
        self._request_id = request_id
        self.response_started = False
        self.closed = False
        self.late_writes = 0

    async def __call__(self, message: Message) -> None:
        if self.closed:
            self.late_writes += 1
            if self.late_writes == 1:
                logger.warning(
                    "Late write discarded after request timeout",
                    extra={"request_id": self._request_id, "message_type": message["type"]},
                )
            return
        if message["type"] == "http.response.start":
            self.response_started = True
        await self._send(message)


class TimeoutMiddleware:
    def __init__(self, app: ASGIApp, pipeline: "Pipeline") -> None:
        self.app = app
        self.pipeline = pipeline
        settings = pipeline.settings
        self.default_timeout = settings.request_timeout_seconds
        self.route_timeouts = sorted(
            settings.route_timeouts.items(), key=lambda item: len(item[0]), reverse=True
        )
        self.cancel_on_timeout = settings.cancel_on_timeout
        self.max_orphaned_requests = settings.max_orphaned_requests

    def timeout_for(self, path: str) -> float:
        for prefix, seconds in self.route_timeouts:
            if path_has_prefix(path, prefix):
                return seconds
        return self.default_timeout

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        timeout = self.timeout_for(scope.get("path", ""))
        loop = asyncio.get_running_loop()
        scope.setdefault("state", {})["deadline"] = loop.time() + timeout

        rid = get_request_id()
        guarded_send = _GuardedSend(send, rid)
        task = asyncio.create_task(self.app(scope, receive, guarded_send))

        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task in done:
            # Re-raises downstream exceptions for RecoveryMiddleware.
            task.result()
            return

        logger.warning(
            "Request timeout after %.2fs: %s %s",
            timeout,
            scope.get("method"),
            scope.get("path"),
            extra={
                "request_id": rid,
                "timeout_seconds": timeout,
                "method": scope.get("method"),
                "path": scope.get("path"),
            },
        )

        if guarded_send.response_started:
            logger.warning(
                "Response already started before the deadline; waiting for handler to finish",
                extra={"request_id": rid},
            )
            await task
            return

        guarded_send.closed = True
        self._handle_overrun(task, rid)
        self.pipeline.metrics.request_timed_out(scope.get("path", ""))

        exc = RequestTimeoutError(timeout=timeout)
        response = json_error(exc.status_code, exc.message, rid)
        await response(scope, receive, send)

    def _handle_overrun(self, task: "asyncio.Task[None]", request_id: str) -> None:
        at_cap = self.pipeline.orphan_count >= self.max_orphaned_requests
        self.pipeline.track_orphan(task, request_id)
        if not (self.cancel_on_timeout or at_cap):
            return

        if at_cap:
            logger.error(
                "Orphaned request limit reached (%d); cancelling overrun handler",
                self.max_orphaned_requests,
                extra={"request_id": request_id},
            )
        task.cancel()
