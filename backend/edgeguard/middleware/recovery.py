"""
EdgeGuard — Recovery Middleware (PanicBarrier)
===============================================

What:  Contains unhandled exceptions raised anywhere downstream.
Why:   An unhandled exception must still end in exactly one well-formed
       response, and the client must never see the raw fault text.
How:   Pure ASGI middleware. Wraps `send` to know whether the response has
       started. On an exception it logs the fault with its stack trace and
       the correlation id, then:
         - response not started → sends one generic 500 envelope
         - response started     → closes the body if still open
       so the response terminates exactly once.
Who:   Second stage, directly inside RequestIDMiddleware (which adds the
       X-Request-ID header to the 500).

The exception text is never written to the client.
"""

import logging

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from edgeguard.middleware.request_id import get_request_id
from edgeguard.responses import json_error

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error"


class RecoveryMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False
        response_finished = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started, response_finished
            if message["type"] == "http.response.start":
                response_started = True
            elif message["type"] == "http.response.body" and not message.get("more_body", False):
                response_finished = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            rid = get_request_id()
            logger.error(
                "Panic recovered: %s %s: %s",
                scope.get("method"),
                scope.get("path"),
                type(exc).__name__,
                exc_info=True,
                extra={
                    "request_id": rid,
                    "method": scope.get("method"),
                    "path": scope.get("path"),
                    "panic": repr(exc),
                },
            )

            if not response_started:
                response = json_error(500, INTERNAL_ERROR_MESSAGE, rid)
                await response(scope, receive, send)
            elif not response_finished:
                await send({"type": "http.response.body", "body": b"", "more_body": False})
