"""
EdgeGuard — Request ID Middleware (CorrelationContext)
=======================================================

What:  Assigns or propagates a correlation id for every request.
Why:   A client reporting a failure can quote one id that matches the
       access line, the error line and any upstream proxy log.
How:   Reads X-Request-ID from the client; if absent or blank, generates a
       UUID4. Stores it in a ContextVar and on request.state, and mirrors it
       onto the response headers before the body is sent.
Who:   Outermost stage of the pipeline. Every later stage and every log line
       reads the id through get_request_id() or RequestIDLogFilter.

The id is immutable once assigned. Outside a request, readers get "unknown".
"""

import logging
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"
UNKNOWN_REQUEST_ID = "unknown"

# ── Context Variable ──────────────────────────────────────────────────────
# Coroutine-local storage for the current request id. Tasks spawned during a
# request (including the TimeoutGuard's downstream task) inherit a copy.
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def get_request_id() -> str:
    """Return the current correlation id, or "unknown" outside a request."""
    return request_id_var.get() or UNKNOWN_REQUEST_ID


def new_request_id() -> str:
    return str(uuid.uuid4())


class RequestIDLogFilter(logging.Filter):
    """
    Stamps `request_id` onto every log record.

    Installed on the root handler by setup_logging() so the format string can
    reference %(request_id)s. Records that already carry a request_id (from
    `extra=`) keep theirs.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = get_request_id()
        return True


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware that assigns a unique ID to each request for tracing.

    Behavior:
        1. Check if client sent X-Request-ID header
        2. If present and non-blank: use it unchanged (end-to-end tracing)
        3. If absent: generate a new UUID4
        4. Store in ContextVar for loggers and later middleware
        5. Store in request.state for route handlers
        6. Add to response headers for the client to capture

    Never fails and never blocks.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get(REQUEST_ID_HEADER, "").strip() or new_request_id()

        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = rid
        return response
