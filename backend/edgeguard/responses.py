"""
EdgeGuard — JSON Error Envelope
================================

Every rejection the pipeline produces (401, 408, 429, 500) uses the same body:

    {"success": false, "error": "<message>", "request_id": "<id>"}

Middlewares cannot rely on FastAPI's exception handlers (they sit outside the
router), so they build the response directly with json_error().
"""

from typing import Mapping, Optional

from starlette.responses import JSONResponse

from edgeguard.schemas.common import ErrorResponse


def error_body(message: str, request_id: str) -> dict:
    return ErrorResponse(error=message, request_id=request_id).model_dump()


def json_error(
    status_code: int,
    message: str,
    request_id: str,
    headers: Optional[Mapping[str, str]] = None,
) -> JSONResponse:
    """Build the standard error envelope as a Starlette response."""
    return JSONResponse(
        status_code=status_code,
        content=error_body(message, request_id),
        headers=dict(headers) if headers else None,
    )
