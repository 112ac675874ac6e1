"""
EdgeGuard — Token Authentication Middleware (TokenAuthenticator)
=================================================================

What:  Guards the protected route subtree with signed-token verification.
Why:   Handlers under the protected prefixes can trust request.state.user_id
       without repeating token checks.
How:   Extracts the token from the configured transport, verifies it with
       TokenVerifier, and stores the verified subject for the handler.
Who:   Innermost stage, after rate limiting. Requests outside
       `protected_prefixes` pass through untouched.

Transports (AUTH_TRANSPORT):
    cookie   token read from the `jwt_token` cookie (default)
    bearer   token read from `Authorization: Bearer <token>`
    both     Authorization header first; the cookie only if no header is sent

Outcomes (first match wins):
    no token                    → 401 "Authentication required"
    undecodable / missing claim → 401 "Malformed token"
    past expiry                 → 401 "Token has expired"
    bad signature/alg/issuer    → 401 "Invalid token"
    verified                    → principal stored, request continues

The raw token never appears in logs or responses. Nothing is looked up in a
persistent store; the signature is trusted for the request's lifetime.
"""

import logging
from contextvars import ContextVar
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from edgeguard.exceptions import ClientCredentialError
from edgeguard.middleware.request_id import get_request_id
from edgeguard.responses import json_error
from edgeguard.utils import path_has_prefix

if TYPE_CHECKING:
    from edgeguard.pipeline import Pipeline

logger = logging.getLogger(__name__)

# Verified subject for the current request; "" outside protected routes.
principal_var: ContextVar[str] = ContextVar("principal", default="")


async def get_current_principal(request: Request) -> str:
    """
    FastAPI dependency returning the authenticated subject.

    Only meaningful under a protected prefix; elsewhere it raises a 401.
    """
    principal = getattr(request.state, "user_id", None)
    if not principal:
        raise ClientCredentialError(ClientCredentialError.MISSING)
    return principal


class TokenAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, pipeline: "Pipeline") -> None:
        super().__init__(app)
        settings = pipeline.settings
        self.verifier = pipeline.token_verifier
        self.metrics = pipeline.metrics
        self.protected_prefixes = settings.protected_prefixes_list
        self.cookie_name = settings.auth_cookie_name
        self.use_bearer = settings.auth_transport in ("bearer", "both")
        self.use_cookie = settings.auth_transport in ("cookie", "both")

    def is_protected(self, path: str) -> bool:
        return any(path_has_prefix(path, prefix) for prefix in self.protected_prefixes)

    def extract_token(self, request: Request) -> str:
        """Pull the raw token from the configured transport, or raise."""
        if self.use_bearer:
            header = request.headers.get("authorization", "").strip()
            if header:
                scheme, _, value = header.partition(" ")
                value = value.strip()
                if scheme.lower() != "bearer" or not value:
                    raise ClientCredentialError(
                        ClientCredentialError.MALFORMED,
                        context={"error": "unsupported authorization scheme"},
                    )
                return value

        if self.use_cookie:
            cookie = request.cookies.get(self.cookie_name, "").strip()
            if cookie:
                return cookie

        raise ClientCredentialError(ClientCredentialError.MISSING)

    def _unauthorized(self, exc: ClientCredentialError, request: Request) -> Response:
        rid = get_request_id()
        self.metrics.auth_failed(exc.reason)
        logger.warning(
            "Authentication failed (%s) for %s %s",
            exc.reason,
            request.method,
            request.url.path,
            extra={
                "request_id": rid,
                "reason": exc.reason,
                "detail": exc.context.get("error"),
                "path": request.url.path,
            },
        )
        headers = {"WWW-Authenticate": "Bearer"} if self.use_bearer else None
        return json_error(exc.status_code, exc.message, rid, headers=headers)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not self.is_protected(request.url.path):
            return await call_next(request)

        try:
            claims = self.verifier.verify(self.extract_token(request))
        except ClientCredentialError as exc:
            return self._unauthorized(exc, request)

        request.state.user_id = claims.subject
        token = principal_var.set(claims.subject)
        try:
            return await call_next(request)
        finally:
            principal_var.reset(token)
