"""
EdgeGuard — Custom Exception Hierarchy
=======================================

What:  Application-specific exceptions for the pipeline's rejection and fault paths.
Why:   Rejections carry their status and public message with them, so the
       code that renders them stays generic.
How:   Each exception carries a public message, an HTTP status and an optional
       context dict. The context is logged, never returned to the client.
Who:   Raised by services (token verification, limiters) and route handlers;
       rendered by middleware or by the handler registered in main.py.

Exception Hierarchy:
    EdgeGuardError (base)          → 500 Internal Server Error
    ├── ClientCredentialError      → 401 Unauthorized (missing/malformed/expired/invalid)
    ├── RateLimitExceededError     → 429 Too Many Requests
    ├── RequestTimeoutError        → 408 Request Timeout
    └── UpstreamStoreError         → never surfaced; limiters fail open on it

Only ClientCredentialError and RateLimitExceededError are expected
control-flow outcomes. Everything else is an operational fault that gets
logged with the correlation id.
"""

from typing import Any, Dict, Optional


class EdgeGuardError(Exception):
    """
    Base exception for all EdgeGuard errors.

    Attributes:
        message:      User-facing error description (safe to return in API response)
        context:      Additional debug info (logged but NOT returned to client)
        status_code:  HTTP status used when the error reaches the client
    """

    status_code = 500

    def __init__(
        self,
        message: str = "Internal server error",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ClientCredentialError(EdgeGuardError):
    """
    Raised when a request to a protected route carries no usable credential.

    HTTP:    401 Unauthorized
    Reasons (one per rejection, checked in this order):
        missing    no token in the configured transport
        malformed  token present but not a decodable signed token
        expired    token decoded but its expiry has passed
        invalid    signature, algorithm or issuer check failed

    The raw token is never stored on the exception.
    """

    status_code = 401

    MISSING = "missing"
    MALFORMED = "malformed"
    EXPIRED = "expired"
    INVALID = "invalid"

    MESSAGES = {
        MISSING: "Authentication required",
        MALFORMED: "Malformed token",
        EXPIRED: "Token has expired",
        INVALID: "Invalid token",
    }

    def __init__(
        self,
        reason: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        if reason not in self.MESSAGES:
            raise ValueError(f"Unknown credential failure reason: {reason}")
        ctx = context or {}
        ctx["reason"] = reason
        super().__init__(message=self.MESSAGES[reason], context=ctx)
        self.reason = reason


class RateLimitExceededError(EdgeGuardError):
    """
    Raised when a client exceeds its admission budget.

    HTTP:    429 Too Many Requests
    Response includes a Retry-After header; internal counters are never exposed.
    """

    status_code = 429

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message="Rate limit exceeded", context=ctx)
        self.retry_after = retry_after


class RequestTimeoutError(EdgeGuardError):
    """
    Raised (or rendered) when request handling overran its deadline.

    HTTP:    408 Request Timeout
    The downstream work is not guaranteed to have stopped.
    """

    status_code = 408

    def __init__(
        self,
        timeout: float = 30.0,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["timeout"] = timeout
        super().__init__(message="Request timeout", context=ctx)
        self.timeout = timeout


class UpstreamStoreError(EdgeGuardError):
    """
    Raised when the shared rate-limit store cannot be reached or errors.

    Never surfaced to clients: the distributed limiter catches it, logs a
    warning and admits the request (fail open).
    """

    def __init__(
        self,
        message: str = "Rate limit store unavailable",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
