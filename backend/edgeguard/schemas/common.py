"""
EdgeGuard — Response Schemas
=============================

What:  Pydantic models for the pipeline's own HTTP responses.
How:   ErrorResponse is the single rejection envelope; SuccessResponse wraps
       handler payloads; HealthResponse is returned by GET /health and
       DetailedHealthResponse by GET /health/detailed.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


# ══════════════════════════════════════════════════════════════════════════
# Error Response Model: identical shape for 401, 408, 429 and 500
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    What:  Standardized error envelope for every rejection.

    Example:
        {
            "success": false,
            "error": "Rate limit exceeded",
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }
    """
    success: bool = Field(default=False, description="Always false for errors")
    error: str = Field(description="Human-readable error description")
    request_id: str = Field(description="Request correlation ID")


class SuccessResponse(BaseModel):
    success: bool = Field(default=True)
    message: str = Field(description="Human-readable outcome")
    data: Optional[Any] = Field(default=None, description="Handler payload")


class HealthResponse(BaseModel):
    """
    What:  Health check response showing pipeline and dependency status.
    Who:   Returned by GET /health for monitoring and load balancer health checks.
    """
    status: str = Field(description="Overall status: healthy or degraded")
    version: str = Field(description="Application version")
    environment: str = Field(description="Deployment environment")
    uptime_seconds: float = Field(description="Seconds since the pipeline started")
    rate_limiter: str = Field(description="Active rate limiting strategy")
    redis: str = Field(description="Shared store: connected, unavailable or disabled")
    orphaned_requests: int = Field(description="Handler tasks still running after a timeout")


class StoreHealth(BaseModel):
    status: str = Field(description="healthy, unhealthy or disabled")
    latency_ms: Optional[float] = Field(default=None, description="PING round trip")
    error: Optional[str] = Field(default=None, description="Failure class, when unhealthy")


class DetailedHealthResponse(BaseModel):
    """
    What:  Health plus per-dependency checks with latency.
    Who:   Returned by GET /health/detailed for operators and dashboards.
    """
    status: str = Field(description="Overall status: healthy or degraded")
    timestamp: datetime = Field(description="Probe time (UTC)")
    version: str
    environment: str
    request_id: str = Field(description="Request correlation ID")
    uptime_seconds: float
    rate_limiter: str
    orphaned_requests: int
    redis: StoreHealth
