"""
EdgeGuard — Health Check Route
===============================

What:  Health check endpoints for monitoring and load balancer health checks.
How:   Reports the active rate limiter, the shared store's reachability and
       the number of orphaned requests.
Who:   Docker health checks, load balancers, monitoring. Exempt from rate
       limiting by default (RATE_LIMIT_EXEMPT_PATHS).

Endpoints:
    - GET /health            cheap status summary
    - GET /health/detailed   adds a timed PING of the shared store

Status levels:
    - healthy:   Redis connected, or not configured (HTTP 200)
    - degraded:  Redis configured but unreachable; requests are still served
                 by the in-memory fallback (HTTP 503 so operators notice)
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from edgeguard import __version__
from edgeguard.middleware.request_id import get_request_id
from edgeguard.schemas.common import DetailedHealthResponse, HealthResponse, StoreHealth

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Pipeline health check",
    responses={503: {"model": HealthResponse}},
)
async def health_check(request: Request):
    pipeline = request.app.state.pipeline

    redis_status = await pipeline.redis_status()
    overall = "degraded" if redis_status == "unavailable" else "healthy"
    if overall == "degraded":
        logger.warning("Health check: Redis configured but unreachable")

    body = HealthResponse(
        status=overall,
        version=__version__,
        environment=pipeline.settings.app_env,
        uptime_seconds=round(pipeline.uptime_seconds, 2),
        rate_limiter=pipeline.limiter.name,
        redis=redis_status,
        orphaned_requests=pipeline.orphan_count,
    )
    return JSONResponse(
        status_code=200 if overall == "healthy" else 503,
        content=body.model_dump(),
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    summary="Health check with dependency timings",
    responses={503: {"model": DetailedHealthResponse}},
)
async def health_detailed(request: Request):
    """
    Like /health, but PINGs the shared store and reports its round trip.

    The PING is bounded by `redis_socket_timeout`, so a hung store turns
    into "unhealthy" rather than a stalled health check.
    """
    pipeline = request.app.state.pipeline

    store = await pipeline.redis_health()
    overall = "degraded" if store["status"] == "unhealthy" else "healthy"

    body = DetailedHealthResponse(
        status=overall,
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        environment=pipeline.settings.app_env,
        request_id=get_request_id(),
        uptime_seconds=round(pipeline.uptime_seconds, 2),
        rate_limiter=pipeline.limiter.name,
        orphaned_requests=pipeline.orphan_count,
        redis=StoreHealth(**store),
    )
    return JSONResponse(
        status_code=200 if overall == "healthy" else 503,
        content=body.model_dump(mode="json"),
    )
