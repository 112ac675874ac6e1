"""
EdgeGuard — FastAPI Application Factory
========================================

What:  Creates and configures the FastAPI application instance.
Why:   One place decides stage order, error rendering and lifecycle, so
       every deployment and every test runs the same pipeline.
How:   Factory pattern: create_app() builds a Pipeline, registers the
       middleware chain, exception handlers and routes.
Who:   Called by uvicorn (`uvicorn edgeguard.main:app`) or the `edgeguard`
       console script; tests call it with their own Settings.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware Chain (outermost first):                     │
    │  RequestID → Recovery → AccessLog → Security → CORS      │
    │            → Timeout → RateLimit → Auth                  │
    │                                                          │
    │  Routes:                                                 │
    │  GET /health   GET /health/detailed   GET /metrics       │
    │  GET /api/v1/protected                                   │
    │                                                          │
    │  Exception Handlers (same envelope as the middlewares):  │
    │  EdgeGuardError │ HTTPException │ RequestValidationError │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Initialize logging
    2. Validate configuration (fatal in production)
    3. Pipeline.startup(): choose the rate limiter, start the visitor sweeper

    Shutdown:
    1. Pipeline.shutdown(): cancel orphaned requests, stop the limiter,
       close the Redis client
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from edgeguard import __version__
from edgeguard.config import Settings, settings as default_settings
from edgeguard.exceptions import EdgeGuardError, RateLimitExceededError
from edgeguard.middleware.auth import TokenAuthMiddleware
from edgeguard.middleware.logging import RequestLoggingMiddleware
from edgeguard.middleware.rate_limit import RateLimitMiddleware
from edgeguard.middleware.recovery import RecoveryMiddleware
from edgeguard.middleware.request_id import (
    REQUEST_ID_HEADER,
    RequestIDLogFilter,
    RequestIDMiddleware,
    get_request_id,
)
from edgeguard.middleware.security import SecurityHeadersMiddleware
from edgeguard.middleware.timeout import TimeoutMiddleware
from edgeguard.pipeline import Pipeline
from edgeguard.responses import json_error
from edgeguard.routes import health, metrics, protected
from edgeguard.services.limiter_base import RateLimiter

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(request_id)s] %(message)s"


def setup_logging(settings: Settings) -> None:
    """
    Configure logging for the entire application.

    The stdout handler carries RequestIDLogFilter, so every line includes the
    correlation id of the request that produced it ("unknown" outside one).
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIDLogFilter())

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    # Why: uvicorn.access duplicates edgeguard.access, and redis/httpx log
    # every command at DEBUG.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    pipeline: Pipeline = app.state.pipeline
    settings = pipeline.settings

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(settings)
    logger.info("=" * 60)
    logger.info("EdgeGuard %s starting up (%s)...", __version__, settings.app_env)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        if settings.is_production:
            logger.critical("Refusing to start in production with invalid configuration.")
            raise
        logger.error("Continuing outside production; protected routes will reject all tokens.")

    await pipeline.startup()

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("EdgeGuard shutting down...")
    await pipeline.shutdown()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Render handler-raised errors in the pipeline's envelope.

    Handler hierarchy:
        EdgeGuardError          → its own status_code (401 / 408 / 429 / 500)
        HTTPException           → its status code, detail as the message
        RequestValidationError  → 422 "Request validation failed"

    Anything else propagates to RecoveryMiddleware, which logs the traceback
    and answers with an opaque 500.
    """

    @app.exception_handler(EdgeGuardError)
    async def handle_edgeguard_error(request: Request, exc: EdgeGuardError):
        rid = get_request_id()
        log = logger.warning if exc.status_code < 500 else logger.error
        log("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
        headers = None
        if isinstance(exc, RateLimitExceededError):
            headers = {"Retry-After": str(exc.retry_after)}
        return json_error(exc.status_code, exc.message, rid, headers=headers)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return json_error(
            exc.status_code,
            str(exc.detail),
            get_request_id(),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        rid = get_request_id()
        logger.warning("[%s] Validation error: %s", rid, exc.errors())
        return json_error(422, "Request validation failed", rid)


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    settings: Optional[Settings] = None,
    limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Configuration to use; defaults to the environment-loaded
                  module settings.
        limiter:  Force a specific rate limiter. When omitted, startup picks
                  the Redis limiter if reachable, else the local fallback.
    """
    settings = settings or default_settings
    pipeline = Pipeline(settings, limiter=limiter)

    app = FastAPI(
        title="EdgeGuard",
        description=(
            "Request-processing pipeline: correlation ids, fault recovery, access "
            "logging, security headers, timeouts, rate limiting and token auth."
        ),
        version=__version__,
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    # ── Register Middleware ───────────────────────────────────────────────
    # Execution order is the REVERSE of addition (last added = outermost).
    app.add_middleware(TokenAuthMiddleware, pipeline=pipeline)
    app.add_middleware(RateLimitMiddleware, pipeline=pipeline)
    app.add_middleware(TimeoutMiddleware, pipeline=pipeline)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER, "Retry-After"],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware, pipeline=pipeline)
    app.add_middleware(RecoveryMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(protected.router)
    if settings.metrics_enabled:
        app.include_router(metrics.build_router(settings.metrics_path))

    return app


# Why module-level: `uvicorn edgeguard.main:app` imports this attribute.
app = create_app()


def run() -> None:
    """Console-script entry point."""
    uvicorn.run(
        "edgeguard.main:app",
        host=default_settings.backend_host,
        port=default_settings.backend_port,
        log_level=default_settings.log_level.lower(),
    )
