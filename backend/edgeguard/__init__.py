"""
EdgeGuard — Request Processing Pipeline
========================================

What: Marks the `edgeguard` directory as a Python package.
Who:  Imported by uvicorn (`edgeguard.main:app`), pytest and the console script.

Architecture Note:
    Every request passes through a fixed chain of stages before the handler:

    ┌─────────────────────────────────────┐
    │  Middleware (edgeguard.middleware)  │  ← correlation, recovery, logging,
    │                                     │    headers, timeout, limits, auth
    ├─────────────────────────────────────┤
    │  Services (edgeguard.services)      │  ← limiter strategies, token checks
    ├─────────────────────────────────────┤
    │  Pipeline (edgeguard.pipeline)      │  ← shared state and lifecycle
    ├─────────────────────────────────────┤
    │  Routes (edgeguard.routes)          │  ← /health, protected demo route
    └─────────────────────────────────────┘

    Middlewares hold no business logic of their own: admission decisions live
    in services so they can be tested without HTTP.
"""

__version__ = "1.0.0"
