# Middleware package init
"""
EdgeGuard — Middleware Package
===============================

What:  The pipeline stages applied to every request.

Middleware Chain (order matters!):
    Request → [Request ID] → [Recovery] → [Access Log] → [Security Headers]
            → [CORS] → [Timeout] → [Rate Limit] → [Auth] → Route Handler

    Why this order:
    1. Request ID first: every later stage and log line can read the id
    2. Recovery: a fault anywhere below still gets an enveloped 500
    3. Access Log: records the final status, including recovered faults
    4. Security Headers: applied to every response below, rejections included
    5. CORS: preflight answered before limits and authentication
    6. Timeout: bounds the time spent in limiting, auth and the handler
    7. Rate Limit before Auth: floods are dropped before signature checks

    Starlette runs the LAST added middleware first, so create_app() adds
    them in reverse.
"""
