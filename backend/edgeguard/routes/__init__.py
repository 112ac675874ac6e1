# Routes package init
"""
EdgeGuard — API Routes Package
===============================

Route Inventory:
    - health.py:     GET /health               (pipeline health, never limited)
    - health.py:     GET /health/detailed      (adds a timed Redis PING)
    - metrics.py:    GET /metrics              (Prometheus text format)
    - protected.py:  GET /api/v1/protected     (echoes the verified principal)

Routes stay thin: the pipeline has already correlated, limited and
authenticated the request before a handler runs.
"""
