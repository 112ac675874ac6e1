"""
EdgeGuard — Prometheus Metrics
===============================

What:  Request counters and latency histograms for the pipeline, exposed on
       GET /metrics in the Prometheus text format.
How:   prometheus_client collectors registered on a CollectorRegistry owned
       by the Pipeline, so every app instance (and every test app) has its
       own set of series.
Who:   RequestLoggingMiddleware records every request; the rate-limit, auth
       and timeout stages record their rejections.

Why a private registry:
    The process-wide REGISTRY refuses a second collector with the same name,
    and create_app() may run more than once per process.

Path labels are normalized (UUIDs and long numeric ids collapsed) to keep
series cardinality bounded.
"""

import re
from typing import Callable, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

LATENCY_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)

_UUID_RE = re.compile(
    r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)
_NUMERIC_ID_RE = re.compile(r"/\d{4,}")


def normalize_path(path: str) -> str:
    path = _UUID_RE.sub(":uuid", path)
    return _NUMERIC_ID_RE.sub("/:id", path)


class PipelineMetrics:
    """Collectors for one pipeline. With enabled=False every record call is a no-op."""

    def __init__(self, enabled: bool = True, registry: Optional[CollectorRegistry] = None):
        self.enabled = enabled
        self.registry = registry or CollectorRegistry()

        self.requests = Counter(
            "edgeguard_http_requests_total",
            "HTTP requests by method, path and status",
            ["method", "path", "status"],
            registry=self.registry,
        )
        self.latency = Histogram(
            "edgeguard_http_request_duration_seconds",
            "End-to-end request latency",
            ["method", "path"],
            buckets=LATENCY_BUCKETS,
            registry=self.registry,
        )
        self.response_bytes = Counter(
            "edgeguard_http_response_bytes_total",
            "Response body bytes",
            ["method", "path"],
            registry=self.registry,
        )
        self.rate_limited = Counter(
            "edgeguard_rate_limit_rejections_total",
            "Requests rejected by the rate limiter",
            ["strategy"],
            registry=self.registry,
        )
        self.auth_failures = Counter(
            "edgeguard_auth_failures_total",
            "Rejected credentials by reason",
            ["reason"],
            registry=self.registry,
        )
        self.timeouts = Counter(
            "edgeguard_request_timeouts_total",
            "Requests answered with 408",
            ["path"],
            registry=self.registry,
        )
        self.orphans = Gauge(
            "edgeguard_orphaned_requests",
            "Handler tasks still running after a timeout",
            registry=self.registry,
        )

    def track_orphans(self, count: Callable[[], int]) -> None:
        """Read the live orphan count at scrape time."""
        self.orphans.set_function(count)

    def observe_request(
        self, method: str, path: str, status: int, duration_seconds: float, response_size: int
    ) -> None:
        if not self.enabled:
            return
        label = normalize_path(path)
        self.requests.labels(method=method, path=label, status=str(status)).inc()
        self.latency.labels(method=method, path=label).observe(duration_seconds)
        self.response_bytes.labels(method=method, path=label).inc(response_size)

    def rate_limit_rejected(self, strategy: str) -> None:
        if self.enabled:
            self.rate_limited.labels(strategy=strategy).inc()

    def auth_failed(self, reason: str) -> None:
        if self.enabled:
            self.auth_failures.labels(reason=reason).inc()

    def request_timed_out(self, path: str) -> None:
        if self.enabled:
            self.timeouts.labels(path=normalize_path(path)).inc()

    def render(self) -> bytes:
        return generate_latest(self.registry)

    content_type = CONTENT_TYPE_LATEST
