"""
EdgeGuard — Prometheus Metrics Route
=====================================

What:  Serves the pipeline's collectors in the Prometheus text format.
Who:   Prometheus scrapers. Mounted only when METRICS_ENABLED is true, at
       METRICS_PATH (default /metrics). Not authenticated; keep it off the
       public listener or behind the proxy's allow-list.
"""

from fastapi import APIRouter, Request
from fastapi.responses import Response


def build_router(path: str) -> APIRouter:
    router = APIRouter(tags=["Metrics"])

    @router.get(path, include_in_schema=False)
    async def metrics(request: Request) -> Response:
        pipeline_metrics = request.app.state.pipeline.metrics
        return Response(
            content=pipeline_metrics.render(),
            media_type=pipeline_metrics.content_type,
        )

    return router
