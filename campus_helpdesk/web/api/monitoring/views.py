"""Liveness check and the Prometheus scrape endpoint."""

from __future__ import annotations

import os

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, CollectorRegistry, generate_latest, multiprocess

router = APIRouter(tags=["monitoring"])


@router.get("/health")
def health_check() -> dict[str, str]:
    """Answers 200 while the process is serving requests."""
    return {"status": "ok"}


def _scrape_registry() -> CollectorRegistry:
    # Under several uvicorn workers the counters live in PROMETHEUS_MULTIPROC_DIR.
    if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        return registry
    return REGISTRY  # type: ignore[return-value]


@router.get("/metrics/prometheus")
async def prometheus_metrics() -> Response:
    """Validation rejection and auth failure counters in text exposition format."""
    return Response(content=generate_latest(_scrape_registry()), media_type=CONTENT_TYPE_LATEST)
