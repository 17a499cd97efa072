"""Liveness, readiness and metrics endpoints."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, PlainTextResponse

from engagement.api.dependencies import get_counter_store
from engagement.core.metrics import METRICS
from engagement.core.store import CounterStore

logger = logging.getLogger("engagement")

router = APIRouter(tags=["ops"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz(store: CounterStore = Depends(get_counter_store)):
    """Readiness check: counter store reachable."""
    if not store.ping():
        logger.warning("[readyz] counter store unreachable")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "counter store unreachable"})
    return {"status": "ok"}


@router.get("/metrics", response_class=PlainTextResponse)
def metrics():
    """Prometheus text exposition of the in-process counters."""
    return METRICS.export_prometheus()
