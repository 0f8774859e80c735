from __future__ import annotations

import time

from fastapi import Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

from src.app.settings import settings

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
STAGE_LATENCY = Histogram(
    "rag_stage_duration_seconds",
    "Pipeline stage duration in seconds",
    ["stage"],
)
PIPELINE_OUTCOMES = Counter(
    "rag_pipeline_outcomes_total",
    "Pipeline results by user-visible outcome",
    ["outcome"],
)
STAGE_FALLBACKS = Counter(
    "rag_stage_fallbacks_total",
    "Degraded pipeline stages",
    ["stage"],
)
CACHE_LOOKUPS = Counter(
    "rag_embedding_cache_requests_total",
    "Query embedding cache lookups",
    ["result"],
)


async def metrics_middleware(request: Request, call_next):
    if not settings.metrics_enabled:
        return await call_next(request)
    path = request.url.path
    if path == "/metrics":
        return await call_next(request)
    start = time.monotonic()
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    finally:
        duration = time.monotonic() - start
        REQUEST_COUNT.labels(request.method, path, str(status)).inc()
        REQUEST_LATENCY.labels(request.method, path).observe(duration)


def observe_stage(stage: str, seconds: float) -> None:
    if settings.metrics_enabled:
        STAGE_LATENCY.labels(stage).observe(seconds)


def record_outcome(outcome: str) -> None:
    if settings.metrics_enabled:
        PIPELINE_OUTCOMES.labels(outcome).inc()


def record_fallback(stage: str) -> None:
    if settings.metrics_enabled:
        STAGE_FALLBACKS.labels(stage).inc()


def record_cache_lookup(hit: bool) -> None:
    if settings.metrics_enabled:
        CACHE_LOOKUPS.labels("hit" if hit else "miss").inc()


def metrics_response() -> Response:
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
