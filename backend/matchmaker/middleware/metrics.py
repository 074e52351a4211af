"""
Prometheus Metrics

All metrics live under the `matchmaker_` namespace.

| Group     | Metric                                   | Labels                   |
|-----------|------------------------------------------|--------------------------|
| HTTP      | http_request_duration_seconds            | method, endpoint, status |
| HTTP      | http_requests_total                      | method, endpoint, status |
| HTTP      | http_requests_active                     | method, endpoint         |
| Embedding | embedding_cache_hits/misses_total        |                          |
| Embedding | embedding_generation_seconds             | provider                 |
| Embedding | embedding_retries/failures_total         | kind                     |
| Vectors   | vector_query_seconds                     | operation                |
| Pipeline  | matches_created_total                    | reason                   |
| Pipeline  | pipeline_users_processed_total           | outcome                  |
| Pipeline  | candidate_strategy_failures_total        | strategy                 |
| Pipeline  | pipeline_run_seconds                     |                          |
| Feedback  | match_feedback_total                     | helpful                  |

Usage:
    app = FastAPI()
    setup_metrics(app)   # middleware + GET /metrics
"""

import logging
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match

logger = logging.getLogger(__name__)

NAMESPACE = "matchmaker"

# Health checks and scrapes are not recorded
UNTRACKED_PATHS = {"/metrics", "/health"}

# ==================== HTTP ====================

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint", "status"],
    namespace=NAMESPACE,
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0],
)
REQUEST_COUNT = Counter(
    "http_requests_total",
    "HTTP requests by endpoint and status",
    ["method", "endpoint", "status"],
    namespace=NAMESPACE,
)
ACTIVE_REQUESTS = Gauge(
    "http_requests_active",
    "HTTP requests in flight",
    ["method", "endpoint"],
    namespace=NAMESPACE,
)

# ==================== Embeddings & vectors ====================

CACHE_HITS = Counter("embedding_cache_hits_total", "Embedding cache hits", namespace=NAMESPACE)
CACHE_MISSES = Counter("embedding_cache_misses_total", "Embedding cache misses", namespace=NAMESPACE)

EMBEDDING_LATENCY = Histogram(
    "embedding_generation_seconds",
    "Embedding generation time including retries",
    ["provider"],
    namespace=NAMESPACE,
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)
EMBEDDING_RETRIES = Counter(
    "embedding_retries_total",
    "Embedding calls retried after a retryable failure",
    ["kind"],
    namespace=NAMESPACE,
)
EMBEDDING_FAILURES = Counter(
    "embedding_failures_total",
    "Embedding calls that failed after all attempts",
    ["kind"],
    namespace=NAMESPACE,
)
VECTOR_QUERY_LATENCY = Histogram(
    "vector_query_seconds",
    "Vector store operation latency",
    ["operation"],  # nearest, upsert, get, delete
    namespace=NAMESPACE,
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)

# ==================== Pipeline ====================

MATCHES_CREATED = Counter(
    "matches_created_total",
    "Matches created by the allocation pipeline",
    ["reason"],
    namespace=NAMESPACE,
)
USERS_PROCESSED = Counter(
    "pipeline_users_processed_total",
    "Users processed by the allocation pipeline",
    ["outcome"],  # success, failure
    namespace=NAMESPACE,
)
STRATEGY_FAILURES = Counter(
    "candidate_strategy_failures_total",
    "Candidate strategies that failed and were skipped",
    ["strategy"],
    namespace=NAMESPACE,
)
PIPELINE_RUN_DURATION = Histogram(
    "pipeline_run_seconds",
    "Duration of population-wide allocation runs",
    namespace=NAMESPACE,
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1800],
)
FEEDBACK_SUBMITTED = Counter(
    "match_feedback_total",
    "Feedback submitted by match participants",
    ["helpful"],
    namespace=NAMESPACE,
)


def route_template(request: Request) -> str:
    """Route pattern (e.g. /matches/{match_id}) to keep label cardinality low."""
    for route in request.app.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return route.path
    return request.url.path


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Records latency, count and in-flight gauge per route template."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        endpoint = route_template(request)
        if endpoint in UNTRACKED_PATHS:
            return await call_next(request)

        labels = {"method": request.method, "endpoint": endpoint}
        ACTIVE_REQUESTS.labels(**labels).inc()
        start = time.perf_counter()
        status = "500"

        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        except Exception as e:
            logger.error(f"{request.method} {endpoint} raised: {e}")
            raise
        finally:
            REQUEST_LATENCY.labels(status=status, **labels).observe(time.perf_counter() - start)
            REQUEST_COUNT.labels(status=status, **labels).inc()
            ACTIVE_REQUESTS.labels(**labels).dec()


def metrics_endpoint(request: Request) -> Response:
    return PlainTextResponse(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


def setup_metrics(app: FastAPI) -> None:
    """Install the middleware and expose GET /metrics."""
    app.add_middleware(PrometheusMiddleware)
    app.add_route("/metrics", metrics_endpoint, methods=["GET"])
    logger.info("Prometheus metrics configured")


# ==================== Recording helpers ====================

def record_cache_hit() -> None:
    CACHE_HITS.inc()


def record_cache_miss() -> None:
    CACHE_MISSES.inc()


def record_embedding_latency(provider: str, duration: float) -> None:
    EMBEDDING_LATENCY.labels(provider=provider).observe(duration)


def record_embedding_retry(kind: str) -> None:
    EMBEDDING_RETRIES.labels(kind=kind).inc()


def record_embedding_failure(kind: str) -> None:
    EMBEDDING_FAILURES.labels(kind=kind).inc()


def record_vector_query_latency(operation: str, duration: float) -> None:
    VECTOR_QUERY_LATENCY.labels(operation=operation).observe(duration)


def record_match_created(reason: str) -> None:
    MATCHES_CREATED.labels(reason=reason).inc()


def record_user_processed(success: bool) -> None:
    USERS_PROCESSED.labels(outcome="success" if success else "failure").inc()


def record_strategy_failure(strategy: str) -> None:
    STRATEGY_FAILURES.labels(strategy=strategy).inc()


def record_pipeline_run(duration: float) -> None:
    PIPELINE_RUN_DURATION.observe(duration)


def record_feedback(helpful: bool) -> None:
    FEEDBACK_SUBMITTED.labels(helpful=str(helpful).lower()).inc()
