"""Prometheus metrics for LinkVault."""

import logging
import re
import time
from typing import Optional, Tuple

from fastapi import FastAPI, Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from prometheus_client.core import CollectorRegistry

logger = logging.getLogger(__name__)

# Dedicated registry so tests and embedded apps don't collide with the default one
linkvault_registry = CollectorRegistry()

# HTTP metrics
request_count = Counter(
    'linkvault_http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=linkvault_registry
)

request_duration = Histogram(
    'linkvault_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=linkvault_registry
)

# Capture metrics
captures_submitted = Counter(
    'linkvault_captures_submitted_total',
    'Capture submissions by source type and outcome',
    ['source_type', 'outcome'],
    registry=linkvault_registry
)

captures_processed = Counter(
    'linkvault_captures_processed_total',
    'Captures processed by the worker',
    ['source_type', 'status'],
    registry=linkvault_registry
)

scrape_duration = Histogram(
    'linkvault_scrape_duration_seconds',
    'Scrape duration in seconds',
    ['strategy'],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=linkvault_registry
)

scrape_failures = Counter(
    'linkvault_scrape_failures_total',
    'Scrape failures by strategy and error kind',
    ['strategy', 'kind'],
    registry=linkvault_registry
)

thread_reconstructions = Counter(
    'linkvault_thread_reconstructions_total',
    'Thread reconstructions by provenance',
    ['provenance'],
    registry=linkvault_registry
)

queue_publishes = Counter(
    'linkvault_queue_publishes_total',
    'Work queue publish attempts',
    ['outcome'],
    registry=linkvault_registry
)

# Embedding metrics
embedding_duration = Histogram(
    'linkvault_embedding_duration_seconds',
    'Embedding generation duration in seconds',
    ['model'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=linkvault_registry
)

embedding_failures = Counter(
    'linkvault_embedding_failures_total',
    'Embedding generation failures',
    ['model'],
    registry=linkvault_registry
)

# Search metrics
search_requests = Counter(
    'linkvault_search_requests_total',
    'Total number of semantic search requests',
    ['mode', 'status'],
    registry=linkvault_registry
)

search_duration = Histogram(
    'linkvault_search_duration_seconds',
    'Search request duration in seconds',
    ['mode'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=linkvault_registry
)

search_results_count = Histogram(
    'linkvault_search_results_count',
    'Number of search results returned',
    ['mode'],
    buckets=[0, 1, 5, 10, 20, 50],
    registry=linkvault_registry
)

rag_answers = Counter(
    'linkvault_rag_answers_total',
    'Answer synthesis outcomes',
    ['mode', 'outcome'],
    registry=linkvault_registry
)


def record_capture(source_type: str, outcome: str) -> None:
    captures_submitted.labels(source_type=source_type, outcome=outcome).inc()


def record_processed(source_type: str, status: str) -> None:
    captures_processed.labels(source_type=source_type, status=status).inc()


def record_scrape(strategy: str, duration: float, error_kind: Optional[str] = None) -> None:
    """Record a scrape attempt; ``error_kind`` is set when it failed."""
    scrape_duration.labels(strategy=strategy).observe(duration)
    if error_kind:
        scrape_failures.labels(strategy=strategy, kind=error_kind).inc()


def record_thread(provenance: str) -> None:
    thread_reconstructions.labels(provenance=provenance).inc()


def record_queue_publish(outcome: str) -> None:
    queue_publishes.labels(outcome=outcome).inc()


def record_embedding(model: str, duration: float, error: Optional[str] = None) -> None:
    if error:
        embedding_failures.labels(model=model).inc()
    else:
        embedding_duration.labels(model=model).observe(duration)


def record_search_metrics(mode: str, duration: float, result_count: int, error: Optional[str] = None) -> None:
    """Record search-related metrics."""
    status = "error" if error else "success"
    search_requests.labels(mode=mode, status=status).inc()
    search_duration.labels(mode=mode).observe(duration)
    if not error:
        search_results_count.labels(mode=mode).observe(result_count)


def record_rag_answer(mode: str, outcome: str) -> None:
    rag_answers.labels(mode=mode, outcome=outcome).inc()


def render_metrics() -> Tuple[bytes, str]:
    """Exposition payload and content type for the ``/metrics`` endpoint."""
    return generate_latest(linkvault_registry), CONTENT_TYPE_LATEST


class PrometheusMiddleware:
    """ASGI middleware recording request counts and durations."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        method = request.method
        endpoint = self._normalize_endpoint(request.url.path)
        start_time = time.time()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            request_count.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
            request_duration.labels(method=method, endpoint=endpoint).observe(time.time() - start_time)

    @staticmethod
    def _normalize_endpoint(path: str) -> str:
        """Normalize endpoint path to reduce cardinality."""
        path = re.sub(r'/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', '/{uuid}', path)
        return re.sub(r'/\d+', '/{id}', path)


def setup_prometheus_metrics(app: FastAPI) -> None:
    """Attach the request metrics middleware to ``app``."""
    app.add_middleware(PrometheusMiddleware)
    logger.info("Prometheus metrics configured")
