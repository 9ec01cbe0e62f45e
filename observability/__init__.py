"""Observability package for LinkVault."""

from .logging import (
    setup_logging,
    get_logger,
    get_structured_logger,
    StructuredLogger,
    JSONFormatter,
    ColoredFormatter
)
from .metrics import (
    setup_prometheus_metrics,
    record_capture,
    record_processed,
    record_scrape,
    record_thread,
    record_queue_publish,
    record_embedding,
    record_search_metrics,
    record_rag_answer,
    render_metrics,
    PrometheusMiddleware,
    linkvault_registry
)

__all__ = [
    'setup_logging',
    'get_logger',
    'get_structured_logger',
    'StructuredLogger',
    'ColoredFormatter',
    'JSONFormatter',
    'setup_prometheus_metrics',
    'record_capture',
    'record_processed',
    'record_scrape',
    'record_thread',
    'record_queue_publish',
    'record_embedding',
    'record_search_metrics',
    'record_rag_answer',
    'render_metrics',
    'PrometheusMiddleware',
    'linkvault_registry'
]
