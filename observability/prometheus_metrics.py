"""Prometheus metrics for autogather crawls, searches and index rebuilds."""

from prometheus_client import Counter, Histogram, Gauge, generate_latest
from prometheus_client.core import CollectorRegistry
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

# Custom registry so embedding applications keep their own default registry clean
autogather_registry = CollectorRegistry()

# Crawl metrics
crawl_runs = Counter(
    'autogather_crawl_runs_total',
    'Total number of crawl runs',
    ['source_type', 'status'],
    registry=autogather_registry
)

crawl_duration = Histogram(
    'autogather_crawl_duration_seconds',
    'Crawl run duration in seconds',
    ['source_type'],
    buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0],
    registry=autogather_registry
)

documents_total = Counter(
    'autogather_documents_total',
    'Files seen by the crawler, by outcome',
    ['document_type', 'status'],
    registry=autogather_registry
)

# Search metrics
search_requests = Counter(
    'autogather_search_requests_total',
    'Total number of search requests',
    ['search_type', 'status'],
    registry=autogather_registry
)

search_duration = Histogram(
    'autogather_search_duration_seconds',
    'Search request duration in seconds',
    ['search_type'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=autogather_registry
)

search_results_count = Histogram(
    'autogather_search_results_count',
    'Number of search results returned',
    ['search_type'],
    buckets=[1, 5, 10, 25, 50, 100, 250, 500],
    registry=autogather_registry
)

# Index metrics
index_rebuilds = Counter(
    'autogather_index_rebuilds_total',
    'Total number of full index rebuilds',
    registry=autogather_registry
)

index_documents = Gauge(
    'autogather_index_documents',
    'Documents held by the in-memory search index',
    registry=autogather_registry
)

# Error metrics
error_count = Counter(
    'autogather_errors_total',
    'Total number of errors',
    ['error_type', 'component'],
    registry=autogather_registry
)

def record_crawl_metrics(source_type: str, duration: float, error: Optional[str] = None) -> None:
    """Record the outcome of one crawl run."""
    status = "error" if error else "success"

    crawl_runs.labels(source_type=source_type, status=status).inc()
    crawl_duration.labels(source_type=source_type).observe(duration)

    if error:
        error_count.labels(error_type="crawl_error", component="crawler").inc()

def record_document_metrics(doc_type: str, status: str) -> None:
    """Record a per-file crawl outcome (processed, skipped or error)."""
    documents_total.labels(document_type=doc_type, status=status).inc()

    if status == "error":
        error_count.labels(error_type="extraction_error", component="crawler").inc()

def record_search_metrics(search_type: str, duration: float, result_count: int,
                          error: Optional[str] = None) -> None:
    """Record search-related metrics."""
    status = "error" if error else "success"

    search_requests.labels(search_type=search_type, status=status).inc()
    search_duration.labels(search_type=search_type).observe(duration)

    if not error:
        search_results_count.labels(search_type=search_type).observe(result_count)
    else:
        error_count.labels(error_type="search_error", component="search").inc()

def record_index_rebuild(document_count: int) -> None:
    """Record a full rebuild of the in-memory index."""
    index_rebuilds.inc()
    index_documents.set(document_count)

def export_metrics() -> bytes:
    """Render the registry in the Prometheus text exposition format."""
    return generate_latest(autogather_registry)

def _counter_total(counter: Counter) -> float:
    total = 0.0
    for metric in counter.collect():
        for sample in metric.samples:
            if sample.name.endswith('_total'):
                total += sample.value
    return total

def get_metrics_summary() -> Dict[str, Any]:
    """Get a summary of current metrics."""
    return {
        "crawl_runs_total": _counter_total(crawl_runs),
        "documents_total": _counter_total(documents_total),
        "search_requests_total": _counter_total(search_requests),
        "index_rebuilds_total": _counter_total(index_rebuilds),
        "errors_total": _counter_total(error_count),
    }
