"""Observability package for autogather."""

from .logging import (
    setup_logging,
    get_logger,
    get_structured_logger,
    StructuredLogger,
    log_performance,
)
from .prometheus_metrics import (
    record_crawl_metrics,
    record_document_metrics,
    record_search_metrics,
    record_index_rebuild,
    export_metrics,
    get_metrics_summary,
    autogather_registry,
)

__all__ = [
    'setup_logging',
    'get_logger',
    'get_structured_logger',
    'StructuredLogger',
    'log_performance',
    'record_crawl_metrics',
    'record_document_metrics',
    'record_search_metrics',
    'record_index_rebuild',
    'export_metrics',
    'get_metrics_summary',
    'autogather_registry',
]
