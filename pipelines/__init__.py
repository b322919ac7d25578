"""Pipelines package for autogather.

Provides content extraction and source crawling.
"""

from .extractors import (
    DocumentExtractor,
    ExtractedFields,
    register_handler,
    detect_type,
    is_supported,
    SUPPORTED_EXTENSIONS,
)
from .crawler import SourceCrawler, RunResult, matches_glob, should_process

__all__ = [
    # Extraction
    'DocumentExtractor',
    'ExtractedFields',
    'register_handler',
    'detect_type',
    'is_supported',
    'SUPPORTED_EXTENSIONS',

    # Crawler
    'SourceCrawler',
    'RunResult',
    'matches_glob',
    'should_process',
]
