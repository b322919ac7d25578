"""Configuration module for autogather.

Provides configuration for the document store, crawler defaults and search tuning.
"""

from .database import (
    StoreConfig,
    JournalMode,
    DEFAULT_DB_PATH,
)
from .settings import (
    AutoGatherConfig,
    CrawlConfig,
    SearchConfig,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_SIZE,
    DEFAULT_THRESHOLD,
)

__all__ = [
    'StoreConfig',
    'JournalMode',
    'DEFAULT_DB_PATH',
    'AutoGatherConfig',
    'CrawlConfig',
    'SearchConfig',
    'DEFAULT_MAX_DEPTH',
    'DEFAULT_MAX_SIZE',
    'DEFAULT_THRESHOLD',
]
