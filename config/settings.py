"""Application settings for autogather."""

import os
from typing import Optional
from pydantic import BaseModel, Field

from .database import StoreConfig

DEFAULT_MAX_DEPTH = 10
DEFAULT_MAX_SIZE = 10 * 1024 * 1024  # 10 MiB
DEFAULT_THRESHOLD = 0.3
DEFAULT_MAX_SCAN_CHARS = 5000


class CrawlConfig(BaseModel):
    """Defaults applied when a source leaves a filter unset."""
    default_max_depth: int = Field(default=DEFAULT_MAX_DEPTH, gt=0, description="Directory depth limit")
    default_max_size: int = Field(default=DEFAULT_MAX_SIZE, gt=0, description="Maximum file size in bytes")


class SearchConfig(BaseModel):
    """Fuzzy search tuning."""
    threshold: float = Field(default=DEFAULT_THRESHOLD, ge=0.0, le=1.0, description="0 = exact, 1 = match anything")
    default_limit: int = Field(default=20, gt=0, description="Results returned when no limit is given")
    highlight_context: int = Field(default=50, ge=0, description="Characters of context around a match")
    max_highlights: int = Field(default=3, ge=0, description="Highlights kept per result")
    min_match_char_length: int = Field(default=2, ge=1, description="Shortest match span considered")
    max_scan_chars: int = Field(
        default=DEFAULT_MAX_SCAN_CHARS, gt=0,
        description="Leading characters of each field the fuzzy matcher scans",
    )


class AutoGatherConfig(BaseModel):
    """Top-level configuration."""
    store: StoreConfig = Field(default_factory=StoreConfig)
    crawl: CrawlConfig = Field(default_factory=CrawlConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="Emit JSON log lines on the console")
    log_file: Optional[str] = Field(default=None, description="Optional JSON log file")
    sources_dir: Optional[str] = Field(default=None, description="Directory of YAML source definitions")

    @classmethod
    def from_env(cls) -> 'AutoGatherConfig':
        """Create configuration from environment variables."""
        return cls(
            store=StoreConfig.from_env(),
            crawl=CrawlConfig(
                default_max_depth=int(os.getenv('AUTOGATHER_MAX_DEPTH', str(DEFAULT_MAX_DEPTH))),
                default_max_size=int(os.getenv('AUTOGATHER_MAX_SIZE', str(DEFAULT_MAX_SIZE))),
            ),
            search=SearchConfig(
                threshold=float(os.getenv('AUTOGATHER_SEARCH_THRESHOLD', str(DEFAULT_THRESHOLD))),
                max_scan_chars=int(os.getenv('AUTOGATHER_SEARCH_MAX_SCAN_CHARS', str(DEFAULT_MAX_SCAN_CHARS))),
            ),
            log_level=os.getenv('AUTOGATHER_LOG_LEVEL', 'INFO'),
            log_json=os.getenv('AUTOGATHER_LOG_JSON', 'false').lower() in ('1', 'true', 'yes'),
            log_file=os.getenv('AUTOGATHER_LOG_FILE') or None,
            sources_dir=os.getenv('AUTOGATHER_SOURCES_DIR') or None,
        )
