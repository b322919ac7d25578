"""Source crawler pipeline for autogather.

Walks a local source tree depth-first, applies the source filters, skips files
whose stored document is already up to date, and writes extracted documents
and the run status to the store.
"""

import os
import time
import sqlite3
import logging
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Dict, List, Optional
from dataclasses import dataclass, field

from config.settings import CrawlConfig
from indexer.source_schema import (
    CrawlStatus,
    SourceConfig,
    SourceFilters,
    SourceStatus,
    SourceType,
    from_timestamp,
    utcnow,
)
from indexer.sqlite_adapter import DocumentStore
from observability.logging import get_structured_logger
from observability.prometheus_metrics import record_crawl_metrics, record_document_metrics
from services.shared.errors import ConfigurationError, ExtractionError
from services.shared.incremental import is_up_to_date, make_document_id
from .extractors import DocumentExtractor, detect_type, is_supported

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Outcome of one crawl run over a single source."""
    source_id: str
    found: int = 0
    processed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    status: CrawlStatus = CrawlStatus.IDLE
    duration: Optional[int] = None  # milliseconds

    def to_dict(self) -> Dict[str, object]:
        return {
            'source_id': self.source_id,
            'found': self.found,
            'processed': self.processed,
            'skipped': self.skipped,
            'errors': list(self.errors),
            'status': self.status.value,
            'duration': self.duration,
        }


def matches_glob(relative_path: str, pattern: str) -> bool:
    """Case-insensitive shell-glob match; ``**`` behaves like ``*``."""
    return fnmatchcase(relative_path.lower(), pattern.replace("**", "*").lower())


def should_process(relative_path: str, filters: SourceFilters) -> bool:
    if filters.include and not any(matches_glob(relative_path, p) for p in filters.include):
        return False
    if filters.exclude and any(matches_glob(relative_path, p) for p in filters.exclude):
        return False
    return True


class SourceCrawler:
    """Sequential crawler for a single source at a time."""

    def __init__(self, store: DocumentStore,
                 extractor: Optional[DocumentExtractor] = None,
                 config: Optional[CrawlConfig] = None):
        self.store = store
        self.extractor = extractor or DocumentExtractor()
        self.config = config or CrawlConfig()
        self.log = get_structured_logger(__name__)

    def run(self, source: SourceConfig) -> RunResult:
        """Crawl one source to completion.

        Fatal conditions (bad root, unimplemented source type) and any
        unexpected failure during the walk end the run with an ``error``
        status and are returned, not raised. The final status is always
        written; only a failure to write it propagates.
        """
        start = time.time()
        result = RunResult(source_id=source.id, status=CrawlStatus.CRAWLING)
        log = self.log.bind(source_id=source.id, source_type=source.type.value)

        self.store.save_source_status(SourceStatus(
            source_id=source.id,
            status=CrawlStatus.CRAWLING,
            last_run=utcnow(),
        ))
        log.info(f"Starting crawl of source {source.name}")

        error_message = None
        try:
            if source.type == SourceType.LOCAL:
                self._crawl_local(source, result)
            else:
                raise ConfigurationError(
                    f"{source.type.value.capitalize()} sources not yet implemented"
                )
        except ConfigurationError as e:
            error_message = str(e)
            result.errors.append(error_message)
        except Exception as e:
            error_message = f"Unexpected error during crawl: {e}"
            result.errors.append(error_message)
            log.exception(error_message, error_type=type(e).__name__)

        result.duration = int((time.time() - start) * 1000)
        result.status = CrawlStatus.ERROR if error_message else CrawlStatus.SUCCESS

        self.store.save_source_status(SourceStatus(
            source_id=source.id,
            status=result.status,
            last_run=utcnow(),
            last_error=error_message,
            documents_found=result.found,
            documents_processed=result.processed,
            documents_skipped=result.skipped,
            duration=result.duration,
        ))

        if error_message:
            log.error(f"Crawl failed: {error_message}")
        else:
            source.last_crawled = utcnow()
            self.store.save_source(source)
            log.info(
                f"Crawl finished: {result.found} found, {result.processed} processed, "
                f"{result.skipped} skipped, {len(result.errors)} errors",
                duration_ms=result.duration,
            )

        record_crawl_metrics(source.type.value, result.duration / 1000.0, error_message)
        return result

    def run_all_enabled(self) -> Dict[str, RunResult]:
        """Crawl every enabled source, one after another."""
        results: Dict[str, RunResult] = {}
        for source in self.store.list_sources(enabled_only=True):
            results[source.id] = self.run(source)
        return results

    def _crawl_local(self, source: SourceConfig, result: RunResult) -> None:
        root = source.root_path
        if not os.path.isdir(root):
            raise ConfigurationError(f"Cannot access path: {root}")

        filters = source.filters
        max_depth = filters.max_depth or self.config.default_max_depth
        max_size = filters.max_size or self.config.default_max_size

        self._crawl_directory(root, root, source, result, 0, max_depth, max_size)

    def _crawl_directory(self, dir_path: str, root: str, source: SourceConfig,
                         result: RunResult, depth: int, max_depth: int, max_size: int) -> None:
        if depth >= max_depth:
            return

        try:
            with os.scandir(dir_path) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            result.errors.append(f"Error reading directory {dir_path}: {e}")
            logger.warning(f"Error reading directory {dir_path}: {e}")
            return

        for entry in entries:
            full_path = os.path.join(dir_path, entry.name)
            relative_path = Path(os.path.relpath(full_path, root)).as_posix()

            if not should_process(relative_path, source.filters):
                result.skipped += 1
                continue

            if entry.is_dir():
                self._crawl_directory(full_path, root, source, result, depth + 1, max_depth, max_size)
            elif entry.is_file():
                self._crawl_file(full_path, source, result, max_size)

    def _crawl_file(self, full_path: str, source: SourceConfig,
                    result: RunResult, max_size: int) -> None:
        doc_type = detect_type(full_path).value
        try:
            stat = os.stat(full_path)

            if stat.st_size > max_size or not is_supported(full_path):
                result.skipped += 1
                return

            result.found += 1

            existing = self.store.get_document(make_document_id(source.id, full_path))
            if is_up_to_date(existing, from_timestamp(stat.st_mtime)):
                result.skipped += 1
                record_document_metrics(doc_type, "skipped")
                return

            with open(full_path, 'rb') as f:
                raw = f.read()

            document = self.extractor.extract(raw, full_path, source.id, stat=stat)
            if document is None:
                result.skipped += 1
                return

            self.store.save_document(document)
            result.processed += 1
            record_document_metrics(doc_type, "processed")

        except ExtractionError as e:
            result.errors.append(str(e))
            result.skipped += 1
            record_document_metrics(doc_type, "error")
            logger.warning(str(e))
        except sqlite3.Error:
            raise
        except Exception as e:
            # OSError from stat/read, or anything else a single file trips over
            message = str(ExtractionError(full_path, str(e)))
            result.errors.append(message)
            result.skipped += 1
            record_document_metrics(doc_type, "error")
            logger.warning(message)
