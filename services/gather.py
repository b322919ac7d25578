"""Top-level autogather service.

``AutoGather`` owns one store, extractor, crawler and search index and exposes
the operations a request layer (CLI, RPC adapter) calls. It holds no global
state; construct one per process or per test.
"""

import random
import string
import time
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from config.settings import AutoGatherConfig
from indexer.search_index import SearchIndex, SearchOptions
from indexer.source_schema import (
    CrawlStatus,
    Document,
    DocumentType,
    SearchResult,
    SourceConfig,
    SourceFilters,
    SourceStatus,
    SourceType,
    format_datetime,
)
from indexer.sqlite_adapter import DocumentStore
from pipelines.crawler import RunResult, SourceCrawler
from pipelines.extractors import DocumentExtractor
from sources.loader import SourceLoader
from .shared.errors import NotFoundError
from .shared.requests import AddSourceRequest, SearchRequest, UpdateSourceRequest

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_source_id() -> str:
    """``source_<epoch ms>_<9 base36 chars>``."""
    suffix = ''.join(random.choice(_ID_ALPHABET) for _ in range(9))
    return f"source_{int(time.time() * 1000)}_{suffix}"


class AutoGather:
    """Context object wiring the store, crawler and index together."""

    def __init__(self, config: Optional[AutoGatherConfig] = None,
                 store: Optional[DocumentStore] = None):
        self.config = config or AutoGatherConfig()
        self.store = store or DocumentStore(self.config.store)
        self.store.initialize()
        self.extractor = DocumentExtractor()
        self.crawler = SourceCrawler(self.store, self.extractor, self.config.crawl)
        self.index = SearchIndex(self.store, self.config.search)

    @classmethod
    def from_env(cls) -> 'AutoGather':
        return cls(AutoGatherConfig.from_env())

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> 'AutoGather':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # Sources

    def add_source(self, request: AddSourceRequest) -> SourceConfig:
        request.validate()

        source = SourceConfig(
            id=generate_source_id(),
            name=request.name,
            type=SourceType(request.type),
            url=request.url,
            enabled=request.enabled,
            schedule=request.schedule,
            filters=request.filters or SourceFilters(),
            settings=dict(request.settings),
        )
        self.store.save_source(source)
        logger.info(f"Source '{source.name}' added as {source.id}")
        return source

    def get_source(self, source_id: str) -> SourceConfig:
        source = self.store.get_source(source_id)
        if source is None:
            raise NotFoundError("Source", source_id)
        return source

    def list_sources(self, enabled_only: bool = False) -> List[SourceConfig]:
        return self.store.list_sources(enabled_only=enabled_only)

    def update_source(self, request: UpdateSourceRequest) -> SourceConfig:
        request.validate()
        source = self.get_source(request.source_id)

        if request.name is not None:
            source.name = request.name
        if request.enabled is not None:
            source.enabled = request.enabled
        if request.schedule is not None:
            source.schedule = request.schedule
        if request.settings is not None:
            source.settings = dict(request.settings)
        if request.filters is not None:
            source.filters = source.filters.merged(request.filters)

        self.store.save_source(source)
        logger.info(f"Source '{source.name}' updated")
        return source

    def delete_source(self, source_id: str) -> bool:
        source = self.get_source(source_id)
        deleted = self.store.delete_source(source_id)
        self.index.invalidate()
        logger.info(f"Source '{source.name}' deleted")
        return deleted

    def describe_source(self, source_id: str) -> Dict[str, Any]:
        """Source, latest status, document count and five most recent documents."""
        source = self.get_source(source_id)
        status = self.store.get_source_status(source_id)
        recent = self.store.documents_by_source(source_id, limit=5)

        return {
            'source': source.to_dict(),
            'status': status.to_dict() if status else None,
            'documents_count': self.store.count_documents(source_id),
            'recent_documents': [
                {
                    'id': doc.id,
                    'title': doc.title,
                    'type': doc.type.value,
                    'updated_at': format_datetime(doc.updated_at),
                }
                for doc in recent
            ],
        }

    def list_sources_with_status(self, enabled_only: bool = False) -> List[Dict[str, Any]]:
        listing = []
        for source in self.list_sources(enabled_only=enabled_only):
            status = self.store.get_source_status(source.id)
            entry = source.to_dict()
            entry['status'] = status.status.value if status else CrawlStatus.IDLE.value
            entry['documents_count'] = status.documents_processed if status else 0
            listing.append(entry)
        return listing

    def sync_sources_from_dir(self, sources_dir: Optional[Union[str, Path]] = None) -> List[SourceConfig]:
        """Upsert every valid YAML source definition into the store."""
        sources_dir = sources_dir or self.config.sources_dir
        if not sources_dir:
            return []

        loaded = SourceLoader(sources_dir).load_all_sources()
        synced = []
        for source in loaded.values():
            existing = self.store.get_source(source.id)
            if existing is not None:
                source.last_crawled = existing.last_crawled
            self.store.save_source(source)
            synced.append(source)

        logger.info(f"Synced {len(synced)} sources from {sources_dir}")
        return synced

    # Crawling

    def crawl_source(self, source_id: str) -> RunResult:
        source = self.get_source(source_id)
        result = self.crawler.run(source)
        if result.processed:
            self.index.invalidate()
        return result

    def crawl_all_enabled(self) -> Dict[str, RunResult]:
        results = self.crawler.run_all_enabled()
        if any(r.processed for r in results.values()):
            self.index.invalidate()
        return results

    def summarize_runs(self, results: Dict[str, RunResult]) -> Dict[str, Any]:
        """Totals across a ``crawl_all_enabled`` result mapping."""
        summary: Dict[str, Any] = {
            'sources_processed': len(results),
            'total_documents_found': 0,
            'total_documents_processed': 0,
            'total_documents_skipped': 0,
            'total_errors': 0,
            'source_results': [],
        }
        for source_id, result in results.items():
            source = self.store.get_source(source_id)
            summary['total_documents_found'] += result.found
            summary['total_documents_processed'] += result.processed
            summary['total_documents_skipped'] += result.skipped
            summary['total_errors'] += len(result.errors)
            summary['source_results'].append({
                'source_id': source_id,
                'source_name': source.name if source else 'Unknown',
                'result': result.to_dict(),
            })
        return summary

    def get_status(self, source_id: str) -> Optional[SourceStatus]:
        self.get_source(source_id)
        return self.store.get_source_status(source_id)

    # Documents and search

    def search(self, request: SearchRequest) -> List[SearchResult]:
        request.validate()
        options = SearchOptions(
            limit=request.limit,
            threshold=request.threshold,
            source_ids=list(request.source_ids or []),
            types=[DocumentType(t) for t in request.types or []],
            tags=list(request.tags or []),
        )
        return self.index.search(request.query, options)

    def get_document(self, document_id: str) -> Document:
        document = self.store.get_document(document_id)
        if document is None:
            raise NotFoundError("Document", document_id)
        return document

    def recent_documents(self, limit: int = 20) -> List[Document]:
        return self.index.recent_documents(limit)

    def similar_documents(self, document_id: str, limit: int = 10) -> List[SearchResult]:
        self.get_document(document_id)
        return self.index.similar_documents(document_id, limit)

    def stats(self) -> Dict[str, Any]:
        self.index.refresh()
        index_stats = self.index.index_stats()
        return {
            'documents': self.store.get_document_stats().to_dict(),
            'search': {
                'indexed_documents': index_stats['document_count'],
                'last_index_update': format_datetime(index_stats['last_update']),
            },
        }
