"""In-memory fuzzy search index over the document store.

The index holds a private snapshot of all documents belonging to registered
sources. It never writes to the store and rebuilds itself in full whenever
the store reports newer content than the snapshot.
"""

import time
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config.settings import SearchConfig
from observability.logging import log_performance
from observability.prometheus_metrics import record_index_rebuild, record_search_metrics
from .fuzzy import FuzzyHit, FuzzyIndex
from .source_schema import Document, DocumentStats, DocumentType, SearchResult, utcnow
from .sqlite_adapter import DocumentStore

logger = logging.getLogger(__name__)

SEARCH_KEYS: Tuple[Tuple[str, float], ...] = (
    ('title', 0.4),
    ('content', 0.3),
    ('tags', 0.2),
    ('metadata.fileName', 0.1),
)


@dataclass
class SearchOptions:
    """Per-query options; unset values fall back to ``SearchConfig``."""
    limit: Optional[int] = None
    threshold: Optional[float] = None
    source_ids: List[str] = field(default_factory=list)
    types: List[DocumentType] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)


class SearchIndex:
    """Fuzzy, weighted, filterable search with highlights and similarity lookup.

    Staleness is judged from the store's document count and newest
    ``updated_at``. An in-place rewrite that keeps both unchanged (same
    count, an older modification time) goes unnoticed until ``invalidate()``
    is called; ``AutoGather`` does so after every crawl that wrote documents
    and after a source is deleted.

    Only the first ``SearchConfig.max_scan_chars`` characters of each field
    are fuzzy-matched. Highlights fall back to a substring scan of the full
    content.
    """

    def __init__(self, store: DocumentStore, config: Optional[SearchConfig] = None):
        self.store = store
        self.config = config or SearchConfig()
        self.documents: List[Document] = []
        self.built_at: Optional[datetime] = None
        self._fuzzy: Optional[FuzzyIndex] = None
        self._signature: Optional[Tuple[int, Optional[datetime]]] = None
        self._invalidated = True

    # Staleness

    def invalidate(self) -> None:
        """Force a rebuild before the next query."""
        self._invalidated = True

    def is_stale(self, stats: DocumentStats) -> bool:
        if self._invalidated or self._fuzzy is None or self.built_at is None:
            return True
        if stats.last_updated is not None and stats.last_updated > self.built_at:
            return True
        return (stats.total_documents, stats.last_updated) != self._signature

    def refresh(self) -> bool:
        """Rebuild if the store changed since the last build. Returns True if rebuilt."""
        stats = self.store.get_document_stats()
        if self.is_stale(stats):
            self.rebuild(stats)
            return True
        return False

    @log_performance(threshold_ms=500.0)
    def rebuild(self, stats: Optional[DocumentStats] = None) -> None:
        """Full rebuild from the store."""
        stats = stats or self.store.get_document_stats()

        documents: List[Document] = []
        for source in self.store.list_sources():
            documents.extend(self.store.documents_by_source(source.id))

        self.documents = documents
        self._fuzzy = self._build(self.config.threshold)
        self.built_at = utcnow()
        self._signature = (stats.total_documents, stats.last_updated)
        self._invalidated = False

        record_index_rebuild(len(documents))
        logger.info(f"Search index rebuilt with {len(documents)} documents")

    def _build(self, threshold: float) -> FuzzyIndex:
        return FuzzyIndex(
            self.documents,
            SEARCH_KEYS,
            threshold=threshold,
            min_match_char_length=self.config.min_match_char_length,
            ignore_location=True,
            max_field_length=self.config.max_scan_chars,
        )

    # Queries

    def search(self, query: str, options: Optional[SearchOptions] = None) -> List[SearchResult]:
        """Ranked fuzzy search; higher score is better."""
        options = options or SearchOptions()
        start_time = time.time()

        try:
            results = self._search(query, options)
        except Exception as e:
            record_search_metrics("fuzzy", time.time() - start_time, 0, error=str(e))
            raise

        record_search_metrics("fuzzy", time.time() - start_time, len(results))
        return results

    def _search(self, query: str, options: SearchOptions) -> List[SearchResult]:
        self.refresh()

        if not query.strip():
            return []

        limit = options.limit or self.config.default_limit
        threshold = options.threshold if options.threshold is not None else self.config.threshold

        fuzzy = self._fuzzy
        if threshold != self.config.threshold:
            fuzzy = self._build(threshold)

        # Over-fetch so the filters below do not starve the result set
        hits = fuzzy.search(query, limit=limit * 2)

        if options.source_ids:
            hits = [h for h in hits if h.item.source_id in options.source_ids]
        if options.types:
            wanted = {DocumentType(t) for t in options.types}
            hits = [h for h in hits if h.item.type in wanted]
        if options.tags:
            hits = [h for h in hits if set(h.item.tags or []) & set(options.tags)]

        return [
            SearchResult(
                document=hit.item,
                score=min(1.0, max(0.0, 1.0 - hit.score)),
                highlights=self._highlights(hit, query),
            )
            for hit in hits[:limit]
        ]

    def recent_documents(self, limit: int = 20) -> List[Document]:
        self.refresh()
        return _newest_first(self.documents)[:limit]

    def similar_documents(self, document_id: str, limit: int = 10) -> List[SearchResult]:
        """Documents resembling the given one, never including it."""
        document = self.store.get_document(document_id)
        if document is None:
            return []

        query = " ".join([document.title] + list(document.tags or []))
        results = self.search(query, SearchOptions(limit=limit + 1))
        return [r for r in results if r.document.id != document_id][:limit]

    def documents_by_type(self, doc_type: DocumentType, limit: int = 50) -> List[Document]:
        self.refresh()
        doc_type = DocumentType(doc_type)
        return _newest_first(d for d in self.documents if d.type == doc_type)[:limit]

    def documents_by_source(self, source_id: str, limit: int = 50) -> List[Document]:
        return self.store.documents_by_source(source_id, limit=limit)

    def documents_by_tags(self, tags: Sequence[str], limit: int = 50) -> List[Document]:
        self.refresh()
        wanted = set(tags)
        return _newest_first(d for d in self.documents if wanted & set(d.tags or []))[:limit]

    def index_stats(self) -> Dict[str, Any]:
        return {
            'document_count': len(self.documents),
            'last_update': self.built_at,
        }

    # Highlights

    def _highlights(self, hit: FuzzyHit, query: str) -> List[str]:
        highlights: List[str] = []
        for match in hit.matches:
            for start, end in match.indices:
                highlight = self._create_highlight(match.value, start, end)
                if highlight:
                    highlights.append(highlight)

        if not highlights:
            fallback = self._content_highlight(hit.item.content, query)
            if fallback:
                highlights.append(fallback)

        return highlights[:self.config.max_highlights]

    def _create_highlight(self, text: str, start: int, end: int) -> str:
        context = self.config.highlight_context
        highlight_start = max(0, start - context)
        highlight_end = min(len(text), end + context)

        highlight = text[highlight_start:highlight_end]
        if highlight_start > 0:
            highlight = '...' + highlight
        if highlight_end < len(text):
            highlight = highlight + '...'
        return highlight.strip()

    def _content_highlight(self, content: str, query: str) -> Optional[str]:
        context = self.config.highlight_context
        content_lower = content.lower()

        for word in query.lower().split():
            index = content_lower.find(word)
            if index == -1:
                continue
            start = max(0, index - context)
            end = min(len(content), index + len(word) + context)
            highlight = content[start:end].strip()
            if len(highlight) > 10:
                return f"...{highlight}..." if start > 0 else highlight

        return None


def _newest_first(documents) -> List[Document]:
    return sorted(documents, key=lambda d: d.updated_at, reverse=True)
