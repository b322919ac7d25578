"""SQLite document store for autogather.

Single source of truth for documents, source configurations and per-source
run status. Every write is an upsert keyed by id and runs in its own
transaction; nothing is composed into larger multi-entity transactions.
"""

import sqlite3
import logging
import json
from typing import List, Dict, Any, Optional
from pathlib import Path

from config.database import StoreConfig
from .source_schema import (
    CrawlStatus,
    Document,
    DocumentStats,
    DocumentType,
    SearchResult,
    SourceConfig,
    SourceFilters,
    SourceStatus,
    SourceType,
    format_datetime,
    parse_datetime,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    type TEXT NOT NULL,
    source_id TEXT NOT NULL,
    source_path TEXT NOT NULL,
    metadata TEXT,
    tags TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    size INTEGER,
    checksum TEXT
);

CREATE TABLE IF NOT EXISTS sources (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    url TEXT NOT NULL,
    enabled INTEGER NOT NULL DEFAULT 1,
    schedule TEXT,
    last_crawled TEXT,
    settings TEXT,
    filters TEXT
);

CREATE TABLE IF NOT EXISTS source_status (
    source_id TEXT PRIMARY KEY REFERENCES sources (id),
    status TEXT NOT NULL,
    last_run TEXT,
    last_error TEXT,
    documents_found INTEGER DEFAULT 0,
    documents_processed INTEGER DEFAULT 0,
    documents_skipped INTEGER DEFAULT 0,
    duration INTEGER
);

CREATE INDEX IF NOT EXISTS idx_documents_source_id ON documents(source_id);
CREATE INDEX IF NOT EXISTS idx_documents_type ON documents(type);
CREATE INDEX IF NOT EXISTS idx_documents_updated_at ON documents(updated_at DESC);
CREATE INDEX IF NOT EXISTS idx_sources_enabled ON sources(enabled);
"""


class DocumentStore:
    """SQLite-backed store with upsert semantics."""

    def __init__(self, config: Optional[StoreConfig] = None):
        self.config = config or StoreConfig()
        self.db_path = self.config.path
        self.conn: Optional[sqlite3.Connection] = None

    def initialize(self) -> None:
        """Open the connection and ensure the schema exists. Idempotent."""
        if self.conn is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute(f"PRAGMA journal_mode = {self.config.journal_mode.value}")
            self.conn.execute(f"PRAGMA busy_timeout = {int(self.config.busy_timeout_ms)}")
            self.conn.executescript(SCHEMA)
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize SQLite store at {self.db_path}: {e}")
            self.conn = None
            raise

        logger.info(f"Document store initialized: {self.db_path}")

    def close(self) -> None:
        """Close the SQLite connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Document store closed")

    def __enter__(self) -> 'DocumentStore':
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _connection(self) -> sqlite3.Connection:
        if self.conn is None:
            self.initialize()
        return self.conn

    # Document operations

    def save_document(self, doc: Document) -> None:
        """Insert or fully replace a document row."""
        conn = self._connection()
        with conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO documents
                (id, title, content, type, source_id, source_path, metadata, tags,
                 created_at, updated_at, size, checksum)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    doc.id,
                    doc.title,
                    doc.content,
                    doc.type.value,
                    doc.source_id,
                    doc.source_path,
                    json.dumps(doc.metadata, default=str) if doc.metadata else None,
                    json.dumps(list(doc.tags)) if doc.tags else None,
                    format_datetime(doc.created_at),
                    format_datetime(doc.updated_at),
                    doc.size,
                    doc.checksum,
                )
            )

    def get_document(self, doc_id: str) -> Optional[Document]:
        row = self._connection().execute(
            "SELECT * FROM documents WHERE id = ?", (doc_id,)
        ).fetchone()
        return self._row_to_document(row) if row else None

    def delete_document(self, doc_id: str) -> bool:
        conn = self._connection()
        with conn:
            cursor = conn.execute("DELETE FROM documents WHERE id = ?", (doc_id,))
        return cursor.rowcount > 0

    def list_documents(self) -> List[Document]:
        """All documents, most recently updated first."""
        rows = self._connection().execute(
            "SELECT * FROM documents ORDER BY updated_at DESC"
        ).fetchall()
        return [self._row_to_document(row) for row in rows]

    def documents_by_source(self, source_id: str, limit: Optional[int] = None) -> List[Document]:
        sql = "SELECT * FROM documents WHERE source_id = ? ORDER BY updated_at DESC"
        params: List[Any] = [source_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = self._connection().execute(sql, params).fetchall()
        return [self._row_to_document(row) for row in rows]

    def documents_by_type(self, doc_type: DocumentType, limit: Optional[int] = None) -> List[Document]:
        sql = "SELECT * FROM documents WHERE type = ? ORDER BY updated_at DESC"
        params: List[Any] = [DocumentType(doc_type).value]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = self._connection().execute(sql, params).fetchall()
        return [self._row_to_document(row) for row in rows]

    def count_documents(self, source_id: Optional[str] = None) -> int:
        if source_id is None:
            row = self._connection().execute("SELECT COUNT(*) FROM documents").fetchone()
        else:
            row = self._connection().execute(
                "SELECT COUNT(*) FROM documents WHERE source_id = ?", (source_id,)
            ).fetchone()
        return row[0]

    def search_documents(self, query: str, limit: int = 50) -> List[SearchResult]:
        """Plain substring search; title hits score 3, content-only hits score 1.

        This is the store-level fallback. Ranked fuzzy retrieval lives in
        ``indexer.search_index``.
        """
        if not query.strip():
            return []

        term = f"%{_escape_like(query)}%"
        rows = self._connection().execute(
            """
            SELECT *,
                (CASE
                    WHEN title LIKE ? ESCAPE '\\' THEN 3
                    WHEN content LIKE ? ESCAPE '\\' THEN 1
                    ELSE 0
                END) AS score
            FROM documents
            WHERE title LIKE ? ESCAPE '\\' OR content LIKE ? ESCAPE '\\'
            ORDER BY score DESC, updated_at DESC
            LIMIT ?
            """,
            (term, term, term, term, limit)
        ).fetchall()

        results = []
        for row in rows:
            doc = self._row_to_document(row)
            results.append(SearchResult(
                document=doc,
                score=float(row['score']),
                highlights=_substring_highlights(doc.content, query),
            ))
        return results

    def get_document_stats(self) -> DocumentStats:
        """Aggregate statistics computed from the current document rows."""
        conn = self._connection()

        total = conn.execute(
            "SELECT COUNT(*) AS count, COALESCE(SUM(size), 0) AS total_size, "
            "MAX(updated_at) AS last_updated FROM documents"
        ).fetchone()
        by_type = conn.execute(
            "SELECT type, COUNT(*) AS count FROM documents GROUP BY type"
        ).fetchall()
        by_source = conn.execute(
            "SELECT source_id, COUNT(*) AS count FROM documents GROUP BY source_id"
        ).fetchall()

        return DocumentStats(
            total_documents=total['count'] or 0,
            documents_by_type={row['type']: row['count'] for row in by_type},
            documents_by_source={row['source_id']: row['count'] for row in by_source},
            total_size=total['total_size'] or 0,
            last_updated=parse_datetime(total['last_updated']),
        )

    # Source operations

    def save_source(self, source: SourceConfig) -> None:
        """Insert or fully replace a source row."""
        conn = self._connection()
        filters = source.filters.to_dict()
        with conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO sources
                (id, name, type, url, enabled, schedule, last_crawled, settings, filters)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    source.id,
                    source.name,
                    source.type.value,
                    source.url,
                    1 if source.enabled else 0,
                    source.schedule,
                    format_datetime(source.last_crawled),
                    json.dumps(source.settings, default=str) if source.settings else None,
                    json.dumps(filters) if filters else None,
                )
            )

    def get_source(self, source_id: str) -> Optional[SourceConfig]:
        row = self._connection().execute(
            "SELECT * FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        return self._row_to_source(row) if row else None

    def list_sources(self, enabled_only: bool = False) -> List[SourceConfig]:
        """All sources ordered by name."""
        if enabled_only:
            rows = self._connection().execute(
                "SELECT * FROM sources WHERE enabled = 1 ORDER BY name"
            ).fetchall()
        else:
            rows = self._connection().execute(
                "SELECT * FROM sources ORDER BY name"
            ).fetchall()
        return [self._row_to_source(row) for row in rows]

    def delete_source(self, source_id: str) -> bool:
        """Delete a source after its documents and status.

        The cascade is three ordered, individually atomic statements. A crash
        between them can leave orphaned documents, which a later crawl
        recreates idempotently.
        """
        conn = self._connection()
        with conn:
            removed = conn.execute(
                "DELETE FROM documents WHERE source_id = ?", (source_id,)
            ).rowcount
        with conn:
            conn.execute("DELETE FROM source_status WHERE source_id = ?", (source_id,))
        with conn:
            cursor = conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))

        logger.info(f"Deleted source {source_id} and {removed} documents")
        return cursor.rowcount > 0

    # Source status operations

    def save_source_status(self, status: SourceStatus) -> None:
        """Replace the status row for a source."""
        conn = self._connection()
        with conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO source_status
                (source_id, status, last_run, last_error, documents_found,
                 documents_processed, documents_skipped, duration)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    status.source_id,
                    status.status.value,
                    format_datetime(status.last_run),
                    status.last_error,
                    status.documents_found,
                    status.documents_processed,
                    status.documents_skipped,
                    status.duration,
                )
            )

    def get_source_status(self, source_id: str) -> Optional[SourceStatus]:
        row = self._connection().execute(
            "SELECT * FROM source_status WHERE source_id = ?", (source_id,)
        ).fetchone()
        if not row:
            return None

        return SourceStatus(
            source_id=row['source_id'],
            status=CrawlStatus(row['status']),
            last_run=parse_datetime(row['last_run']),
            last_error=row['last_error'],
            documents_found=row['documents_found'] or 0,
            documents_processed=row['documents_processed'] or 0,
            documents_skipped=row['documents_skipped'] or 0,
            duration=row['duration'],
        )

    # Row mapping

    def _row_to_document(self, row: sqlite3.Row) -> Document:
        return Document(
            id=row['id'],
            title=row['title'],
            content=row['content'],
            type=DocumentType(row['type']),
            source_id=row['source_id'],
            source_path=row['source_path'],
            metadata=json.loads(row['metadata']) if row['metadata'] else {},
            tags=json.loads(row['tags']) if row['tags'] else [],
            created_at=parse_datetime(row['created_at']),
            updated_at=parse_datetime(row['updated_at']),
            size=row['size'],
            checksum=row['checksum'],
        )

    def _row_to_source(self, row: sqlite3.Row) -> SourceConfig:
        return SourceConfig(
            id=row['id'],
            name=row['name'],
            type=SourceType(row['type']),
            url=row['url'],
            enabled=row['enabled'] == 1,
            schedule=row['schedule'],
            last_crawled=parse_datetime(row['last_crawled']),
            settings=json.loads(row['settings']) if row['settings'] else {},
            filters=SourceFilters.from_dict(json.loads(row['filters']) if row['filters'] else None),
        )


def _escape_like(text: str) -> str:
    """Make LIKE wildcards in user input match literally (paired with ESCAPE)."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _substring_highlights(content: str, query: str, context: int = 50) -> List[str]:
    highlights = []
    lowered = content.lower()
    for word in query.lower().split():
        index = lowered.find(word)
        if index == -1:
            continue
        start = max(0, index - context)
        end = min(len(content), index + len(word) + context)
        snippet = content[start:end].strip()
        if len(snippet) > 10:
            highlights.append(f"...{snippet}...")
    return highlights[:3]
