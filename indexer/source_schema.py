from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from datetime import datetime, timezone
from enum import Enum

LOCAL_URL_PREFIX = "file://"


class DocumentType(str, Enum):
    """Normalized document formats produced by extraction."""
    MARKDOWN = "markdown"
    HTML = "html"
    PDF = "pdf"
    TEXT = "text"
    JSON = "json"


class SourceType(str, Enum):
    """Supported source types. Only LOCAL is crawled today."""
    LOCAL = "local"
    GIT = "git"
    WEB = "web"
    API = "api"


class CrawlStatus(str, Enum):
    """Lifecycle of a single crawl run."""
    IDLE = "idle"
    CRAWLING = "crawling"
    SUCCESS = "success"
    ERROR = "error"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def from_timestamp(ts: float) -> datetime:
    """Convert a filesystem timestamp to an aware UTC datetime."""
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO strings (or pass through datetimes) into aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class Document:
    """One normalized unit of extracted content."""
    id: str
    title: str
    content: str
    type: DocumentType
    source_id: str
    source_path: str
    created_at: datetime
    updated_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    size: Optional[int] = None
    checksum: Optional[str] = None

    def to_dict(self, include_content: bool = True) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            'id': self.id,
            'title': self.title,
            'type': self.type.value,
            'source_id': self.source_id,
            'source_path': self.source_path,
            'metadata': self.metadata,
            'tags': list(self.tags),
            'created_at': format_datetime(self.created_at),
            'updated_at': format_datetime(self.updated_at),
            'size': self.size,
            'checksum': self.checksum,
        }
        if include_content:
            result['content'] = self.content
        return result


def _patterns(value: Any) -> List[str]:
    # a lone pattern string would otherwise be split into characters
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


@dataclass
class SourceFilters:
    """Crawl filters for a source; every field is optional."""
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)
    max_depth: Optional[int] = None
    max_size: Optional[int] = None  # bytes

    def merged(self, other: 'SourceFilters') -> 'SourceFilters':
        """Shallow-merge another filter set over this one."""
        return SourceFilters(
            include=list(other.include) if other.include else list(self.include),
            exclude=list(other.exclude) if other.exclude else list(self.exclude),
            max_depth=other.max_depth if other.max_depth is not None else self.max_depth,
            max_size=other.max_size if other.max_size is not None else self.max_size,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.include:
            result['include'] = list(self.include)
        if self.exclude:
            result['exclude'] = list(self.exclude)
        if self.max_depth is not None:
            result['max_depth'] = self.max_depth
        if self.max_size is not None:
            result['max_size'] = self.max_size
        return result

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'SourceFilters':
        """Create from dictionary, accepting camelCase or snake_case keys."""
        if not data:
            return cls()
        return cls(
            include=_patterns(data.get('include')),
            exclude=_patterns(data.get('exclude')),
            max_depth=data.get('max_depth', data.get('maxDepth')),
            max_size=data.get('max_size', data.get('maxSize')),
        )


@dataclass
class SourceConfig:
    """Configuration for a documentation source."""
    id: str
    name: str
    type: SourceType
    url: str
    enabled: bool = True
    schedule: Optional[str] = None  # opaque, never enforced by the core
    last_crawled: Optional[datetime] = None
    filters: SourceFilters = field(default_factory=SourceFilters)
    settings: Dict[str, Any] = field(default_factory=dict)

    @property
    def root_path(self) -> str:
        """Filesystem root for local sources (``file://`` prefix stripped)."""
        if self.url.startswith(LOCAL_URL_PREFIX):
            return self.url[len(LOCAL_URL_PREFIX):]
        return self.url

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type.value,
            'url': self.url,
            'enabled': self.enabled,
            'schedule': self.schedule,
            'last_crawled': format_datetime(self.last_crawled),
            'filters': self.filters.to_dict(),
            'settings': self.settings,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SourceConfig':
        """Create SourceConfig from dictionary."""
        return cls(
            id=data['id'],
            name=data['name'],
            type=SourceType(data['type']),
            url=data['url'],
            enabled=bool(data.get('enabled', True)),
            schedule=data.get('schedule'),
            last_crawled=parse_datetime(data.get('last_crawled')),
            filters=SourceFilters.from_dict(data.get('filters')),
            settings=data.get('settings') or {},
        )


@dataclass
class SourceStatus:
    """Outcome of the latest crawl run for a source. Replaced on every run."""
    source_id: str
    status: CrawlStatus = CrawlStatus.IDLE
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None
    documents_found: int = 0
    documents_processed: int = 0
    documents_skipped: int = 0
    duration: Optional[int] = None  # milliseconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_id': self.source_id,
            'status': self.status.value,
            'last_run': format_datetime(self.last_run),
            'last_error': self.last_error,
            'documents_found': self.documents_found,
            'documents_processed': self.documents_processed,
            'documents_skipped': self.documents_skipped,
            'duration': self.duration,
        }


@dataclass
class DocumentStats:
    """Aggregate statistics over the current document rows."""
    total_documents: int = 0
    documents_by_type: Dict[str, int] = field(default_factory=dict)
    documents_by_source: Dict[str, int] = field(default_factory=dict)
    total_size: int = 0
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_documents': self.total_documents,
            'documents_by_type': dict(self.documents_by_type),
            'documents_by_source': dict(self.documents_by_source),
            'total_size': self.total_size,
            'last_updated': format_datetime(self.last_updated),
        }


@dataclass
class SearchResult:
    """A ranked search hit. Higher score is better, within [0, 1]."""
    document: Document
    score: float
    highlights: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'document': self.document.to_dict(include_content=False),
            'score': self.score,
            'highlights': list(self.highlights),
        }
