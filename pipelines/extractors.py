"""Per-format content extraction into normalized documents.

Each ``DocumentType`` has one registered handler taking the raw file bytes and
its path and returning ``ExtractedFields``. New formats register a handler with
``@register_handler``; the routing table maps file extensions onto types.
"""

import io
import os
import re
import json
import logging
import functools
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
import mistune
from bs4 import BeautifulSoup
from pypdf import PdfReader

from indexer.source_schema import Document, DocumentType, from_timestamp, utcnow
from services.shared.errors import ExtractionError
from services.shared.incremental import compute_checksum, make_document_id

logger = logging.getLogger(__name__)

EXTENSION_TYPES: Dict[str, DocumentType] = {
    '.md': DocumentType.MARKDOWN,
    '.markdown': DocumentType.MARKDOWN,
    '.html': DocumentType.HTML,
    '.htm': DocumentType.HTML,
    '.pdf': DocumentType.PDF,
    '.txt': DocumentType.TEXT,
    '.json': DocumentType.JSON,
}

SUPPORTED_EXTENSIONS = tuple(EXTENSION_TYPES)

FRONT_MATTER_RE = re.compile(r"\A---\s*\n(.*?)\n---\s*(?:\n|\Z)", re.DOTALL)
HEADING_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)
WHITESPACE_RE = re.compile(r"\s+")

MAX_TITLE_LENGTH = 100


@dataclass
class ExtractedFields:
    """Format-specific output of a handler, before document assembly."""
    title: str = ""
    content: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)


Handler = Callable[[bytes, str], ExtractedFields]

_HANDLERS: Dict[DocumentType, Handler] = {}


def register_handler(doc_type: DocumentType):
    """Register the extraction handler for a document type."""
    def decorator(func: Handler) -> Handler:
        _HANDLERS[doc_type] = func
        return func
    return decorator


def detect_type(file_path: str) -> DocumentType:
    """Route a path to a document type by extension; unknown means text."""
    ext = Path(file_path).suffix.lower()
    return EXTENSION_TYPES.get(ext, DocumentType.TEXT)


def is_supported(file_path: str) -> bool:
    return Path(file_path).suffix.lower() in EXTENSION_TYPES


def collapse_whitespace(text: str) -> str:
    return WHITESPACE_RE.sub(" ", text).strip()


def _decode(raw: bytes) -> str:
    return raw.decode('utf-8', errors='replace')


def _split_tags(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [t.strip() for t in value.split(',') if t.strip()]
    if isinstance(value, (list, tuple)):
        return [str(t).strip() for t in value if str(t).strip()]
    return [str(value)]


def _first_line_title(text: str) -> str:
    first = text.split('\n', 1)[0].strip()
    return first if len(first) < MAX_TITLE_LENGTH else ""


def _plain_data(value: Any) -> Any:
    """YAML front matter made JSON-serializable: string keys, ISO dates."""
    if isinstance(value, dict):
        return {str(k): _plain_data(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain_data(v) for v in value]
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


# Handlers

@register_handler(DocumentType.MARKDOWN)
def extract_markdown(raw: bytes, file_path: str) -> ExtractedFields:
    text = _decode(raw)
    frontmatter: Dict[str, Any] = {}
    body = text

    match = FRONT_MATTER_RE.match(text)
    if match:
        try:
            loaded = yaml.safe_load(match.group(1))
        except yaml.YAMLError as e:
            logger.warning(f"Invalid front matter in {file_path}: {e}")
            loaded = None
        if isinstance(loaded, dict):
            frontmatter = _plain_data(loaded)
            body = text[match.end():]

    title = str(frontmatter.get('title') or '').strip()
    if not title:
        heading = HEADING_RE.search(body)
        title = heading.group(1).strip() if heading else ""

    html = mistune.html(body)
    # mistune ends every block with a newline, so inline text joins cleanly
    plain = collapse_whitespace(BeautifulSoup(html, "html.parser").get_text())

    return ExtractedFields(
        title=title,
        content=plain,
        metadata={
            'frontmatter': frontmatter,
            'wordCount': len(plain.split()),
        },
        tags=_split_tags(frontmatter.get('tags') or frontmatter.get('keywords')),
    )


@register_handler(DocumentType.HTML)
def extract_html(raw: bytes, file_path: str) -> ExtractedFields:
    soup = BeautifulSoup(_decode(raw), "html.parser")

    for tag in soup(["script", "style"]):
        tag.decompose()

    title = ""
    if soup.title and soup.title.get_text(strip=True):
        title = soup.title.get_text()
    else:
        h1 = soup.find("h1")
        if h1:
            title = h1.get_text()

    root = soup.body or soup
    content = collapse_whitespace(root.get_text(" "))

    metadata: Dict[str, Any] = {}
    for meta in soup.find_all("meta"):
        name = meta.get("name") or meta.get("property") or meta.get("http-equiv")
        value = meta.get("content")
        if name and value:
            metadata[name] = value

    tags = _split_tags(metadata.get("keywords"))

    metadata['headings'] = [
        h.get_text().strip() for h in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"])
    ]
    metadata['links'] = [a["href"] for a in soup.select("a[href]")]

    return ExtractedFields(
        title=title.strip(),
        content=content,
        metadata=metadata,
        tags=tags,
    )


@register_handler(DocumentType.PDF)
def extract_pdf(raw: bytes, file_path: str) -> ExtractedFields:
    try:
        reader = PdfReader(io.BytesIO(raw))
        pages = [page.extract_text() or "" for page in reader.pages]
        info = reader.metadata
    except Exception as e:
        logger.warning(f"PDF parsing failed for {file_path}: {e}")
        return ExtractedFields(
            title="PDF Document",
            content=f"[PDF file - {len(raw)} bytes]",
            metadata={
                'size': len(raw),
                'type': 'pdf',
                'parseError': str(e),
            },
        )

    text = "\n".join(pages)
    title = str(info.title).strip() if info and info.title else ""
    if not title and text:
        title = _first_line_title(text)

    return ExtractedFields(
        title=title,
        content=collapse_whitespace(text),
        metadata={
            'info': {str(k).lstrip('/'): str(v) for k, v in (info or {}).items()},
            'numpages': len(pages),
        },
    )


@register_handler(DocumentType.TEXT)
def extract_text(raw: bytes, file_path: str) -> ExtractedFields:
    text = _decode(raw)
    content = collapse_whitespace(text)
    return ExtractedFields(
        title=_first_line_title(text),
        content=content,
        metadata={
            'lineCount': len(text.split('\n')),
            'wordCount': len(content.split()),
        },
    )


@functools.singledispatch
def flatten_json(value: Any) -> str:
    """Flatten a decoded JSON value into searchable ``key: value`` text."""
    return str(value)


@flatten_json.register(type(None))
def _(value: None) -> str:
    return ""


@flatten_json.register(bool)
def _(value: bool) -> str:
    return "true" if value else "false"


@flatten_json.register(str)
@flatten_json.register(int)
@flatten_json.register(float)
def _(value) -> str:
    return str(value)


@flatten_json.register(list)
def _(value: list) -> str:
    return " ".join(flatten_json(item) for item in value)


@flatten_json.register(dict)
def _(value: dict) -> str:
    parts = []
    for key, item in value.items():
        key_text = re.sub(r"[_-]", " ", str(key))
        parts.append(f"{key_text}: {flatten_json(item)}")
    return " ".join(parts)


@register_handler(DocumentType.JSON)
def extract_json(raw: bytes, file_path: str) -> ExtractedFields:
    try:
        data = json.loads(_decode(raw))
    except ValueError:
        logger.debug(f"Invalid JSON in {file_path}, extracting as text")
        return extract_text(raw, file_path)

    title = "JSON Document"
    keys: List[str] = []
    if isinstance(data, dict):
        title = str(data.get('title') or data.get('name') or data.get('id') or title)
        keys = [str(k) for k in data.keys()]

    return ExtractedFields(
        title=title,
        content=flatten_json(data),
        metadata={
            'type': 'json',
            'keys': keys,
        },
    )


class DocumentExtractor:
    """Turns raw file bytes into a normalized ``Document``."""

    def __init__(self, handlers: Optional[Dict[DocumentType, Handler]] = None):
        self.handlers = dict(_HANDLERS)
        if handlers:
            self.handlers.update(handlers)

    def extract(self, raw: bytes, file_path: str, source_id: str,
                stat: Optional[os.stat_result] = None) -> Optional[Document]:
        """Extract a document from ``raw``.

        The checksum is computed over the raw bytes before any parsing.
        Malformed PDFs and JSON degrade inside their handlers; any other
        handler failure is raised as ``ExtractionError`` for the caller to
        record.
        """
        doc_type = detect_type(file_path)
        handler = self.handlers[doc_type]
        checksum = compute_checksum(raw)

        try:
            fields = handler(raw, file_path)
        except Exception as e:
            raise ExtractionError(file_path, str(e)) from e

        now = utcnow()
        if stat is not None:
            modified = from_timestamp(stat.st_mtime)
            created = from_timestamp(getattr(stat, 'st_birthtime', stat.st_ctime))
            size = stat.st_size
        else:
            modified = created = now
            size = len(raw)

        path = Path(file_path)
        metadata = dict(fields.metadata)
        metadata.update({
            'fileName': path.name,
            'extension': path.suffix.lower(),
            'directory': str(path.parent),
        })

        return Document(
            id=make_document_id(source_id, file_path),
            title=fields.title or path.stem,
            content=fields.content,
            type=doc_type,
            source_id=source_id,
            source_path=file_path,
            created_at=created,
            updated_at=min(modified, now),
            metadata=metadata,
            tags=list(fields.tags),
            size=size,
            checksum=checksum,
        )
