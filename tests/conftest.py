"""Shared fixtures for the autogather test suite."""

import os
import sys
from datetime import timedelta
from pathlib import Path

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from config.database import StoreConfig
from config.settings import AutoGatherConfig
from indexer.source_schema import (
    Document,
    DocumentType,
    SourceConfig,
    SourceFilters,
    SourceType,
    utcnow,
)
from indexer.sqlite_adapter import DocumentStore
from services.gather import AutoGather
from services.shared.incremental import make_document_id

GUIDE_MD = "---\ntitle: Setup\ntags: [setup]\n---\n# Setup\nRun `npm install`.\n"


@pytest.fixture
def store(tmp_path):
    """Initialized store backed by a temporary SQLite file."""
    db = DocumentStore(StoreConfig(path=str(tmp_path / "store" / "test.db")))
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def gather(tmp_path):
    config = AutoGatherConfig(store=StoreConfig(path=str(tmp_path / "gather.db")))
    service = AutoGather(config)
    yield service
    service.close()


@pytest.fixture
def docs_dir(tmp_path):
    """A small documentation tree.

    docs/
      guide.md
      notes.txt
      api.json
      page.html
      image.png
      drafts/wip.md
      nested/deep/inner.md
    """
    root = tmp_path / "docs"
    (root / "drafts").mkdir(parents=True)
    (root / "nested" / "deep").mkdir(parents=True)

    (root / "guide.md").write_text(GUIDE_MD, encoding="utf-8")
    (root / "notes.txt").write_text("Release notes\nVersion 2 adds caching.\n", encoding="utf-8")
    (root / "api.json").write_text('{"name": "Payments API", "base_url": "https://pay.example"}', encoding="utf-8")
    (root / "page.html").write_text(
        "<html><head><title>Landing</title></head><body><h1>Welcome</h1></body></html>",
        encoding="utf-8",
    )
    (root / "image.png").write_bytes(b"\x89PNG\r\n\x1a\n")
    (root / "drafts" / "wip.md").write_text("# Work in progress\n", encoding="utf-8")
    (root / "nested" / "deep" / "inner.md").write_text("# Inner page\n", encoding="utf-8")
    return root


def make_source(root: Path, source_id: str = "s1", name: str = None, enabled: bool = True,
                **filters) -> SourceConfig:
    return SourceConfig(
        id=source_id,
        name=name or source_id,
        type=SourceType.LOCAL,
        url=f"file://{root}",
        enabled=enabled,
        filters=SourceFilters(**filters),
    )


def make_document(source_id: str, path: str, title: str, content: str = "",
                  doc_type: DocumentType = DocumentType.MARKDOWN, tags=None,
                  age_minutes: int = 0, **metadata) -> Document:
    updated = utcnow() - timedelta(minutes=age_minutes)
    meta = {'fileName': os.path.basename(path)}
    meta.update(metadata)
    return Document(
        id=make_document_id(source_id, path),
        title=title,
        content=content,
        type=doc_type,
        source_id=source_id,
        source_path=path,
        created_at=updated,
        updated_at=updated,
        metadata=meta,
        tags=list(tags or []),
        size=len(content),
        checksum=None,
    )
