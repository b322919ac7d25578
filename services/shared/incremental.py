"""Incremental processing utilities for autogather."""
import hashlib
import logging
from datetime import datetime
from typing import Optional

from indexer.source_schema import Document

logger = logging.getLogger(__name__)


def make_document_id(source_id: str, full_path: str) -> str:
    """Deterministic document id for a file within a source.

    Recrawling the same file always yields the same id, so saves replace
    instead of duplicating.
    """
    return hashlib.sha256(f"{source_id}:{full_path}".encode('utf-8')).hexdigest()


def compute_checksum(raw: bytes) -> str:
    """Compute SHA-256 hash of raw file bytes for change detection."""
    return hashlib.sha256(raw).hexdigest()


def is_up_to_date(existing: Optional[Document], modified_at: datetime) -> bool:
    """Check whether a stored document is at least as new as the file.

    Files whose modification time does not advance past the stored
    ``updated_at`` are skipped, even if their bytes changed.
    """
    if existing is None:
        return False

    if existing.updated_at >= modified_at:
        logger.debug(f"Document unchanged since last crawl: {existing.source_path}")
        return True

    return False
