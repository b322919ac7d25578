"""Store configuration for autogather.

The document store is a single SQLite file opened in a crash-safe journal
mode so readers are not blocked while the crawler writes.
"""

import os
import logging
from enum import Enum
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "data/auto-gather.db"


class JournalMode(str, Enum):
    """SQLite journal modes accepted by the store."""
    WAL = "WAL"
    DELETE = "DELETE"
    TRUNCATE = "TRUNCATE"


class StoreConfig(BaseModel):
    """Document store configuration."""
    path: str = Field(default=DEFAULT_DB_PATH, description="SQLite database path")
    journal_mode: JournalMode = Field(default=JournalMode.WAL, description="SQLite journal mode")
    busy_timeout_ms: int = Field(default=5000, ge=0, description="How long a writer waits on a locked database")

    @classmethod
    def from_env(cls) -> 'StoreConfig':
        """Create configuration from environment variables."""
        return cls(
            path=os.getenv('AUTOGATHER_DB_PATH', DEFAULT_DB_PATH),
            journal_mode=JournalMode(os.getenv('AUTOGATHER_DB_JOURNAL_MODE', 'WAL').upper()),
            busy_timeout_ms=int(os.getenv('AUTOGATHER_DB_BUSY_TIMEOUT_MS', '5000')),
        )
