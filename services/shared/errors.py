"""Error taxonomy shared by the autogather core."""

from typing import Optional


class AutoGatherError(Exception):
    """Base class for all core errors."""
    pass


class ConfigurationError(AutoGatherError):
    """Raised when a source cannot be crawled as configured.

    Covers an inaccessible or non-directory root and source types the
    crawler does not implement. Fatal to a single crawl run only.
    """
    pass


class ExtractionError(AutoGatherError):
    """Raised when a single file cannot be read or parsed."""

    def __init__(self, path: str, message: str):
        super().__init__(f"Error processing file {path}: {message}")
        self.path = path


class NotFoundError(AutoGatherError):
    """Raised when an operation references a missing source or document."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class ValidationError(AutoGatherError):
    """Raised when input to a core operation is malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field
