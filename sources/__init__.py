"""Sources package for autogather.

Provides loading of YAML source definitions.
"""

from .loader import (
    SourceLoader,
    validate_source_data,
)

__all__ = [
    'SourceLoader',
    'validate_source_data',
]
