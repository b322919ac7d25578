"""Typed request structs for the core operations.

Each request checks its own fields in ``validate()`` and raises
``ValidationError`` before anything touches the store.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from indexer.source_schema import LOCAL_URL_PREFIX, DocumentType, SourceFilters, SourceType
from .errors import ValidationError

DOCUMENT_TYPES = {t.value for t in DocumentType}
SOURCE_TYPES = {t.value for t in SourceType}


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _require_text(value: Any, field_name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required", field=field_name)


def _check_string_list(value: Any, field_name: str) -> None:
    if value is None:
        return
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{field_name} must be a list of strings", field=field_name)


def _check_positive_int(value: Any, field_name: str) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field_name} must be a positive integer", field=field_name)


def _check_filters(filters: Optional[SourceFilters]) -> None:
    if filters is None:
        return
    if not isinstance(filters, SourceFilters):
        raise ValidationError("filters must be a SourceFilters", field="filters")
    _check_string_list(filters.include, "filters.include")
    _check_string_list(filters.exclude, "filters.exclude")
    _check_positive_int(filters.max_depth, "filters.max_depth")
    _check_positive_int(filters.max_size, "filters.max_size")


def _filters_from(data: Dict[str, Any]) -> Optional[SourceFilters]:
    raw = data.get('filters')
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValidationError("filters must be a mapping", field="filters")
    _check_string_list(raw.get('include'), "filters.include")
    _check_string_list(raw.get('exclude'), "filters.exclude")
    return SourceFilters.from_dict(raw)


@dataclass
class AddSourceRequest:
    name: str
    type: str
    url: str
    enabled: bool = True
    schedule: Optional[str] = None
    filters: Optional[SourceFilters] = None
    settings: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        _require_text(self.name, "name")
        _require_text(self.url, "url")
        if _enum_value(self.type) not in SOURCE_TYPES:
            raise ValidationError(f"Invalid source type: {self.type}", field="type")
        if _enum_value(self.type) == SourceType.LOCAL.value and not self.url.startswith(LOCAL_URL_PREFIX):
            raise ValidationError(f"Local source url must start with {LOCAL_URL_PREFIX}", field="url")
        if not isinstance(self.enabled, bool):
            raise ValidationError("enabled must be a boolean", field="enabled")
        if self.schedule is not None and not isinstance(self.schedule, str):
            raise ValidationError("schedule must be a string", field="schedule")
        if not isinstance(self.settings, dict):
            raise ValidationError("settings must be a mapping", field="settings")
        _check_filters(self.filters)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AddSourceRequest':
        return cls(
            name=data.get('name'),
            type=data.get('type', SourceType.LOCAL.value),
            url=data.get('url'),
            enabled=data.get('enabled', True),
            schedule=data.get('schedule'),
            filters=_filters_from(data),
            settings=data.get('settings') or {},
        )


@dataclass
class UpdateSourceRequest:
    """Only the fields that are set are applied; filters are merged."""
    source_id: str
    name: Optional[str] = None
    enabled: Optional[bool] = None
    schedule: Optional[str] = None
    filters: Optional[SourceFilters] = None
    settings: Optional[Dict[str, Any]] = None

    def validate(self) -> None:
        _require_text(self.source_id, "source_id")
        if self.name is not None:
            _require_text(self.name, "name")
        if self.enabled is not None and not isinstance(self.enabled, bool):
            raise ValidationError("enabled must be a boolean", field="enabled")
        if self.schedule is not None and not isinstance(self.schedule, str):
            raise ValidationError("schedule must be a string", field="schedule")
        if self.settings is not None and not isinstance(self.settings, dict):
            raise ValidationError("settings must be a mapping", field="settings")
        _check_filters(self.filters)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UpdateSourceRequest':
        return cls(
            source_id=data.get('source_id'),
            name=data.get('name'),
            enabled=data.get('enabled'),
            schedule=data.get('schedule'),
            filters=_filters_from(data),
            settings=data.get('settings'),
        )


@dataclass
class SearchRequest:
    query: str
    limit: Optional[int] = None
    threshold: Optional[float] = None
    source_ids: List[str] = field(default_factory=list)
    types: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)

    def validate(self) -> None:
        if not isinstance(self.query, str):
            raise ValidationError("query must be a string", field="query")
        _check_positive_int(self.limit, "limit")
        if self.threshold is not None:
            if isinstance(self.threshold, bool) or not isinstance(self.threshold, (int, float)):
                raise ValidationError("threshold must be a number", field="threshold")
            if not 0.0 <= self.threshold <= 1.0:
                raise ValidationError("threshold must be between 0 and 1", field="threshold")
        _check_string_list(self.source_ids, "source_ids")
        _check_string_list(self.types, "types")
        _check_string_list(self.tags, "tags")
        for doc_type in self.types or []:
            if _enum_value(doc_type) not in DOCUMENT_TYPES:
                raise ValidationError(f"Invalid document type: {doc_type}", field="types")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SearchRequest':
        return cls(
            query=data.get('query'),
            limit=data.get('limit'),
            threshold=data.get('threshold'),
            source_ids=data.get('source_ids') or [],
            types=data.get('types') or [],
            tags=data.get('tags') or [],
        )
