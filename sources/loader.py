"""Source configuration loader for autogather.

Loads source definitions from YAML files so a set of sources can be kept
under version control and synced into the document store.

Example ``sources/team-docs.yaml``::

    name: Team docs
    type: local
    url: file:///srv/docs
    filters:
      include: ["*.md", "*.html"]
      exclude: ["drafts/**"]
      maxDepth: 5
"""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional, Union
import logging

from indexer.source_schema import LOCAL_URL_PREFIX, SourceConfig, SourceType

logger = logging.getLogger(__name__)


def validate_source_data(data: Dict[str, Any]) -> None:
    """Raise ValueError if a source definition is unusable."""
    if not data.get('name'):
        raise ValueError("Source name cannot be empty")

    if not data.get('url'):
        raise ValueError("Source must have a url")

    source_type = data.get('type', SourceType.LOCAL.value)
    if source_type not in {t.value for t in SourceType}:
        raise ValueError(f"Invalid source type: {source_type}")

    if source_type == SourceType.LOCAL.value and not str(data['url']).startswith(LOCAL_URL_PREFIX):
        raise ValueError(f"Local source url must start with {LOCAL_URL_PREFIX}")

    filters = data.get('filters') or {}
    if not isinstance(filters, dict):
        raise ValueError("Filters must be a mapping")
    for key in ('include', 'exclude'):
        patterns = filters.get(key)
        if patterns is not None and (
                not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns)):
            raise ValueError(f"Filter {key} must be a list of glob patterns")
    for key in ('maxDepth', 'max_depth', 'maxSize', 'max_size'):
        value = filters.get(key)
        if value is not None and (not isinstance(value, int) or value <= 0):
            raise ValueError(f"Filter {key} must be a positive integer")


class SourceLoader:
    """Loads source configurations from YAML files."""

    def __init__(self, sources_dir: Union[str, Path]):
        """Initialize source loader.

        Args:
            sources_dir: Directory containing source YAML files.
        """
        self.sources_dir = Path(sources_dir)
        self._cache: Dict[str, SourceConfig] = {}
        self._last_modified: Dict[str, float] = {}

    def load_source_config(self, source_id: str) -> Optional[SourceConfig]:
        """Load configuration for a specific source.

        Args:
            source_id: Id of the source (the file name without .yaml extension)

        Returns:
            SourceConfig if found and valid, None otherwise
        """
        yaml_file = self.sources_dir / f"{source_id}.yaml"

        if not yaml_file.exists():
            logger.warning(f"Source configuration not found: {yaml_file}")
            return None

        # Check if we need to reload from cache
        current_mtime = yaml_file.stat().st_mtime
        if (source_id in self._cache and
                source_id in self._last_modified and
                self._last_modified[source_id] >= current_mtime):
            return self._cache[source_id]

        try:
            with open(yaml_file, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)

            if not data or not isinstance(data, dict):
                logger.error(f"Empty or invalid YAML file: {yaml_file}")
                return None

            # The file name is the stable id
            if data.get('id') and data['id'] != source_id:
                logger.warning(f"Source id mismatch in {yaml_file}: {data['id']} != {source_id}")
            data['id'] = source_id
            data.setdefault('type', SourceType.LOCAL.value)

            validate_source_data(data)
            config = SourceConfig.from_dict(data)

            self._cache[source_id] = config
            self._last_modified[source_id] = current_mtime

            logger.info(f"Loaded source configuration: {source_id}")
            return config

        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML file {yaml_file}: {e}")
            return None
        except (ValueError, KeyError) as e:
            logger.error(f"Invalid source configuration in {yaml_file}: {e}")
            return None

    def load_all_sources(self) -> Dict[str, SourceConfig]:
        """Load all source configurations from the sources directory.

        Returns:
            Dictionary mapping source ids to SourceConfig objects
        """
        sources = {}

        if not self.sources_dir.exists():
            logger.warning(f"Sources directory not found: {self.sources_dir}")
            return sources

        for yaml_file in sorted(self.sources_dir.glob("*.yaml")):
            config = self.load_source_config(yaml_file.stem)
            if config:
                sources[yaml_file.stem] = config

        logger.info(f"Loaded {len(sources)} source configurations")
        return sources

    def get_enabled_sources(self) -> Dict[str, SourceConfig]:
        """Get all enabled source configurations."""
        all_sources = self.load_all_sources()
        return {source_id: config for source_id, config in all_sources.items() if config.enabled}

    def reload_cache(self):
        """Clear cache to force reload of all configurations."""
        self._cache.clear()
        self._last_modified.clear()
        logger.info("Source configuration cache cleared")
