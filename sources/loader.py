"""Source configuration loader for n8n-rag-sync.

Loads and validates the upstream origin definitions from YAML files.
"""

import yaml
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)


@dataclass
class TreeSourceConfig:
    """Configuration for a GitHub tree origin (documentation or node sources)."""
    name: str
    repo: str
    path_prefixes: List[str]
    include_suffixes: List[str] = field(default_factory=lambda: [".md"])
    exclude_patterns: List[str] = field(default_factory=list)
    node_type_prefixes: List[str] = field(default_factory=lambda: ["n8n-nodes-base."])
    batch_size: int = 15
    batch_delay: float = 0.5
    enabled: bool = True

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.name:
            raise ValueError("Source name cannot be empty")

        if not self.repo or "/" not in self.repo:
            raise ValueError(f"Invalid repo for source {self.name}: {self.repo!r}")

        if not self.path_prefixes:
            raise ValueError("Source must have at least one path prefix")

        if self.batch_size <= 0:
            raise ValueError("Batch size must be positive")

        if self.batch_delay < 0:
            raise ValueError("Batch delay cannot be negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TreeSourceConfig':
        """Create TreeSourceConfig from dictionary."""
        return cls(
            name=data['name'],
            repo=data['repo'],
            path_prefixes=data['path_prefixes'],
            include_suffixes=data.get('include_suffixes', [".md"]),
            exclude_patterns=data.get('exclude_patterns', []),
            node_type_prefixes=data.get('node_type_prefixes', ["n8n-nodes-base."]),
            batch_size=data.get('batch_size', 15),
            batch_delay=data.get('batch_delay', 0.5),
            enabled=data.get('enabled', True)
        )

    def matches(self, path: str) -> bool:
        """Check whether a blob path belongs to this source."""
        if not any(path.endswith(suffix) for suffix in self.include_suffixes):
            return False
        return not any(pattern in path for pattern in self.exclude_patterns)


@dataclass
class TemplateSourceConfig:
    """Configuration for the paginated template search API."""
    name: str
    api_base: str
    priority_category: Optional[str] = "ai"
    priority_pages: int = 4
    general_pages: int = 2
    rows_per_page: int = 50
    concurrency: int = 5
    batch_delay: float = 0.3
    max_retries: int = 3
    enabled: bool = True

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.api_base.startswith(("http://", "https://")):
            raise ValueError(f"Invalid api_base: {self.api_base!r}")

        if self.rows_per_page <= 0 or self.concurrency <= 0:
            raise ValueError("rows_per_page and concurrency must be positive")

        if self.priority_pages < 0 or self.general_pages < 0:
            raise ValueError("Page counts cannot be negative")

        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")

        self.api_base = self.api_base.rstrip("/")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TemplateSourceConfig':
        """Create TemplateSourceConfig from dictionary."""
        return cls(
            name=data['name'],
            api_base=data['api_base'],
            priority_category=data.get('priority_category', 'ai'),
            priority_pages=data.get('priority_pages', 4),
            general_pages=data.get('general_pages', 2),
            rows_per_page=data.get('rows_per_page', 50),
            concurrency=data.get('concurrency', 5),
            batch_delay=data.get('batch_delay', 0.3),
            max_retries=data.get('max_retries', 3),
            enabled=data.get('enabled', True)
        )


DEFAULT_SOURCES: Dict[str, Dict[str, Any]] = {
    "n8n-docs": {
        "name": "n8n-docs",
        "repo": "n8n-io/n8n-docs",
        "path_prefixes": [
            "docs/integrations/builtin/app-nodes",
            "docs/integrations/builtin/core-nodes",
            "docs/integrations/builtin/trigger-nodes",
            "docs/integrations/builtin/cluster-nodes",
        ],
        "include_suffixes": ["/index.md"],
    },
    "n8n-nodes": {
        "name": "n8n-nodes",
        "repo": "n8n-io/n8n",
        "path_prefixes": ["packages/nodes-base/nodes"],
        "include_suffixes": [".node.ts"],
        "exclude_patterns": [".test.", "__tests__"],
        "batch_size": 15,
        "batch_delay": 0.5,
    },
    "n8n-templates": {
        "name": "n8n-templates",
        "api_base": "https://api.n8n.io/api",
    },
}


class SourceLoader:
    """Loads source configurations from YAML files."""

    def __init__(self, sources_dir: Optional[Path] = None):
        """Initialize source loader.

        Args:
            sources_dir: Directory containing source YAML files.
                        Defaults to 'sources' directory relative to this file.
        """
        if sources_dir is None:
            sources_dir = Path(__file__).parent

        self.sources_dir = Path(sources_dir)
        self._cache: Dict[str, Dict[str, Any]] = {}

    def _load_raw(self, source_name: str) -> Dict[str, Any]:
        """Read the YAML for a source, falling back to the built-in defaults."""
        if source_name in self._cache:
            return self._cache[source_name]

        data = dict(DEFAULT_SOURCES.get(source_name, {}))
        yaml_file = self.sources_dir / f"{source_name}.yaml"

        if yaml_file.exists():
            try:
                with open(yaml_file, 'r', encoding='utf-8') as f:
                    file_data = yaml.safe_load(f) or {}
                data.update(file_data)
            except yaml.YAMLError as e:
                logger.error(f"Failed to parse YAML file {yaml_file}: {e}")
        else:
            logger.debug(f"Source configuration not found, using defaults: {yaml_file}")

        if data.get('name') and data['name'] != source_name:
            logger.warning(f"Source name mismatch in {yaml_file}: {data['name']} != {source_name}")
        data['name'] = source_name

        self._cache[source_name] = data
        return data

    def load_tree_source(self, source_name: str) -> TreeSourceConfig:
        """Load a GitHub tree origin. Raises ValueError on invalid configuration."""
        try:
            return TreeSourceConfig.from_dict(self._load_raw(source_name))
        except KeyError as e:
            raise ValueError(f"Source {source_name} is missing required field {e}") from e

    def load_template_source(self, source_name: str = "n8n-templates") -> TemplateSourceConfig:
        """Load the template API origin. Raises ValueError on invalid configuration."""
        try:
            return TemplateSourceConfig.from_dict(self._load_raw(source_name))
        except KeyError as e:
            raise ValueError(f"Source {source_name} is missing required field {e}") from e

    def load_node_registry(self, filename: str = "node_registry.yaml") -> Dict[str, Dict[str, Any]]:
        """Load the curated node display registry. Missing file yields an empty registry."""
        registry_file = self.sources_dir / filename
        if not registry_file.exists():
            logger.warning(f"Node registry not found: {registry_file}")
            return {}

        with open(registry_file, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Node registry {registry_file} must be a mapping")
        return data

    def reload_cache(self):
        """Clear cache to force reload of all configurations."""
        self._cache.clear()
        logger.info("Source configuration cache cleared")
