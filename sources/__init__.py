"""Sources package for n8n-rag-sync.

Provides upstream origin configuration loading.
"""

from .loader import (
    TreeSourceConfig,
    TemplateSourceConfig,
    SourceLoader,
    DEFAULT_SOURCES
)

__all__ = [
    'TreeSourceConfig',
    'TemplateSourceConfig',
    'SourceLoader',
    'DEFAULT_SOURCES'
]
