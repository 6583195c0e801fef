"""Pipelines package for n8n-rag-sync.

Provides source parsing, chunk and template record building, and the
ingestion orchestration. The fetchers and ``pipelines.ingest`` are imported
from their modules directly.
"""

from .errors import IngestionError, FetchError, EmbeddingError, ConfigurationError, truncate_message
from .parsers import NodeSourceInfo, parse_node_source, strip_frontmatter, extract_markdown_section
from .chunker import (
    ChunkType,
    ChunkMetadata,
    NodeDocChunk,
    create_node_chunks,
    truncate_content,
    MAX_CONTENT_LENGTH
)
from .templates import (
    TemplateDetail,
    TemplateRecord,
    TemplateSummary,
    build_template_record,
    build_flow_description,
    flatten_template_detail,
    MAX_TEMPLATE_CONTENT_LENGTH
)

__all__ = [
    # Errors
    'IngestionError',
    'FetchError',
    'EmbeddingError',
    'ConfigurationError',
    'truncate_message',

    # Parsers
    'NodeSourceInfo',
    'parse_node_source',
    'strip_frontmatter',
    'extract_markdown_section',

    # Chunker
    'ChunkType',
    'ChunkMetadata',
    'NodeDocChunk',
    'create_node_chunks',
    'truncate_content',
    'MAX_CONTENT_LENGTH',

    # Templates
    'TemplateDetail',
    'TemplateRecord',
    'TemplateSummary',
    'build_template_record',
    'build_flow_description',
    'flatten_template_detail',
    'MAX_TEMPLATE_CONTENT_LENGTH'
]
