"""Node documentation chunking for n8n-rag-sync.

Combines a node's markdown documentation with the metadata mined from its
source definition into up to four section chunks (overview, parameters,
credentials, examples).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Any, Optional

from .parsers import (
    NodeSourceInfo,
    extract_markdown_section,
    extract_parameter_section,
    extract_credential_section,
    extract_examples_section,
    extract_operations,
)

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 2000
TRUNCATION_MARKER = "\n…[truncated]"
OVERVIEW_EXCERPT_LENGTH = 500


class ChunkType(str, Enum):
    """Section kind of a documentation chunk."""
    OVERVIEW = "overview"
    PARAMETERS = "parameters"
    CREDENTIALS = "credentials"
    EXAMPLES = "examples"


@dataclass
class ChunkMetadata:
    """Tags stored alongside a chunk."""
    category: str
    subcategory: Optional[str] = None
    credential_types: Optional[List[str]] = None
    operations: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, omitting unset tags."""
        data: Dict[str, Any] = {"category": self.category}
        if self.subcategory:
            data["subcategory"] = self.subcategory
        if self.credential_types:
            data["credentialTypes"] = self.credential_types
        if self.operations:
            data["operations"] = self.operations
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChunkMetadata':
        return cls(
            category=data.get("category", "action"),
            subcategory=data.get("subcategory"),
            credential_types=data.get("credentialTypes"),
            operations=data.get("operations"),
        )


@dataclass
class NodeDocChunk:
    """One documentation section of a node type."""
    node_type: str
    display_name: str
    type_version: float
    chunk_type: ChunkType
    content: str
    metadata: ChunkMetadata = field(default_factory=lambda: ChunkMetadata(category="action"))

    @property
    def key(self) -> str:
        """Natural key used in diagnostics."""
        return f"{self.node_type}/{self.chunk_type.value}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "node_type": self.node_type,
            "display_name": self.display_name,
            "type_version": self.type_version,
            "chunk_type": self.chunk_type.value,
            "content": self.content,
            "metadata": self.metadata.to_dict(),
        }


def format_version(version: float) -> str:
    """Render a type version without a trailing ``.0``."""
    if float(version).is_integer():
        return str(int(version))
    return str(version)


def truncate_content(content: str, max_length: int = MAX_CONTENT_LENGTH,
                     marker: str = TRUNCATION_MARKER) -> str:
    """Cap content so the result, marker included, is at most ``max_length``."""
    if len(content) <= max_length:
        return content
    return content[:max(max_length - len(marker), 0)] + marker


def create_node_chunks(node_type: str,
                       doc_content: Optional[str],
                       source_info: Optional[NodeSourceInfo]) -> List[NodeDocChunk]:
    """Build the section chunks for one node type.

    Args:
        node_type: Fully-qualified node type, e.g. ``n8n-nodes-base.slack``
        doc_content: Raw markdown documentation, if any
        source_info: Metadata parsed from the node source, if any

    Returns:
        Chunks in overview, parameters, credentials, examples order. Only the
        overview is unconditional; the other sections appear when there is
        content for them. Empty when both inputs are missing.
    """
    if not doc_content and source_info is None:
        return []

    display_name = source_info.display_name if source_info else node_type.split(".")[-1]
    type_version = source_info.default_version if source_info else 1.0
    category = source_info.category if source_info else "action"
    credentials = list(source_info.credentials) if source_info else []
    version = format_version(type_version)

    def make(chunk_type: ChunkType, content: str, metadata: ChunkMetadata) -> NodeDocChunk:
        return NodeDocChunk(
            node_type=node_type,
            display_name=display_name,
            type_version=type_version,
            chunk_type=chunk_type,
            content=content,
            metadata=metadata,
        )

    chunks: List[NodeDocChunk] = []

    # Overview
    overview_parts = [
        f"Node: {display_name}",
        f"Type: {node_type}",
        f"Latest Version: {version}",
        f"Category: {category}",
    ]
    if source_info and source_info.description:
        overview_parts.append(f"Description: {source_info.description}")
    if credentials:
        overview_parts.append(f"Required Credentials: {', '.join(credentials)}")

    operations: List[str] = []
    if doc_content:
        excerpt = extract_markdown_section(doc_content, 0, OVERVIEW_EXCERPT_LENGTH)
        if excerpt:
            overview_parts.append(f"\nDocumentation:\n{excerpt}")
        operations = extract_operations(doc_content)

    chunks.append(make(
        ChunkType.OVERVIEW,
        "\n".join(overview_parts),
        ChunkMetadata(
            category=category,
            credential_types=credentials or None,
            operations=operations or None,
        ),
    ))

    # Parameters
    param_section = extract_parameter_section(doc_content) if doc_content else None
    if (source_info and source_info.properties) or param_section:
        param_parts = [f"Parameters for {display_name} ({node_type}) v{version}:"]
        if source_info and source_info.properties:
            param_parts.append(f"\nSource parameters:\n{source_info.properties}")
        if param_section:
            param_parts.append(f"\nDocumented parameters:\n{param_section}")
        chunks.append(make(ChunkType.PARAMETERS, "\n".join(param_parts),
                           ChunkMetadata(category=category)))

    # Credentials
    cred_section = extract_credential_section(doc_content) if doc_content else None
    if credentials or cred_section:
        cred_parts = [f"Credentials for {display_name} ({node_type}):"]
        if credentials:
            cred_parts.append(f"Credential types: {', '.join(credentials)}")
        if cred_section:
            cred_parts.append(f"\n{cred_section}")
        chunks.append(make(ChunkType.CREDENTIALS, "\n".join(cred_parts),
                           ChunkMetadata(category=category,
                                         credential_types=credentials or None)))

    # Examples
    examples_section = extract_examples_section(doc_content) if doc_content else None
    if examples_section:
        chunks.append(make(
            ChunkType.EXAMPLES,
            f"Examples for {display_name} ({node_type}) v{version}:\n{examples_section}",
            ChunkMetadata(category=category),
        ))

    logger.debug(f"Built {len(chunks)} chunks for {node_type}")
    return chunks
