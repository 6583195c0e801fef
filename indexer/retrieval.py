"""Retrieval engine for n8n-rag-sync.

Embeds a natural-language query and returns the most similar node
documentation chunks or workflow templates.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from observability.prometheus_metrics import record_search_metrics
from .embeddings import EmbeddingGenerator

logger = logging.getLogger(__name__)

DEFAULT_NODE_DOC_LIMIT = 8
DEFAULT_TEMPLATE_LIMIT = 3
DEFAULT_MIN_SIMILARITY = 0.3
EXACT_MATCH_SIMILARITY = 1.0


@dataclass
class RelevantNodeDoc:
    node_type: str
    display_name: str
    type_version: float
    chunk_type: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    similarity: float = 0.0

    @classmethod
    def from_row(cls, row: Dict[str, Any], similarity: Optional[float] = None) -> 'RelevantNodeDoc':
        return cls(
            node_type=row["node_type"],
            display_name=row["display_name"],
            type_version=float(row["type_version"]),
            chunk_type=row["chunk_type"],
            content=row["content"],
            metadata=row.get("metadata") or {},
            similarity=float(row["similarity"] if similarity is None else similarity),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_type": self.node_type,
            "display_name": self.display_name,
            "type_version": self.type_version,
            "chunk_type": self.chunk_type,
            "content": self.content,
            "metadata": self.metadata,
            "similarity": self.similarity,
        }


@dataclass
class RelevantTemplate:
    template_id: int
    name: str
    description: Optional[str]
    category: Optional[str]
    node_types: List[str]
    workflow_json: Optional[Dict[str, Any]]
    similarity: float = 0.0

    @classmethod
    def from_row(cls, row: Dict[str, Any], similarity: Optional[float] = None) -> 'RelevantTemplate':
        return cls(
            template_id=int(row["template_id"]),
            name=row["name"],
            description=row.get("description"),
            category=row.get("category"),
            node_types=row.get("node_types") or [],
            workflow_json=row.get("workflow_json"),
            similarity=float(row["similarity"] if similarity is None else similarity),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "node_types": self.node_types,
            "workflow_json": self.workflow_json,
            "similarity": self.similarity,
        }


class RetrievalEngine:
    """Similarity search over the knowledge store."""

    def __init__(self, store, embeddings: EmbeddingGenerator):
        self.store = store
        self.embeddings = embeddings

    async def find_relevant_node_docs(self, query: str,
                                      limit: int = DEFAULT_NODE_DOC_LIMIT,
                                      min_similarity: float = DEFAULT_MIN_SIMILARITY) -> List[RelevantNodeDoc]:
        """Find documentation chunks relevant to a query.

        Args:
            query: Natural language query, e.g. "send a Slack message"
            limit: Maximum number of chunks to return
            min_similarity: Results must score strictly above this

        Returns:
            Chunks in descending similarity order; empty for a blank query.
        """
        if not query or not query.strip():
            return []

        start = time.time()
        try:
            embedding = await self.embeddings.generate_embedding(query)
            rows = await self.store.search_node_docs(embedding, max(limit, 0), min_similarity)
        except Exception as e:
            record_search_metrics("node_docs", time.time() - start, 0, error=str(e))
            raise

        results = [RelevantNodeDoc.from_row(row) for row in rows]
        record_search_metrics("node_docs", time.time() - start, len(results))
        return results

    async def find_relevant_templates(self, query: str,
                                      limit: int = DEFAULT_TEMPLATE_LIMIT,
                                      min_similarity: float = DEFAULT_MIN_SIMILARITY) -> List[RelevantTemplate]:
        """Find workflow templates relevant to a query."""
        if not query or not query.strip():
            return []

        start = time.time()
        try:
            embedding = await self.embeddings.generate_embedding(query)
            rows = await self.store.search_templates(embedding, max(limit, 0), min_similarity)
        except Exception as e:
            record_search_metrics("templates", time.time() - start, 0, error=str(e))
            raise

        results = [RelevantTemplate.from_row(row) for row in rows]
        record_search_metrics("templates", time.time() - start, len(results))
        return results

    async def get_node_docs_by_type(self, node_type: str) -> List[RelevantNodeDoc]:
        """Every stored section for a node type, each with similarity 1.0."""
        rows = await self.store.get_node_docs(node_type)
        return [RelevantNodeDoc.from_row(row, EXACT_MATCH_SIMILARITY) for row in rows]

    async def get_template_by_id(self, template_id: int) -> Optional[RelevantTemplate]:
        row = await self.store.get_template(template_id)
        if row is None:
            return None
        return RelevantTemplate.from_row(row, EXACT_MATCH_SIMILARITY)
