"""PostgreSQL database adapter for n8n-rag-sync.

Stores node documentation chunks, workflow templates and the sync log in
PostgreSQL with pgvector cosine search.
"""

import logging
from typing import List, Dict, Any, Optional
from pathlib import Path
import json

import asyncpg
from pydantic import BaseModel

from pipelines.chunker import NodeDocChunk, ChunkType, truncate_content
from pipelines.templates import TemplateRecord

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

NODE_DOC_COLUMNS = "id, node_type, display_name, type_version, chunk_type, content, metadata"
TEMPLATE_COLUMNS = ("id, template_id, name, description, category, total_views, "
                    "node_types, workflow_json, content")

CHUNK_TYPE_ORDER = [c.value for c in ChunkType]


class PostgresConfig(BaseModel):
    """PostgreSQL connection configuration."""
    dsn: Optional[str] = None
    host: str = "localhost"
    port: int = 5432
    database: str = "n8n_rag"
    user: str = "n8n_rag"
    password: str = ""
    min_connections: int = 1
    max_connections: int = 10
    command_timeout: int = 60


def vector_literal(embedding: List[float]) -> str:
    """Render an embedding as a pgvector text literal ``[f1,f2,...]``."""
    return "[" + ",".join(repr(float(v)) for v in embedding) + "]"


def _loads(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


def _node_doc_row(row: asyncpg.Record) -> Dict[str, Any]:
    result = dict(row)
    result["metadata"] = _loads(result.get("metadata"), {})
    return result


def _template_row(row: asyncpg.Record) -> Dict[str, Any]:
    result = dict(row)
    result["node_types"] = _loads(result.get("node_types"), [])
    result["workflow_json"] = _loads(result.get("workflow_json"), None)
    return result


class PostgresAdapter:
    """PostgreSQL database adapter with pgvector support."""

    def __init__(self, config: PostgresConfig):
        self.config = config
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Initialize connection pool and ensure schema exists."""
        try:
            if self.config.dsn:
                self.pool = await asyncpg.create_pool(
                    dsn=self.config.dsn,
                    min_size=self.config.min_connections,
                    max_size=self.config.max_connections,
                    command_timeout=self.config.command_timeout
                )
            else:
                self.pool = await asyncpg.create_pool(
                    host=self.config.host,
                    port=self.config.port,
                    database=self.config.database,
                    user=self.config.user,
                    password=self.config.password,
                    min_size=self.config.min_connections,
                    max_size=self.config.max_connections,
                    command_timeout=self.config.command_timeout
                )
            logger.info("PostgreSQL connection pool initialized")

            await self.execute_schema(str(SCHEMA_PATH))

        except Exception as e:
            logger.error(f"Failed to initialize PostgreSQL: {e}")
            raise

    async def close(self):
        """Close connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("PostgreSQL connection pool closed")

    async def execute_schema(self, schema_path: str):
        """Execute schema SQL file."""
        with open(schema_path, 'r', encoding='utf-8') as f:
            schema_sql = f.read()

        async with self.pool.acquire() as conn:
            await conn.execute(schema_sql)
        logger.info(f"Schema executed from {schema_path}")

    async def ping(self) -> bool:
        """Check the store is reachable."""
        if self.pool is None:
            return False
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1

    async def upsert_node_doc(self, chunk: NodeDocChunk, embedding: List[float]):
        """Replace the row for ``(node_type, chunk_type)`` in one transaction."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    "DELETE FROM node_docs WHERE node_type = $1 AND chunk_type = $2",
                    chunk.node_type, chunk.chunk_type.value
                )
                await conn.execute(
                    """
                    INSERT INTO node_docs
                        (node_type, display_name, type_version, chunk_type, content,
                         metadata, embedding, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7::vector, NOW())
                    """,
                    chunk.node_type, chunk.display_name, float(chunk.type_version),
                    chunk.chunk_type.value, truncate_content(chunk.content),
                    json.dumps(chunk.metadata.to_dict()), vector_literal(embedding)
                )

    async def upsert_template(self, record: TemplateRecord, embedding: List[float]):
        """Replace the row for ``template_id`` in one transaction."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    "DELETE FROM workflow_templates WHERE template_id = $1",
                    record.template_id
                )
                await conn.execute(
                    """
                    INSERT INTO workflow_templates
                        (template_id, name, description, category, total_views,
                         node_types, workflow_json, content, embedding, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7::jsonb, $8, $9::vector, NOW())
                    """,
                    record.template_id, record.name, record.description, record.category,
                    record.total_views, json.dumps(record.node_types),
                    json.dumps(record.workflow_json), record.content,
                    vector_literal(embedding)
                )

    async def search_node_docs(self, embedding: List[float], limit: int = 8,
                               min_similarity: float = 0.3) -> List[Dict[str, Any]]:
        """Cosine search over node documentation chunks."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {NODE_DOC_COLUMNS},
                       1 - (embedding <=> $1::vector) AS similarity
                FROM node_docs
                WHERE embedding IS NOT NULL
                  AND 1 - (embedding <=> $1::vector) > $2
                ORDER BY similarity DESC
                LIMIT $3
                """,
                vector_literal(embedding), min_similarity, limit
            )
        return [_node_doc_row(row) for row in rows]

    async def search_templates(self, embedding: List[float], limit: int = 3,
                               min_similarity: float = 0.3) -> List[Dict[str, Any]]:
        """Cosine search over workflow templates."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {TEMPLATE_COLUMNS},
                       1 - (embedding <=> $1::vector) AS similarity
                FROM workflow_templates
                WHERE embedding IS NOT NULL
                  AND 1 - (embedding <=> $1::vector) > $2
                ORDER BY similarity DESC
                LIMIT $3
                """,
                vector_literal(embedding), min_similarity, limit
            )
        return [_template_row(row) for row in rows]

    async def get_node_docs(self, node_type: str) -> List[Dict[str, Any]]:
        """All stored sections for a node type, overview first."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {NODE_DOC_COLUMNS}
                FROM node_docs
                WHERE node_type = $1
                ORDER BY array_position($2::text[], chunk_type), id
                """,
                node_type, CHUNK_TYPE_ORDER
            )
        return [_node_doc_row(row) for row in rows]

    async def get_overview(self, node_type: str) -> Optional[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {NODE_DOC_COLUMNS}
                FROM node_docs
                WHERE node_type = $1 AND chunk_type = 'overview'
                ORDER BY id DESC
                LIMIT 1
                """,
                node_type
            )
        return _node_doc_row(row) if row else None

    async def list_overviews(self) -> List[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {NODE_DOC_COLUMNS} FROM node_docs WHERE chunk_type = 'overview'"
            )
        return [_node_doc_row(row) for row in rows]

    async def get_template(self, template_id: int) -> Optional[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {TEMPLATE_COLUMNS} FROM workflow_templates WHERE template_id = $1",
                template_id
            )
        return _template_row(row) if row else None

    async def insert_sync_log(self, source: str, status: str, count: int,
                              error: Optional[str] = None):
        """Append a sync log entry."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO sync_log (source, status, nodes_processed, error, synced_at)
                VALUES ($1, $2, $3, $4, NOW())
                """,
                source, status, count, error
            )

    async def latest_sync_log(self, source: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Most recent sync log entry, optionally for one source."""
        async with self.pool.acquire() as conn:
            if source:
                row = await conn.fetchrow(
                    """
                    SELECT source, status, nodes_processed, error, synced_at
                    FROM sync_log WHERE source = $1
                    ORDER BY synced_at DESC, id DESC LIMIT 1
                    """,
                    source
                )
            else:
                row = await conn.fetchrow(
                    """
                    SELECT source, status, nodes_processed, error, synced_at
                    FROM sync_log
                    ORDER BY synced_at DESC, id DESC LIMIT 1
                    """
                )
        return dict(row) if row else None

    async def get_database_stats(self) -> Dict[str, Any]:
        """Get database statistics for monitoring."""
        async with self.pool.acquire() as conn:
            stats = await conn.fetchrow(
                """
                SELECT
                    (SELECT COUNT(*) FROM node_docs) as node_doc_count,
                    (SELECT COUNT(DISTINCT node_type) FROM node_docs) as node_type_count,
                    (SELECT COUNT(*) FROM workflow_templates) as template_count,
                    (SELECT COUNT(*) FROM sync_log) as sync_count
                """
            )

        return dict(stats) if stats else {}
