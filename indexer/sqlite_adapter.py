"""SQLite database adapter for n8n-rag-sync.

Development and test backend exposing the same interface as the PostgreSQL
adapter. Embeddings are stored as float32 blobs and ranked with numpy.
"""

import sqlite3
import logging
import json
from typing import List, Dict, Any, Optional
from pathlib import Path

import numpy as np

from pipelines.chunker import NodeDocChunk, ChunkType, truncate_content
from pipelines.templates import TemplateRecord
from .embeddings import cosine_similarity

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "sqlite_schema.sql"

NODE_DOC_COLUMNS = "id, node_type, display_name, type_version, chunk_type, content, metadata"
TEMPLATE_COLUMNS = ("id, template_id, name, description, category, total_views, "
                    "node_types, workflow_json, content")

CHUNK_TYPE_ORDER = {c.value: i for i, c in enumerate(ChunkType)}


def _node_doc_row(row: sqlite3.Row) -> Dict[str, Any]:
    result = dict(row)
    result.pop("embedding", None)
    result["metadata"] = json.loads(result.get("metadata") or "{}")
    return result


def _template_row(row: sqlite3.Row) -> Dict[str, Any]:
    result = dict(row)
    result.pop("embedding", None)
    result["node_types"] = json.loads(result.get("node_types") or "[]")
    workflow_json = result.get("workflow_json")
    result["workflow_json"] = json.loads(workflow_json) if workflow_json else None
    return result


class SQLiteAdapter:
    """SQLite database adapter with unified interface."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None

    async def initialize(self):
        """Initialize SQLite connection and ensure schema exists."""
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            await self.execute_schema(str(SCHEMA_PATH))
            logger.info(f"SQLite adapter initialized: {self.db_path}")

        except Exception as e:
            logger.error(f"Failed to initialize SQLite: {e}")
            raise

    async def close(self):
        """Close SQLite connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("SQLite connection closed")

    async def execute_schema(self, schema_path: str):
        """Execute schema SQL file."""
        with open(schema_path, 'r', encoding='utf-8') as f:
            schema_sql = f.read()

        self.conn.executescript(schema_sql)
        self.conn.commit()

    async def ping(self) -> bool:
        if self.conn is None:
            return False
        return self.conn.execute("SELECT 1").fetchone()[0] == 1

    async def upsert_node_doc(self, chunk: NodeDocChunk, embedding: List[float]):
        """Replace the row for ``(node_type, chunk_type)`` in one transaction."""
        blob = np.asarray(embedding, dtype=np.float32).tobytes()
        with self.conn:
            self.conn.execute(
                "DELETE FROM node_docs WHERE node_type = ? AND chunk_type = ?",
                (chunk.node_type, chunk.chunk_type.value)
            )
            self.conn.execute(
                """
                INSERT INTO node_docs
                    (node_type, display_name, type_version, chunk_type, content,
                     metadata, embedding, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                """,
                (chunk.node_type, chunk.display_name, float(chunk.type_version),
                 chunk.chunk_type.value, truncate_content(chunk.content),
                 json.dumps(chunk.metadata.to_dict()), blob)
            )

    async def upsert_template(self, record: TemplateRecord, embedding: List[float]):
        """Replace the row for ``template_id`` in one transaction."""
        blob = np.asarray(embedding, dtype=np.float32).tobytes()
        with self.conn:
            self.conn.execute(
                "DELETE FROM workflow_templates WHERE template_id = ?",
                (record.template_id,)
            )
            self.conn.execute(
                """
                INSERT INTO workflow_templates
                    (template_id, name, description, category, total_views,
                     node_types, workflow_json, content, embedding, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                """,
                (record.template_id, record.name, record.description, record.category,
                 record.total_views, json.dumps(record.node_types),
                 json.dumps(record.workflow_json), record.content, blob)
            )

    def _rank(self, rows: List[sqlite3.Row], embedding: List[float], limit: int,
              min_similarity: float, convert) -> List[Dict[str, Any]]:
        """Score rows by cosine similarity, keeping those strictly above the threshold."""
        query = np.asarray(embedding, dtype=np.float32)
        results = []
        for row in rows:
            stored = np.frombuffer(row["embedding"], dtype=np.float32)
            if stored.shape != query.shape:
                logger.warning(f"Skipping row {row['id']} with embedding dimension {stored.shape[0]}")
                continue
            similarity = cosine_similarity(query, stored)
            if similarity > min_similarity:
                result = convert(row)
                result["similarity"] = similarity
                results.append(result)

        results.sort(key=lambda x: x["similarity"], reverse=True)
        return results[:max(limit, 0)]

    async def search_node_docs(self, embedding: List[float], limit: int = 8,
                               min_similarity: float = 0.3) -> List[Dict[str, Any]]:
        """Cosine search over node documentation chunks."""
        rows = self.conn.execute(
            f"SELECT {NODE_DOC_COLUMNS}, embedding FROM node_docs WHERE embedding IS NOT NULL"
        ).fetchall()
        return self._rank(rows, embedding, limit, min_similarity, _node_doc_row)

    async def search_templates(self, embedding: List[float], limit: int = 3,
                               min_similarity: float = 0.3) -> List[Dict[str, Any]]:
        """Cosine search over workflow templates."""
        rows = self.conn.execute(
            f"SELECT {TEMPLATE_COLUMNS}, embedding FROM workflow_templates WHERE embedding IS NOT NULL"
        ).fetchall()
        return self._rank(rows, embedding, limit, min_similarity, _template_row)

    async def get_node_docs(self, node_type: str) -> List[Dict[str, Any]]:
        """All stored sections for a node type, overview first."""
        rows = self.conn.execute(
            f"SELECT {NODE_DOC_COLUMNS} FROM node_docs WHERE node_type = ? ORDER BY id",
            (node_type,)
        ).fetchall()
        results = [_node_doc_row(row) for row in rows]
        results.sort(key=lambda r: CHUNK_TYPE_ORDER.get(r["chunk_type"], len(CHUNK_TYPE_ORDER)))
        return results

    async def get_overview(self, node_type: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute(
            f"""
            SELECT {NODE_DOC_COLUMNS} FROM node_docs
            WHERE node_type = ? AND chunk_type = 'overview'
            ORDER BY id DESC LIMIT 1
            """,
            (node_type,)
        ).fetchone()
        return _node_doc_row(row) if row else None

    async def list_overviews(self) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            f"SELECT {NODE_DOC_COLUMNS} FROM node_docs WHERE chunk_type = 'overview'"
        ).fetchall()
        return [_node_doc_row(row) for row in rows]

    async def get_template(self, template_id: int) -> Optional[Dict[str, Any]]:
        row = self.conn.execute(
            f"SELECT {TEMPLATE_COLUMNS} FROM workflow_templates WHERE template_id = ?",
            (template_id,)
        ).fetchone()
        return _template_row(row) if row else None

    async def insert_sync_log(self, source: str, status: str, count: int,
                              error: Optional[str] = None):
        """Append a sync log entry."""
        with self.conn:
            self.conn.execute(
                "INSERT INTO sync_log (source, status, nodes_processed, error) VALUES (?, ?, ?, ?)",
                (source, status, count, error)
            )

    async def latest_sync_log(self, source: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Most recent sync log entry, optionally for one source."""
        if source:
            row = self.conn.execute(
                """
                SELECT source, status, nodes_processed, error, synced_at
                FROM sync_log WHERE source = ? ORDER BY id DESC LIMIT 1
                """,
                (source,)
            ).fetchone()
        else:
            row = self.conn.execute(
                """
                SELECT source, status, nodes_processed, error, synced_at
                FROM sync_log ORDER BY id DESC LIMIT 1
                """
            ).fetchone()
        return dict(row) if row else None

    async def get_database_stats(self) -> Dict[str, Any]:
        """Get database statistics for monitoring."""
        cursor = self.conn.cursor()

        cursor.execute("SELECT COUNT(*) FROM node_docs")
        node_doc_count = cursor.fetchone()[0]

        cursor.execute("SELECT COUNT(DISTINCT node_type) FROM node_docs")
        node_type_count = cursor.fetchone()[0]

        cursor.execute("SELECT COUNT(*) FROM workflow_templates")
        template_count = cursor.fetchone()[0]

        cursor.execute("SELECT COUNT(*) FROM sync_log")
        sync_count = cursor.fetchone()[0]

        return {
            'node_doc_count': node_doc_count,
            'node_type_count': node_type_count,
            'template_count': template_count,
            'sync_count': sync_count,
        }
