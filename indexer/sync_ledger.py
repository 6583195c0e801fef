"""Sync ledger for n8n-rag-sync.

Append-only record of ingestion sub-runs, one entry per source per run.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Any, Optional

from pipelines.errors import truncate_message

logger = logging.getLogger(__name__)

MAX_SYNC_ERROR_LENGTH = 500
SYNC_ERROR_MARKER = "…[truncated]"

SOURCE_GITHUB_DOCS = "github-docs"
SOURCE_TEMPLATES = "n8n-templates"
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


@dataclass
class SyncLogEntry:
    """One ledger row."""
    source: str
    status: str
    count_processed: int
    error: Optional[str] = None
    synced_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'SyncLogEntry':
        synced_at = row.get("synced_at")
        if isinstance(synced_at, str):
            synced_at = datetime.fromisoformat(synced_at.replace(" ", "T"))
        return cls(
            source=row["source"],
            status=row["status"],
            count_processed=row.get("nodes_processed") or 0,
            error=row.get("error"),
            synced_at=synced_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "status": self.status,
            "count_processed": self.count_processed,
            "error": self.error,
            "synced_at": self.synced_at.isoformat() if self.synced_at else None,
        }


class SyncLedger:
    """Writes and reads sync log entries through a database adapter."""

    def __init__(self, store):
        self.store = store

    async def record_run(self, source: str, status: str, count: int,
                         error: Optional[str] = None):
        """Append an entry. Store failures are logged, never raised."""
        if error:
            error = truncate_message(error, MAX_SYNC_ERROR_LENGTH, SYNC_ERROR_MARKER)
        try:
            await self.store.insert_sync_log(source, status, count, error)
        except Exception as e:
            logger.error(f"Failed to log sync for {source}: {e}")

    async def latest_run(self, source: Optional[str] = None) -> Optional[SyncLogEntry]:
        row = await self.store.latest_sync_log(source)
        return SyncLogEntry.from_row(row) if row else None
