"""Knowledge store ingestion for n8n-rag-sync.

Runs the documentation ingestion (GitHub docs and node sources) followed by
the template ingestion, writing every chunk and template with its embedding
and one ledger entry per origin.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from observability.prometheus_metrics import record_ingestion_run, record_ingestion_duration
from indexer.embeddings import EmbeddingGenerator, create_provider
from indexer.sync_ledger import SyncLedger, SOURCE_GITHUB_DOCS, STATUS_SUCCESS, STATUS_ERROR
from config.settings import IngestionSettings
from .errors import EmbeddingError
from .chunker import NodeDocChunk, create_node_chunks
from .github_fetcher import GitHubFetcher
from .template_fetcher import TemplateApiClient
from .ingest_templates import run_template_ingestion
from .writer import (
    upsert_records,
    RunBudget,
    UPSERT_BATCH,
    UPSERT_CONCURRENCY,
    MAX_UPSERT_ERROR_LENGTH,
)

logger = logging.getLogger(__name__)

__all__ = [
    'SyncResult',
    'IngestionPipeline',
    'upsert_records',
    'RunBudget',
    'UPSERT_BATCH',
    'UPSERT_CONCURRENCY',
    'MAX_UPSERT_ERROR_LENGTH',
]

TEMPLATE_ERROR_COUNT = 5


@dataclass
class SyncResult:
    """Outcome of one ingestion run."""
    success: bool
    docs_processed: int = 0
    chunks_created: int = 0
    templates_processed: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "docs_processed": self.docs_processed,
            "chunks_created": self.chunks_created,
            "templates_processed": self.templates_processed,
            "errors": self.errors,
            "duration_ms": self.duration_ms,
        }


class IngestionPipeline:
    """Orchestrates fetch, chunk, embed and write for both origins."""

    def __init__(self, store, embeddings: EmbeddingGenerator,
                 github: GitHubFetcher, templates: TemplateApiClient,
                 ledger: Optional[SyncLedger] = None,
                 budget_seconds: Optional[float] = None):
        """Initialize the pipeline.

        Args:
            store: Database adapter (PostgresAdapter or SQLiteAdapter)
            embeddings: Embedding generator shared by both origins
            github: Fetcher for the documentation and node source trees
            templates: Template API client
            ledger: Sync ledger; defaults to one over ``store``
            budget_seconds: Default wall-clock budget per run
        """
        self.store = store
        self.embeddings = embeddings
        self.github = github
        self.templates = templates
        self.ledger = ledger or SyncLedger(store)
        self.budget_seconds = budget_seconds

    @classmethod
    def from_settings(cls, store, settings: IngestionSettings) -> 'IngestionPipeline':
        """Build a pipeline from runtime settings."""
        provider = create_provider(
            settings.embedding_provider,
            model_name=settings.embedding_model,
            api_key=settings.openai_api_key,
            dimensions=settings.embedding_dimensions,
        )
        return cls(
            store=store,
            embeddings=EmbeddingGenerator(provider, batch_size=settings.embedding_batch_size),
            github=GitHubFetcher(token=settings.github_token, user_agent=settings.user_agent),
            templates=TemplateApiClient(api_base=settings.templates_api),
            budget_seconds=settings.budget_seconds,
        )

    async def _gather_sources(self, errors: List[str]):
        docs_result, sources_result = await asyncio.gather(
            self.github.fetch_docs(),
            self.github.fetch_node_sources(),
            return_exceptions=True,
        )

        docs: Dict[str, str] = {}
        sources: Dict[str, Any] = {}

        if isinstance(docs_result, BaseException):
            errors.append(f"Docs fetch failed: {docs_result}")
            logger.error(f"Docs fetch failed: {docs_result}")
        else:
            docs = docs_result

        if isinstance(sources_result, BaseException):
            errors.append(f"Source fetch failed: {sources_result}")
            logger.error(f"Source fetch failed: {sources_result}")
        else:
            sources = sources_result

        return docs, sources

    @staticmethod
    def build_chunks(docs: Dict[str, str], sources: Dict[str, Any]) -> List[NodeDocChunk]:
        """Build chunks for every node type seen in either input."""
        node_types = sorted(set(docs) | set(sources))
        chunks: List[NodeDocChunk] = []
        for node_type in node_types:
            chunks.extend(create_node_chunks(node_type, docs.get(node_type), sources.get(node_type)))
        return chunks

    async def _ingest_docs(self, budget: RunBudget, result: SyncResult):
        errors = result.errors

        if not budget.allows("fetching sources", errors):
            return

        logger.info("Fetching node documentation and sources")
        docs, sources = await self._gather_sources(errors)
        logger.info(f"Fetched {len(docs)} docs and {len(sources)} node sources")
        result.docs_processed = len(set(docs) | set(sources))

        chunks = self.build_chunks(docs, sources)
        logger.info(f"Built {len(chunks)} chunks")

        if not chunks:
            errors.append("No chunks generated: check GitHub API access")
            await self.ledger.record_run(SOURCE_GITHUB_DOCS, STATUS_ERROR, 0, "; ".join(errors))
            return

        if not budget.allows("embedding chunks", errors):
            await self.ledger.record_run(SOURCE_GITHUB_DOCS, STATUS_ERROR, 0, "; ".join(errors))
            return

        try:
            vectors = await self.embeddings.generate_embeddings([c.content for c in chunks])
        except EmbeddingError as e:
            errors.append(f"Embedding failed: {e}")
            logger.error(f"Chunk embedding failed: {e}")
            await self.ledger.record_run(SOURCE_GITHUB_DOCS, STATUS_ERROR, 0, "; ".join(errors))
            return

        if budget.allows("upserting chunks", errors):
            result.chunks_created = await upsert_records(
                list(zip(chunks, vectors)),
                self.store.upsert_node_doc,
                lambda c: c.key,
                errors,
                table="node_docs",
            )
            logger.info(f"Upserted {result.chunks_created}/{len(chunks)} chunks")

        await self.ledger.record_run(
            SOURCE_GITHUB_DOCS,
            STATUS_SUCCESS if not errors else STATUS_ERROR,
            result.chunks_created,
            "; ".join(errors) if errors else None,
        )

    async def _ingest_templates(self, budget: RunBudget, result: SyncResult):
        if not budget.allows("fetching templates", result.errors):
            return

        try:
            outcome = await run_template_ingestion(
                self.templates, self.embeddings, self.store, self.ledger, budget
            )
        except Exception as e:
            result.errors.append(f"Template ingestion failed: {e}")
            logger.error(f"Template ingestion failed: {e}")
            return

        result.templates_processed = outcome.templates_processed
        for error in outcome.errors[:TEMPLATE_ERROR_COUNT]:
            result.errors.append(f"[templates] {error}")

    async def run_ingestion(self, budget_seconds: Optional[float] = None) -> SyncResult:
        """Run one full ingestion.

        The documentation origin runs first; the template origin always runs
        afterwards, whatever the documentation outcome. Never raises.

        Args:
            budget_seconds: Wall-clock budget overriding the pipeline default

        Returns:
            SyncResult with ``success`` true only when no errors were recorded.
        """
        started = time.time()
        budget = RunBudget(budget_seconds if budget_seconds is not None else self.budget_seconds)
        result = SyncResult(success=False)

        try:
            reachable = await self.store.ping()
            reason = "store is not initialized"
        except Exception as e:
            reachable = False
            reason = str(e) or type(e).__name__

        if not reachable:
            result.errors.append(f"Configuration error: {reason}")
            logger.error(f"Store unavailable, skipping ingestion: {reason}")
            return self._finish(result, started)

        try:
            await self._ingest_docs(budget, result)
        except Exception as e:
            result.errors.append(f"Docs ingestion failed: {e}")
            logger.error(f"Docs ingestion failed: {e}")
            await self.ledger.record_run(
                SOURCE_GITHUB_DOCS, STATUS_ERROR, result.chunks_created, str(e) or type(e).__name__
            )

        await self._ingest_templates(budget, result)

        result.success = len(result.errors) == 0
        return self._finish(result, started)

    def _finish(self, result: SyncResult, started: float) -> SyncResult:
        duration = time.time() - started
        result.duration_ms = int(duration * 1000)
        record_ingestion_run("all", result.success)
        record_ingestion_duration(duration)
        logger.info(
            f"Ingestion finished: success={result.success} chunks={result.chunks_created} "
            f"templates={result.templates_processed} errors={len(result.errors)}"
        )
        return result

    async def close(self):
        """Close the fetcher sessions."""
        await self.github.close()
        await self.templates.close()


async def run_once(budget_seconds: Optional[float] = None) -> SyncResult:
    """Run one ingestion against the configured database."""
    from config.database import initialize_database, get_db_adapter, close_database

    settings = IngestionSettings.from_env()
    await initialize_database()
    pipeline = None
    try:
        store = await get_db_adapter()
        pipeline = IngestionPipeline.from_settings(store, settings)
        return await pipeline.run_ingestion(budget_seconds)
    finally:
        if pipeline:
            await pipeline.close()
        await close_database()


def main():
    """CLI for a single ingestion run"""
    import sys
    import json
    import argparse

    from observability.logging import setup_logging

    parser = argparse.ArgumentParser(description="n8n-rag-sync ingestion CLI")
    parser.add_argument("--budget", type=float, default=None, help="Wall-clock budget in seconds")
    parser.add_argument("--log-level", default="INFO", help="Log level")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON logs")

    args = parser.parse_args()
    setup_logging(level=args.log_level, use_json=args.json_logs)

    try:
        result = asyncio.run(run_once(args.budget))
    except Exception as e:
        logger.error(f"Error: {e}")
        sys.exit(1)

    print(json.dumps(result.to_dict(), indent=2))
    sys.exit(0 if result.success else 1)


if __name__ == "__main__":
    main()
