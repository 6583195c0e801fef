"""Workflow template ingestion for n8n-rag-sync.

Fetches template summaries and details, builds records, embeds them and
replaces their rows in the store. Runs as a fault-isolated sub-run after
the documentation ingestion.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from observability.prometheus_metrics import record_ingestion_run
from indexer.sync_ledger import SyncLedger, SOURCE_TEMPLATES, STATUS_SUCCESS, STATUS_ERROR
from .errors import EmbeddingError
from .template_fetcher import TemplateApiClient
from .templates import TemplateRecord, build_template_record
from .writer import upsert_records, RunBudget

logger = logging.getLogger(__name__)

LEDGER_ERROR_COUNT = 5


@dataclass
class TemplateSyncResult:
    success: bool
    templates_processed: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "templates_processed": self.templates_processed,
            "errors": self.errors,
            "duration_ms": self.duration_ms,
        }


async def run_template_ingestion(client: TemplateApiClient, embeddings, store,
                                 ledger: SyncLedger,
                                 budget: Optional[RunBudget] = None) -> TemplateSyncResult:
    """Run the template sub-run end to end.

    Args:
        client: Template API client
        embeddings: EmbeddingGenerator used for record content
        store: Database adapter
        ledger: Sync ledger receiving one ``n8n-templates`` entry
        budget: Shared run budget, checked between stages

    Returns:
        TemplateSyncResult; never raises.
    """
    started = time.time()
    budget = budget or RunBudget()
    errors: List[str] = []
    processed = 0

    def finish(success: bool) -> TemplateSyncResult:
        record_ingestion_run(SOURCE_TEMPLATES, success)
        return TemplateSyncResult(
            success=success,
            templates_processed=processed,
            errors=errors,
            duration_ms=int((time.time() - started) * 1000),
        )

    try:
        logger.info("Starting template ingestion")
        summaries = await client.fetch_template_list()

        if not summaries:
            errors.append("No templates returned from the n8n Templates API")
            await ledger.record_run(SOURCE_TEMPLATES, STATUS_ERROR, 0, "; ".join(errors))
            return finish(False)

        if not budget.allows("fetching template details", errors):
            await ledger.record_run(SOURCE_TEMPLATES, STATUS_ERROR, 0, "; ".join(errors))
            return finish(False)

        logger.info(f"Fetching full details for {len(summaries)} templates")
        details = await client.fetch_all_template_details(summaries, errors)
        logger.info(f"Got details for {len(details)} templates")

        by_id = {s.id: s for s in summaries}
        records: List[TemplateRecord] = []
        for detail in details:
            record = build_template_record(detail, by_id.get(detail.id))
            if record:
                records.append(record)

        logger.info(f"Built {len(records)} template records")

        if not records:
            errors.append("No valid template records could be built")
            await ledger.record_run(SOURCE_TEMPLATES, STATUS_ERROR, 0, "; ".join(errors))
            return finish(False)

        if budget.allows("embedding templates", errors):
            try:
                vectors = await embeddings.generate_embeddings([r.content for r in records])
            except EmbeddingError as e:
                errors.append(f"Embedding failed: {e}")
                logger.error(f"Template embedding failed: {e}")
                vectors = None

            if vectors is not None and budget.allows("upserting templates", errors):
                processed = await upsert_records(
                    list(zip(records, vectors)),
                    store.upsert_template,
                    lambda r: r.key,
                    errors,
                    table="workflow_templates",
                )

        logger.info(f"Templates done. {processed} upserted, {len(errors)} errors")

        await ledger.record_run(
            SOURCE_TEMPLATES,
            STATUS_SUCCESS if not errors else STATUS_ERROR,
            processed,
            "; ".join(errors[:LEDGER_ERROR_COUNT]) if errors else None,
        )
        return finish(not errors)

    except Exception as e:
        message = str(e) or type(e).__name__
        errors.append(message)
        logger.error(f"Template ingestion failed: {message}")
        await ledger.record_run(SOURCE_TEMPLATES, STATUS_ERROR, processed, message)
        return finish(False)
