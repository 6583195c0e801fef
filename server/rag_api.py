from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import Optional
import datetime
import logging

from config import get_db_adapter, initialize_database, close_database, IngestionSettings
from config.database import StoreAdapter
from indexer.embeddings import EmbeddingGenerator, create_provider
from indexer.retrieval import RetrievalEngine
from indexer.node_info import NodeInfoCache, resolve_node_info
from indexer.sync_ledger import SyncLedger
from observability.logging import setup_logging
from observability.prometheus_metrics import setup_prometheus_metrics
from pipelines.errors import ConfigurationError
from pipelines.github_fetcher import GitHubFetcher
from pipelines.template_fetcher import TemplateApiClient
from pipelines.ingest import IngestionPipeline, SyncResult
from server.jobs import SyncCoordinator, SyncScheduler, SyncInProgressError
from server.security import (
    setup_rate_limiting,
    trigger_rate_limit,
    search_rate_limit,
    authorize_trigger,
    is_cron_request
)

logger = logging.getLogger(__name__)

MAX_RESPONSE_ERRORS = 10

app = FastAPI(title="n8n RAG Sync API", version="0.1.0")

setup_prometheus_metrics(app)
setup_rate_limiting(app)

# Global components, set up on startup
settings: Optional[IngestionSettings] = None
db_adapter: Optional[StoreAdapter] = None
embeddings: Optional[EmbeddingGenerator] = None
retrieval: Optional[RetrievalEngine] = None
node_info_cache: Optional[NodeInfoCache] = None
coordinator: Optional[SyncCoordinator] = None
scheduler: Optional[SyncScheduler] = None


async def run_sync() -> SyncResult:
    """Run one ingestion with fresh fetcher sessions."""
    if settings is None or db_adapter is None or embeddings is None:
        return SyncResult(success=False, errors=["Configuration error: service not initialized"])

    async with GitHubFetcher(token=settings.github_token, user_agent=settings.user_agent) as github, \
            TemplateApiClient(api_base=settings.templates_api) as templates:
        pipeline = IngestionPipeline(
            store=db_adapter,
            embeddings=embeddings,
            github=github,
            templates=templates,
            budget_seconds=settings.budget_seconds,
        )
        result = await pipeline.run_ingestion()

    if node_info_cache is not None:
        node_info_cache.clear()
    return result


@app.on_event("startup")
async def startup_event():
    """Initialize settings, database, embeddings and the sync scheduler."""
    global settings, db_adapter, embeddings, retrieval, node_info_cache, coordinator, scheduler

    settings = IngestionSettings.from_env()
    setup_logging(level=settings.log_level, use_json=settings.log_json)

    await initialize_database()
    db_adapter = await get_db_adapter()
    logger.info(f"Database initialized: {type(db_adapter).__name__}")

    provider = create_provider(
        settings.embedding_provider,
        model_name=settings.embedding_model,
        api_key=settings.openai_api_key,
        dimensions=settings.embedding_dimensions,
    )
    embeddings = EmbeddingGenerator(provider, batch_size=settings.embedding_batch_size)
    retrieval = RetrievalEngine(db_adapter, embeddings)
    logger.info(f"Embedding provider initialized: {provider.model_name}")

    node_info_cache = NodeInfoCache()
    await node_info_cache.warm(db_adapter)

    coordinator = SyncCoordinator(run_sync)
    scheduler = SyncScheduler(coordinator, settings.sync_cron)
    scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up resources on shutdown."""
    if scheduler:
        scheduler.shutdown()

    if db_adapter:
        await close_database()
        logger.info("Database connections closed")


def get_settings() -> IngestionSettings:
    if settings is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return settings


def get_retrieval() -> RetrievalEngine:
    if retrieval is None:
        raise HTTPException(status_code=503, detail="Retrieval not initialized")
    return retrieval


def get_coordinator() -> SyncCoordinator:
    if coordinator is None:
        raise HTTPException(status_code=503, detail="Sync not initialized")
    return coordinator


class NodeSearchRequest(BaseModel):
    query: str
    limit: int = Field(default=8, ge=1, le=50)
    min_similarity: float = Field(default=0.3, ge=0.0, le=1.0)


class TemplateSearchRequest(BaseModel):
    query: str
    limit: int = Field(default=3, ge=1, le=50)
    min_similarity: float = Field(default=0.3, ge=0.0, le=1.0)


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "message": "n8n RAG Sync API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics"
    }


@app.get("/health")
async def health():
    status = {"ok": True, "time": datetime.datetime.utcnow().isoformat() + "Z"}
    if db_adapter is not None:
        try:
            status["database"] = "healthy" if await db_adapter.ping() else "unavailable"
        except Exception as e:
            logger.warning(f"Database ping failed: {e}")
            status["database"] = "unhealthy"
    if coordinator is not None:
        status["sync_running"] = coordinator.running
    return status


async def _run_trigger(who: str, sync: SyncCoordinator, include_errors: bool = True):
    try:
        job = await sync.trigger(who)
    except SyncInProgressError:
        raise HTTPException(status_code=409, detail="Sync already in progress")
    except Exception as e:
        logger.error(f"Ingestion failed: {e}")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e) or "Ingestion failed"})

    result = dict(job.result)
    if include_errors:
        result["errors"] = result["errors"][:MAX_RESPONSE_ERRORS]
    else:
        result.pop("errors", None)
    return result


@app.post("/sync-docs")
@trigger_rate_limit()
async def trigger_sync(request: Request,
                       config: IngestionSettings = Depends(get_settings),
                       sync: SyncCoordinator = Depends(get_coordinator)):
    """Trigger an ingestion run (cron bearer secret or x-sync-key)."""
    who = authorize_trigger(request, config.cron_secret, config.sync_key)
    if who is None:
        return JSONResponse(
            status_code=401,
            content={"error": "Unauthorized. Provide CRON_SECRET or a valid sync key."}
        )
    return await _run_trigger(who, sync)


@app.get("/sync-docs")
@trigger_rate_limit()
async def sync_status(request: Request,
                      config: IngestionSettings = Depends(get_settings),
                      sync: SyncCoordinator = Depends(get_coordinator)):
    """Run ingestion for the cron caller, otherwise report the latest sync."""
    if is_cron_request(request, config.cron_secret):
        return await _run_trigger("cron", sync, include_errors=False)

    if db_adapter is None:
        return {"last_sync": None, "message": "Database not configured yet."}

    try:
        latest = await SyncLedger(db_adapter).latest_run()
    except Exception as e:
        logger.warning(f"Failed to read sync log: {e}")
        return {"last_sync": None, "message": "Database not configured yet.", "error": str(e)}

    if latest is None:
        return {"last_sync": None, "message": "No sync has been performed yet."}

    return {"last_sync": latest.to_dict(), "running": sync.running}


@app.post("/search/nodes")
@search_rate_limit()
async def search_nodes(request: Request, req: NodeSearchRequest,
                       engine: RetrievalEngine = Depends(get_retrieval)):
    """Semantic search over node documentation chunks."""
    try:
        results = await engine.find_relevant_node_docs(req.query, req.limit, req.min_similarity)
    except Exception as e:
        logger.error(f"Node search error: {e}")
        raise HTTPException(status_code=500, detail="Node search failed")
    return {"results": [r.to_dict() for r in results], "search_type": "node_docs"}


@app.post("/search/templates")
@search_rate_limit()
async def search_templates(request: Request, req: TemplateSearchRequest,
                           engine: RetrievalEngine = Depends(get_retrieval)):
    """Semantic search over workflow templates."""
    try:
        results = await engine.find_relevant_templates(req.query, req.limit, req.min_similarity)
    except Exception as e:
        logger.error(f"Template search error: {e}")
        raise HTTPException(status_code=500, detail="Template search failed")
    return {"results": [r.to_dict() for r in results], "search_type": "templates"}


@app.get("/nodes/{node_type}/info")
async def node_info(node_type: str):
    """Display info for a node type."""
    if node_info_cache is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    info = await resolve_node_info(node_type, node_info_cache, db_adapter)
    return {"node_type": node_type, **info.to_dict()}


@app.get("/nodes/{node_type}")
async def get_node_docs(node_type: str, engine: RetrievalEngine = Depends(get_retrieval)):
    """All stored documentation sections for a node type."""
    docs = await engine.get_node_docs_by_type(node_type)
    if not docs:
        raise HTTPException(status_code=404, detail=f"No documentation for {node_type}")
    return {"node_type": node_type, "chunks": [d.to_dict() for d in docs]}


@app.get("/templates/{template_id}")
async def get_template(template_id: int, engine: RetrievalEngine = Depends(get_retrieval)):
    """A stored workflow template by id."""
    template = await engine.get_template_by_id(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail=f"Template {template_id} not found")
    return template.to_dict()


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"error": "Configuration error", "detail": str(exc)})
