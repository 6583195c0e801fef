"""Prometheus metrics integration for n8n-rag-sync."""

from prometheus_client import Counter, Histogram, Info, generate_latest
from prometheus_client.core import CollectorRegistry
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
import os
import re
import time
from typing import Optional
import logging

logger = logging.getLogger(__name__)

# Create custom registry for n8n-rag-sync metrics
rag_registry = CollectorRegistry()

# Request metrics
request_count = Counter(
    'rag_http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=rag_registry
)

request_duration = Histogram(
    'rag_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=rag_registry
)

# Search metrics
search_requests = Counter(
    'rag_search_requests_total',
    'Total number of retrieval requests',
    ['search_type', 'status'],
    registry=rag_registry
)

search_duration = Histogram(
    'rag_search_duration_seconds',
    'Retrieval request duration in seconds',
    ['search_type'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=rag_registry
)

search_results_count = Histogram(
    'rag_search_results_count',
    'Number of retrieval results returned',
    ['search_type'],
    buckets=[0, 1, 3, 5, 8, 10, 25, 50],
    registry=rag_registry
)

# Ingestion metrics
ingestion_runs = Counter(
    'rag_ingestion_runs_total',
    'Total number of ingestion sub-runs',
    ['source', 'status'],
    registry=rag_registry
)

ingestion_duration = Histogram(
    'rag_ingestion_duration_seconds',
    'Full ingestion run duration in seconds',
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0],
    registry=rag_registry
)

records_upserted = Counter(
    'rag_records_upserted_total',
    'Total number of rows written to the vector store',
    ['table'],
    registry=rag_registry
)

upsert_failures = Counter(
    'rag_upsert_failures_total',
    'Total number of failed row writes',
    ['table'],
    registry=rag_registry
)

template_fetch_failures = Counter(
    'rag_template_fetch_failures_total',
    'Total number of template detail requests that failed',
    registry=rag_registry
)

embedding_duration = Histogram(
    'rag_embedding_batch_duration_seconds',
    'Embedding batch generation duration in seconds',
    ['model'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=rag_registry
)

# Application info
app_info = Info(
    'rag_app_info',
    'n8n-rag-sync application information',
    registry=rag_registry
)

# Error metrics
error_count = Counter(
    'rag_errors_total',
    'Total number of errors',
    ['error_type', 'component'],
    registry=rag_registry
)


class PrometheusMiddleware:
    """Middleware to collect Prometheus metrics for HTTP requests."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        method = request.method
        endpoint = self._normalize_endpoint(request.url.path)

        start_time = time.time()
        status_code = 500  # Default to error

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            logger.error(f"Request processing error: {e}")
            error_count.labels(error_type=type(e).__name__, component="http").inc()
            raise
        finally:
            request_count.labels(
                method=method,
                endpoint=endpoint,
                status_code=str(status_code)
            ).inc()
            request_duration.labels(
                method=method,
                endpoint=endpoint
            ).observe(time.time() - start_time)

    def _normalize_endpoint(self, path: str) -> str:
        """Normalize endpoint path to reduce cardinality."""
        path = re.sub(r'^/nodes/[^/]+', '/nodes/{node_type}', path)
        path = re.sub(r'/\d+', '/{id}', path)
        return path


def setup_prometheus_metrics(app: FastAPI) -> None:
    """Setup Prometheus metrics collection for FastAPI app."""
    app.add_middleware(PrometheusMiddleware)

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint():
        """Prometheus metrics endpoint."""
        return generate_latest(rag_registry)

    app_info.info({
        'version': os.getenv('APP_VERSION', 'unknown'),
        'environment': os.getenv('ENVIRONMENT', 'development'),
    })

    logger.info("Prometheus metrics configured")


def record_search_metrics(search_type: str, duration: float, result_count: int,
                          error: Optional[str] = None) -> None:
    """Record retrieval-related metrics."""
    status = "error" if error else "success"

    search_requests.labels(search_type=search_type, status=status).inc()
    search_duration.labels(search_type=search_type).observe(duration)

    if not error:
        search_results_count.labels(search_type=search_type).observe(result_count)
    else:
        error_count.labels(error_type="search_error", component="retrieval").inc()


def record_ingestion_run(source: str, success: bool) -> None:
    """Record the outcome of one ingestion sub-run."""
    ingestion_runs.labels(source=source, status="success" if success else "error").inc()
    if not success:
        error_count.labels(error_type="ingestion_error", component="ingestion").inc()


def record_upsert(table: str, success: bool) -> None:
    """Record a single row write."""
    if success:
        records_upserted.labels(table=table).inc()
    else:
        upsert_failures.labels(table=table).inc()


def record_embedding_batch(model: str, duration: float) -> None:
    embedding_duration.labels(model=model).observe(duration)


def record_template_fetch_failure() -> None:
    template_fetch_failures.inc()


def record_ingestion_duration(duration: float) -> None:
    ingestion_duration.observe(duration)
