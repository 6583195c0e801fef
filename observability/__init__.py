"""Observability package for n8n-rag-sync."""

from .logging import setup_logging, sync_run_context, current_run_id, SyncRunFilter
from .prometheus_metrics import (
    setup_prometheus_metrics,
    record_search_metrics,
    record_ingestion_run,
    record_upsert,
    record_embedding_batch,
    record_template_fetch_failure,
    record_ingestion_duration,
    PrometheusMiddleware,
    rag_registry
)

__all__ = [
    'setup_logging',
    'sync_run_context',
    'current_run_id',
    'SyncRunFilter',
    'setup_prometheus_metrics',
    'record_search_metrics',
    'record_ingestion_run',
    'record_upsert',
    'record_embedding_batch',
    'record_template_fetch_failure',
    'record_ingestion_duration',
    'PrometheusMiddleware',
    'rag_registry'
]
