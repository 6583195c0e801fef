"""Tests for logging and metrics helpers.

Tests cover:
- Sync run tagging on log records
- JSON and console formatting
- Metric recording against the service registry
"""

import json
import logging

from observability.logging import (
    ColoredFormatter,
    JSONFormatter,
    SyncRunFilter,
    current_run_id,
    sync_run_context,
)
from observability.prometheus_metrics import (
    PrometheusMiddleware,
    rag_registry,
    record_ingestion_run,
    record_upsert,
)


def make_record(message="Fetched 3 docs"):
    record = logging.LogRecord("pipelines.ingest", logging.INFO, __file__, 10, message, None, None)
    SyncRunFilter().filter(record)
    return record


class TestSyncRunContext:
    """Test suite for sync run tagging."""

    def test_context_sets_and_resets(self):
        """Test the run id is visible only inside the block."""
        assert current_run_id() is None
        with sync_run_context("run-1234567890", "cron"):
            assert current_run_id() == "run-1234567890"
            record = make_record()
        assert current_run_id() is None

        assert record.run_id == "run-1234567890"
        assert record.trigger == "cron"

    def test_json_includes_run(self):
        """Test JSON output carries the run fields."""
        with sync_run_context("abc", "manual"):
            entry = json.loads(JSONFormatter().format(make_record()))

        assert entry["message"] == "Fetched 3 docs"
        assert entry["run_id"] == "abc"
        assert entry["trigger"] == "manual"
        assert entry["service"] == "n8n-rag-sync"

    def test_json_without_run(self):
        """Test unset run fields are omitted."""
        entry = json.loads(JSONFormatter().format(make_record()))
        assert "run_id" not in entry

    def test_console_prefix(self):
        """Test console output shows the short run id."""
        with sync_run_context("0123456789abcdef", "manual"):
            line = ColoredFormatter(use_colors=False).format(make_record())

        assert "pipelines.ingest [01234567] | Fetched 3 docs" in line


class TestMetrics:
    """Test suite for metric helpers."""

    def test_ingestion_run_counter(self):
        """Test sub-run outcomes are counted per source and status."""
        labels = {"source": "n8n-templates", "status": "error"}
        before = rag_registry.get_sample_value("rag_ingestion_runs_total", labels) or 0.0

        record_ingestion_run("n8n-templates", False)

        assert rag_registry.get_sample_value("rag_ingestion_runs_total", labels) == before + 1

    def test_upsert_counters(self):
        """Test successes and failures land in separate counters."""
        labels = {"table": "node_docs"}
        ok_before = rag_registry.get_sample_value("rag_records_upserted_total", labels) or 0.0
        failed_before = rag_registry.get_sample_value("rag_upsert_failures_total", labels) or 0.0

        record_upsert("node_docs", True)
        record_upsert("node_docs", False)

        assert rag_registry.get_sample_value("rag_records_upserted_total", labels) == ok_before + 1
        assert rag_registry.get_sample_value("rag_upsert_failures_total", labels) == failed_before + 1

    def test_endpoint_normalization(self):
        """Test path parameters are collapsed for metric labels."""
        middleware = PrometheusMiddleware(app=None)

        assert middleware._normalize_endpoint("/nodes/n8n-nodes-base.slack/info") == "/nodes/{node_type}/info"
        assert middleware._normalize_endpoint("/templates/42") == "/templates/{id}"
