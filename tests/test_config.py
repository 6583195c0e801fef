"""Tests for settings, database selection, source configuration and trigger authorisation."""

import pytest
from types import SimpleNamespace

from config.database import DatabaseConfig, DatabaseFactory, DatabaseType
from config.settings import IngestionSettings
from pipelines.errors import ConfigurationError
from server.security.auth import authorize_trigger, is_cron_request
from sources.loader import SourceLoader, TreeSourceConfig, TemplateSourceConfig


def request_with(**headers):
    return SimpleNamespace(headers={k.lower().replace("_", "-"): v for k, v in headers.items()})


class TestIngestionSettings:
    """Test suite for IngestionSettings.from_env."""

    def test_defaults(self, monkeypatch):
        """Test defaults with an empty environment."""
        for name in ("GITHUB_TOKEN", "OPENAI_API_KEY", "EMBEDDING_PROVIDER", "EMBEDDING_BATCH_SIZE",
                     "INGEST_BUDGET_SECONDS", "CRON_SECRET", "SYNC_KEY", "SYNC_CRON", "LOG_JSON"):
            monkeypatch.delenv(name, raising=False)

        settings = IngestionSettings.from_env()

        assert settings.embedding_provider == "openai"
        assert settings.embedding_batch_size == 512
        assert settings.budget_seconds is None
        assert settings.sync_key is None
        assert settings.log_json is False

    def test_from_env(self, monkeypatch):
        """Test values are read from the environment."""
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_x")
        monkeypatch.setenv("EMBEDDING_BATCH_SIZE", "100")
        monkeypatch.setenv("INGEST_BUDGET_SECONDS", "280")
        monkeypatch.setenv("SYNC_CRON", "0 3 * * *")
        monkeypatch.setenv("LOG_JSON", "true")

        settings = IngestionSettings.from_env()

        assert settings.github_token == "ghp_x"
        assert settings.embedding_batch_size == 100
        assert settings.budget_seconds == 280.0
        assert settings.sync_cron == "0 3 * * *"
        assert settings.log_json is True

    @pytest.mark.parametrize("name,value", [
        ("EMBEDDING_BATCH_SIZE", "5000"),
        ("EMBEDDING_BATCH_SIZE", "many"),
        ("EMBEDDING_PROVIDER", "word2vec"),
        ("INGEST_BUDGET_SECONDS", "-1"),
    ])
    def test_invalid_values(self, monkeypatch, name, value):
        """Test unusable settings are rejected."""
        monkeypatch.setenv(name, value)
        with pytest.raises(ConfigurationError):
            IngestionSettings.from_env()


class TestSourceLoader:
    """Test suite for SourceLoader."""

    def test_bundled_sources(self):
        """Test the bundled YAML sources load."""
        loader = SourceLoader()

        docs = loader.load_tree_source("n8n-docs")
        nodes = loader.load_tree_source("n8n-nodes")
        templates = loader.load_template_source()

        assert docs.repo == "n8n-io/n8n-docs"
        assert nodes.matches("packages/nodes-base/nodes/Slack/Slack.node.ts")
        assert not nodes.matches("packages/nodes-base/nodes/Slack/test/Slack.test.node.ts")
        assert templates.api_base == "https://api.n8n.io/api"

    def test_defaults_without_yaml(self, tmp_path):
        """Test built-in defaults apply when no YAML file exists."""
        loader = SourceLoader(tmp_path)

        assert loader.load_tree_source("n8n-nodes").batch_size == 15
        assert loader.load_template_source().rows_per_page == 50
        assert loader.load_node_registry() == {}

    def test_yaml_overrides(self, tmp_path):
        """Test YAML values override the defaults."""
        (tmp_path / "n8n-templates.yaml").write_text("priority_pages: 1\nrows_per_page: 10\n")

        source = SourceLoader(tmp_path).load_template_source()

        assert source.priority_pages == 1
        assert source.rows_per_page == 10

    def test_unknown_source(self, tmp_path):
        """Test a source with no configuration is an error."""
        with pytest.raises(ValueError):
            SourceLoader(tmp_path).load_tree_source("missing")

    @pytest.mark.parametrize("kwargs", [
        {"name": "x", "repo": "no-slash", "path_prefixes": ["docs"]},
        {"name": "x", "repo": "a/b", "path_prefixes": []},
        {"name": "x", "repo": "a/b", "path_prefixes": ["docs"], "batch_size": 0},
    ])
    def test_invalid_tree_source(self, kwargs):
        """Test tree source validation."""
        with pytest.raises(ValueError):
            TreeSourceConfig(**kwargs)

    def test_invalid_template_source(self):
        """Test template source validation."""
        with pytest.raises(ValueError):
            TemplateSourceConfig(name="t", api_base="ftp://example.com")


class TestTriggerAuth:
    """Test suite for trigger authorisation."""

    def test_cron_bearer(self):
        """Test the cron secret authorises as cron."""
        request = request_with(Authorization="Bearer s3cret")

        assert is_cron_request(request, "s3cret")
        assert authorize_trigger(request, "s3cret", "key") == "cron"

    def test_cron_secret_unset(self):
        """Test a bearer token means nothing without a configured secret."""
        assert not is_cron_request(request_with(Authorization="Bearer "), None)

    def test_sync_key(self):
        """Test a matching key authorises a manual trigger."""
        assert authorize_trigger(request_with(X_Sync_Key="key"), "s3cret", "key") == "manual"
        assert authorize_trigger(request_with(X_Sync_Key="wrong"), "s3cret", "key") is None

    def test_any_key_when_unconfigured(self):
        """Test any non-empty key is accepted when no key is configured."""
        assert authorize_trigger(request_with(X_Sync_Key="anything"), None, None) == "manual"
        assert authorize_trigger(request_with(), None, None) is None


class TestDatabaseConfig:
    """Test suite for database selection."""

    def test_sqlite_selected(self, monkeypatch, tmp_path):
        """Test RAG_DB_TYPE=sqlite selects the SQLite backend."""
        monkeypatch.setenv("RAG_DB_TYPE", "sqlite")
        monkeypatch.setenv("SQLITE_PATH", str(tmp_path / "dev.db"))

        config = DatabaseConfig.from_env()

        assert config.type == DatabaseType.SQLITE
        assert config.sqlite_path.endswith("dev.db")

    def test_unpooled_url_preferred(self, monkeypatch):
        """Test the unpooled connection string wins over the pooled one."""
        monkeypatch.delenv("RAG_DB_TYPE", raising=False)
        monkeypatch.setenv("DATABASE_URL", "postgresql://pooled/db")
        monkeypatch.setenv("DATABASE_URL_UNPOOLED", "postgresql://direct/db")

        config = DatabaseConfig.from_env()

        assert config.type == DatabaseType.POSTGRESQL
        assert config.postgres.dsn == "postgresql://direct/db"

    def test_missing_url(self, monkeypatch):
        """Test PostgreSQL without a connection string is a configuration error."""
        for name in ("RAG_DB_TYPE", "DATABASE_URL", "DATABASE_URL_UNPOOLED", "POSTGRES_HOST"):
            monkeypatch.delenv(name, raising=False)

        with pytest.raises(ConfigurationError, match="DATABASE_URL is not set"):
            DatabaseConfig.from_env()

    @pytest.mark.asyncio
    async def test_factory_sqlite(self, tmp_path):
        """Test the factory opens and closes a SQLite store."""
        factory = DatabaseFactory()
        await factory.initialize(DatabaseConfig(type=DatabaseType.SQLITE,
                                                sqlite_path=str(tmp_path / "f.db")))
        try:
            assert await factory.get_adapter().ping() is True
            assert factory.is_postgresql() is False
        finally:
            await factory.close()

        with pytest.raises(ConfigurationError):
            factory.get_adapter()
