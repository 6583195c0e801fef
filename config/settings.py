"""Runtime settings for n8n-rag-sync.

Collects the ingestion, embedding, trigger and logging options from the
environment.
"""

import os
import logging
from typing import Optional
from pydantic import BaseModel, Field

from pipelines.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


def _env_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    if not value:
        return None
    try:
        return float(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e


class IngestionSettings(BaseModel):
    """Ingestion and service configuration."""
    github_token: Optional[str] = Field(default=None, description="GitHub token for higher rate limits")
    user_agent: str = Field(default="n8n-rag-sync", description="User agent for GitHub requests")
    templates_api: Optional[str] = Field(default=None, description="Override for the template API base URL")

    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    embedding_provider: str = Field(default="openai", description="openai or sentence-transformers")
    embedding_model: Optional[str] = Field(default=None, description="Embedding model name")
    embedding_dimensions: int = Field(default=1536, description="Vector dimension")
    embedding_batch_size: int = Field(default=512, description="Texts per embedding request")

    budget_seconds: Optional[float] = Field(default=None, description="Wall-clock budget for one run")

    cron_secret: Optional[str] = Field(default=None, description="Bearer secret for scheduled triggers")
    sync_key: Optional[str] = Field(default=None, description="Expected x-sync-key for manual triggers")
    sync_cron: Optional[str] = Field(default=None, description="Crontab expression for scheduled sync")

    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(default=False, description="Emit JSON logs")

    @classmethod
    def from_env(cls) -> 'IngestionSettings':
        """Create configuration from environment variables."""
        settings = cls(
            github_token=os.getenv('GITHUB_TOKEN') or None,
            user_agent=os.getenv('RAG_USER_AGENT', 'n8n-rag-sync'),
            templates_api=os.getenv('N8N_TEMPLATES_API') or None,
            openai_api_key=os.getenv('OPENAI_API_KEY') or None,
            embedding_provider=os.getenv('EMBEDDING_PROVIDER', 'openai').lower(),
            embedding_model=os.getenv('EMBEDDING_MODEL') or None,
            embedding_dimensions=_env_int('EMBEDDING_DIMENSIONS', 1536),
            embedding_batch_size=_env_int('EMBEDDING_BATCH_SIZE', 512),
            budget_seconds=_env_float('INGEST_BUDGET_SECONDS'),
            cron_secret=os.getenv('CRON_SECRET') or None,
            sync_key=os.getenv('SYNC_KEY') or None,
            sync_cron=os.getenv('SYNC_CRON') or None,
            log_level=os.getenv('LOG_LEVEL', 'INFO'),
            log_json=_env_bool('LOG_JSON'),
        )
        settings.validate_settings()
        return settings

    def validate_settings(self):
        """Raise ConfigurationError for settings that cannot work."""
        if self.embedding_provider not in ("openai", "sentence-transformers"):
            raise ConfigurationError(f"Unsupported EMBEDDING_PROVIDER: {self.embedding_provider}")
        if self.embedding_batch_size <= 0 or self.embedding_batch_size > 2048:
            raise ConfigurationError("EMBEDDING_BATCH_SIZE must be between 1 and 2048")
        if self.budget_seconds is not None and self.budget_seconds <= 0:
            raise ConfigurationError("INGEST_BUDGET_SECONDS must be positive")
