"""Configuration module for n8n-rag-sync.

Provides configuration management for the database, embeddings, and the
ingestion service.
"""

from .database import (
    DatabaseConfig,
    DatabaseType,
    DatabaseFactory,
    db_factory,
    get_db_adapter,
    initialize_database,
    close_database
)
from .settings import IngestionSettings

__all__ = [
    'DatabaseConfig',
    'DatabaseType',
    'DatabaseFactory',
    'db_factory',
    'get_db_adapter',
    'initialize_database',
    'close_database',
    'IngestionSettings'
]
