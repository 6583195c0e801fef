"""Database configuration and factory for n8n-rag-sync.

Provides unified interface for database operations with support for
both SQLite (development) and PostgreSQL (production) backends.
"""

import os
import logging
from typing import Union, Optional
from enum import Enum
from pydantic import BaseModel, Field

from indexer.postgres_adapter import PostgresAdapter, PostgresConfig
from indexer.sqlite_adapter import SQLiteAdapter
from pipelines.errors import ConfigurationError

logger = logging.getLogger(__name__)

StoreAdapter = Union[PostgresAdapter, SQLiteAdapter]


class DatabaseType(str, Enum):
    """Supported database types."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class DatabaseConfig(BaseModel):
    """Database configuration."""
    type: DatabaseType = Field(default=DatabaseType.POSTGRESQL, description="Database type")

    # SQLite configuration
    sqlite_path: str = Field(default="n8n_rag.db", description="SQLite database path")

    # PostgreSQL configuration
    postgres: PostgresConfig = Field(default_factory=PostgresConfig, description="PostgreSQL configuration")

    @classmethod
    def from_env(cls) -> 'DatabaseConfig':
        """Create configuration from environment variables.

        PostgreSQL is used unless RAG_DB_TYPE is ``sqlite``. The unpooled URL
        is preferred because ingestion holds connections across transactions.
        """
        db_type = os.getenv('RAG_DB_TYPE', 'postgresql').lower()

        if db_type == 'sqlite':
            return cls(
                type=DatabaseType.SQLITE,
                sqlite_path=os.getenv('SQLITE_PATH', 'n8n_rag.db')
            )

        if db_type != 'postgresql':
            raise ConfigurationError(f"Unsupported RAG_DB_TYPE: {db_type}")

        dsn = os.getenv('DATABASE_URL_UNPOOLED') or os.getenv('DATABASE_URL')
        if not dsn and not os.getenv('POSTGRES_HOST'):
            raise ConfigurationError("DATABASE_URL is not set")

        postgres_config = PostgresConfig(
            dsn=dsn,
            host=os.getenv('POSTGRES_HOST', 'localhost'),
            port=int(os.getenv('POSTGRES_PORT', '5432')),
            database=os.getenv('POSTGRES_DB', 'n8n_rag'),
            user=os.getenv('POSTGRES_USER', 'n8n_rag'),
            password=os.getenv('POSTGRES_PASSWORD', ''),
            min_connections=int(os.getenv('POSTGRES_MIN_CONNECTIONS', '1')),
            max_connections=int(os.getenv('POSTGRES_MAX_CONNECTIONS', '10')),
            command_timeout=int(os.getenv('POSTGRES_COMMAND_TIMEOUT', '60'))
        )

        return cls(type=DatabaseType.POSTGRESQL, postgres=postgres_config)


class DatabaseFactory:
    """Factory for creating database adapters."""

    _instance: Optional['DatabaseFactory'] = None
    _adapter: Optional[StoreAdapter] = None
    _config: Optional[DatabaseConfig] = None

    def __new__(cls) -> 'DatabaseFactory':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self, config: Optional[DatabaseConfig] = None):
        """Initialize database adapter based on configuration."""
        if config is None:
            config = DatabaseConfig.from_env()

        self._config = config

        if config.type == DatabaseType.POSTGRESQL:
            logger.info("Initializing PostgreSQL adapter")
            self._adapter = PostgresAdapter(config.postgres)
        else:
            logger.info("Initializing SQLite adapter")
            self._adapter = SQLiteAdapter(config.sqlite_path)

        await self._adapter.initialize()
        logger.info(f"Database adapter initialized: {config.type.value}")

    async def close(self):
        """Close database connections."""
        if self._adapter:
            await self._adapter.close()
            self._adapter = None
            logger.info("Database adapter closed")

    def get_adapter(self) -> StoreAdapter:
        """Get the current database adapter."""
        if self._adapter is None:
            raise ConfigurationError("Database adapter not initialized. Call initialize() first.")
        return self._adapter

    def get_config(self) -> DatabaseConfig:
        """Get the current database configuration."""
        if self._config is None:
            raise ConfigurationError("Database not initialized. Call initialize() first.")
        return self._config

    def is_postgresql(self) -> bool:
        """Check if using PostgreSQL backend."""
        return bool(self._config and self._config.type == DatabaseType.POSTGRESQL)


# Global database factory instance
db_factory = DatabaseFactory()


async def get_db_adapter() -> StoreAdapter:
    """Get database adapter instance."""
    return db_factory.get_adapter()


async def initialize_database(config: Optional[DatabaseConfig] = None):
    """Initialize database with configuration."""
    await db_factory.initialize(config)


async def close_database():
    """Close database connections."""
    await db_factory.close()
