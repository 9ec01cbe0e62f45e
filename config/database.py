"""Database configuration and session factory for LinkVault.

SQLite is used for development and tests, PostgreSQL in production. Both go
through the same SQLAlchemy engine and session factory.
"""

import os
import logging
from typing import Optional
from enum import Enum

from pydantic import BaseModel, Field
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class DatabaseType(str, Enum):
    """Supported database types."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class DatabaseConfig(BaseModel):
    """Database configuration."""
    url: str = Field(default="sqlite:///linkvault.db", description="SQLAlchemy database URL")
    echo: bool = Field(default=False, description="Log SQL statements")

    # Connection settings (ignored for SQLite)
    pool_size: int = Field(default=10, description="Connection pool size")
    max_overflow: int = Field(default=20, description="Maximum pool overflow")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")

    @property
    def type(self) -> DatabaseType:
        if self.url.startswith("postgresql"):
            return DatabaseType.POSTGRESQL
        return DatabaseType.SQLITE

    @classmethod
    def from_env(cls) -> 'DatabaseConfig':
        """Create configuration from environment variables."""
        return cls(
            url=os.getenv('LINKVAULT_DATABASE_URL', 'sqlite:///linkvault.db'),
            echo=os.getenv('LINKVAULT_DATABASE_ECHO', 'false').lower() == 'true',
            pool_size=int(os.getenv('DB_POOL_SIZE', '10')),
            max_overflow=int(os.getenv('DB_MAX_OVERFLOW', '20')),
            pool_timeout=int(os.getenv('DB_POOL_TIMEOUT', '30'))
        )


def build_engine(config: DatabaseConfig) -> Engine:
    """Create an engine with pool settings appropriate for the backend."""
    if config.type == DatabaseType.SQLITE:
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in config.url or config.url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(config.url, echo=config.echo, **kwargs)

    return create_engine(
        config.url,
        echo=config.echo,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_timeout=config.pool_timeout,
        pool_pre_ping=True,
    )


class DatabaseFactory:
    """Process-wide engine and session factory."""

    _instance: Optional['DatabaseFactory'] = None

    def __new__(cls) -> 'DatabaseFactory':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._engine = None
            cls._instance._session_factory = None
            cls._instance._config = None
        return cls._instance

    def initialize(self, config: Optional[DatabaseConfig] = None, create_tables: bool = False):
        """Create the engine and optionally the schema (tests and local runs)."""
        if config is None:
            config = DatabaseConfig.from_env()

        self._config = config
        self._engine = build_engine(config)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

        if create_tables:
            from services.shared.models import Base
            Base.metadata.create_all(self._engine)

        logger.info(f"Database initialized: {config.type.value}")

    def close(self):
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connections closed")

    def get_session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._session_factory


# Global database factory instance
db_factory = DatabaseFactory()
