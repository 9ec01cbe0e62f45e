"""Configuration module for LinkVault.

Provides configuration management for the database, scrapers, queue,
providers and logging.
"""

from .database import (
    DatabaseConfig,
    DatabaseType,
    DatabaseFactory,
    build_engine,
    db_factory
)
from .settings import (
    APIConfig,
    EmbeddingConfig,
    GenerationConfig,
    LogConfig,
    QueueConfig,
    RetryConfig,
    ScraperConfig,
    Settings,
    ThreadConfig
)

__all__ = [
    'DatabaseConfig',
    'DatabaseType',
    'DatabaseFactory',
    'build_engine',
    'db_factory',
    'APIConfig',
    'EmbeddingConfig',
    'GenerationConfig',
    'LogConfig',
    'QueueConfig',
    'RetryConfig',
    'ScraperConfig',
    'Settings',
    'ThreadConfig'
]
