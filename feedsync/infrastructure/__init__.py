"""Infrastructure layer: configuration, settings and logging."""

from feedsync.infrastructure.config_manager import (
    ConfigManager,
    DatabaseConfig,
    ImportConfig,
    get_database_config,
)
from feedsync.infrastructure.logging_config import StructuredFormatter, setup_logging

__all__ = [
    "ConfigManager",
    "DatabaseConfig",
    "ImportConfig",
    "StructuredFormatter",
    "get_database_config",
    "setup_logging",
]
