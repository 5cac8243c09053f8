"""Application Settings.

Combines the configuration manager with application defaults for the CLI
and the HTTP API.

Security Impact:
    - Database credentials are managed via DatabaseConfig and never logged
"""

import os
from typing import List, Optional

from feedsync import __version__
from feedsync.infrastructure.config_manager import ConfigManager, DatabaseConfig, ImportConfig

APP_NAME = "feedsync"
APP_VERSION = __version__

DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://localhost:5173"


class Settings:
    """Application settings loaded from configuration manager and environment."""

    def __init__(self):
        self._config_manager: Optional[ConfigManager] = None

        self.app_name = os.getenv("FS_APP_NAME", APP_NAME)
        self.log_level = os.getenv("FS_LOG_LEVEL", "INFO")
        self.json_logs = os.getenv("FS_JSON_LOGS", "false").lower() == "true"
        self.cors_origins: List[str] = [
            origin.strip()
            for origin in os.getenv("FS_CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
            if origin.strip()
        ]

    @property
    def config_manager(self) -> ConfigManager:
        if self._config_manager is None:
            self._config_manager = ConfigManager.from_environment()
        return self._config_manager

    @property
    def db_config(self) -> DatabaseConfig:
        return self.config_manager.get_database_config()

    @property
    def import_config(self) -> ImportConfig:
        return self.config_manager.get_import_config()

    def get_db_path(self) -> str:
        """DuckDB database path, or ':memory:'."""
        if self.db_config.db_type == "duckdb":
            return self.db_config.db_path or ":memory:"
        raise ValueError(f"Database type '{self.db_config.db_type}' does not use db_path")


# Global settings instance
settings = Settings()
