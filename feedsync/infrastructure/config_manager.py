"""Configuration Manager for Database Credentials and Import Settings.

Loads the store connection and the pipeline tunables from environment
variables (optionally through a .env file) or a JSON file.

Security Impact:
    - Passwords and connection strings are held as SecretStr and never logged
    - Configuration is validated before any adapter is built

Architecture:
    - Infrastructure layer; the domain never imports this module
    - Type-safe configuration using Pydantic models
    - Fail-fast validation prevents runtime errors
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, quote_plus, unquote, urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "FS_"
SUPPORTED_DB_TYPES = ("duckdb", "postgresql")


class DatabaseConfig(BaseModel):
    """Connection settings for the canonical store.

    Parameters:
        db_type: 'duckdb' (default, in-process) or 'postgresql'
        db_path: DuckDB database file, or ':memory:'
        host, port, database, username: PostgreSQL server settings
        password: PostgreSQL password (SecretStr - never logged)
        connection_string: Full postgresql:// URL (SecretStr - never logged)
        ssl_mode: sslmode passed to libpq
        pool_size: Maximum pooled PostgreSQL connections
    """

    db_type: str = Field(default="duckdb", description="Database type (duckdb, postgresql)")
    db_path: Optional[str] = Field(None, description="Path to database file (for DuckDB)")
    host: Optional[str] = Field(None, description="Database host")
    port: Optional[int] = Field(None, description="Database port")
    database: Optional[str] = Field(None, description="Database name")
    username: Optional[str] = Field(None, description="Database username")
    password: Optional[SecretStr] = Field(None, description="Database password (secret)")
    connection_string: Optional[SecretStr] = Field(None, description="Full connection string (secret)")
    ssl_mode: Optional[str] = Field(None, description="SSL mode (require, prefer, disable)")
    pool_size: int = Field(default=5, ge=1, description="Connection pool size")

    @field_validator("db_type")
    @classmethod
    def validate_db_type(cls, v: str) -> str:
        if v.lower() not in SUPPORTED_DB_TYPES:
            raise ValueError(f"Unsupported database type: {v}. Supported: {list(SUPPORTED_DB_TYPES)}")
        return v.lower()

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: Optional[str]) -> Optional[str]:
        """Validate the database directory exists (the file may not yet)."""
        if v is None or v == ":memory:":
            return v
        db_path_obj = Path(v)
        if not db_path_obj.parent.exists():
            raise ValueError(f"Database directory does not exist: {db_path_obj.parent}")
        return str(db_path_obj)

    @staticmethod
    def _parse_postgresql_connection_string(conn_str: str) -> Dict[str, Any]:
        """Split a postgresql:// (or postgres://) URL into its components."""
        parsed = urlparse(conn_str)
        if parsed.scheme not in ("postgresql", "postgres"):
            raise ValueError(f"Unsupported connection string scheme: {parsed.scheme}")

        result: Dict[str, Any] = {
            "host": parsed.hostname,
            "port": parsed.port,
            "database": parsed.path.lstrip("/") if parsed.path else None,
            "username": unquote(parsed.username) if parsed.username else None,
            "password": unquote(parsed.password) if parsed.password else None,
        }
        query_params = parse_qs(parsed.query)
        if "sslmode" in query_params:
            result["ssl_mode"] = query_params["sslmode"][0]
        return result

    @model_validator(mode="after")
    def sync_connection_string_and_fields(self) -> "DatabaseConfig":
        """Keep the connection string and the individual fields consistent.

        A connection string always wins over individual fields.
        """
        if self.db_type != "postgresql":
            return self

        if self.connection_string:
            try:
                parsed = self._parse_postgresql_connection_string(self.connection_string.get_secret_value())
            except ValueError as e:
                logger.warning(f"Failed to parse connection string, using as-is: {e}")
                return self
            for name in ("host", "port", "database", "username", "ssl_mode"):
                if parsed.get(name):
                    setattr(self, name, parsed[name])
            if parsed.get("password"):
                self.password = SecretStr(parsed["password"])
        elif self.host and self.database:
            self.connection_string = SecretStr(self._build_url(quote=True))
        return self

    def _build_url(self, quote: bool) -> str:
        password_part = ""
        if self.password:
            value = self.password.get_secret_value()
            password_part = f":{quote_plus(value) if quote else value}"
        username_part = (quote_plus(self.username) if quote else self.username) if self.username else ""
        ssl_part = f"?sslmode={self.ssl_mode}" if self.ssl_mode else ""
        return f"postgresql://{username_part}{password_part}@{self.host}:{self.port or 5432}/{self.database}{ssl_part}"

    def get_connection_string(self) -> str:
        """Connection string for the configured store.

        Security Impact:
            - The password is read from SecretStr but never logged
        """
        if self.connection_string:
            return self.connection_string.get_secret_value()
        if self.db_type == "duckdb":
            return self.db_path or ":memory:"
        if not (self.host and self.database):
            raise ValueError("postgresql requires host and database")
        return self._build_url(quote=False)


class ImportConfig(BaseModel):
    """Pipeline tunables."""

    reference_chunk_size: int = Field(default=1000, ge=1)
    stream_chunk_rows: int = Field(default=10_000, ge=1)
    default_user: str = "unknown"
    include_info_report: bool = True


class ConfigManager:
    """Loads DatabaseConfig and ImportConfig from the environment or a file.

    Example Usage:
        ```python
        config = ConfigManager.from_environment()
        db_config = config.get_database_config()

        config = ConfigManager.from_file("feedsync.json")
        import_config = config.get_import_config()
        ```
    """

    def __init__(self, config_data: Dict[str, Any]):
        self._config_data = config_data
        self._database_config: Optional[DatabaseConfig] = None
        self._import_config: Optional[ImportConfig] = None

    @classmethod
    def from_environment(cls, env_file: Optional[str] = None) -> "ConfigManager":
        """Load configuration from FS_* environment variables.

        Environment Variables:
            - FS_DB_TYPE: duckdb or postgresql
            - FS_DB_PATH: DuckDB database file
            - FS_DB_HOST, FS_DB_PORT, FS_DB_NAME, FS_DB_USER: PostgreSQL server
            - FS_DB_PASSWORD: PostgreSQL password (secret)
            - FS_DB_CONNECTION_STRING: Full connection string (secret)
            - FS_DB_SSL_MODE: SSL mode
            - FS_DB_POOL_SIZE: Connection pool size
            - FS_REFERENCE_CHUNK_SIZE: Codes per reference query
            - FS_STREAM_CHUNK_ROWS: Rows per parsed chunk of delimited sources
            - FS_DEFAULT_USER: User recorded in history when none is given

        Parameters:
            env_file: .env file to load first (default: ./.env when present)

        Security Impact:
            - Credentials are read from the environment and never logged
        """
        env_path = Path(env_file) if env_file else Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            logger.debug(f"Loaded environment variables from {env_path}")

        def env(name: str, default: Optional[str] = None) -> Optional[str]:
            return os.getenv(f"{ENV_PREFIX}{name}", default)

        port = env("DB_PORT")
        config_data: Dict[str, Any] = {
            "database": {
                "db_type": env("DB_TYPE", "duckdb"),
                "db_path": env("DB_PATH"),
                "host": env("DB_HOST"),
                "port": int(port) if port else None,
                "database": env("DB_NAME"),
                "username": env("DB_USER"),
                "password": env("DB_PASSWORD"),
                "connection_string": env("DB_CONNECTION_STRING"),
                "ssl_mode": env("DB_SSL_MODE"),
            },
            "import": {},
        }
        if env("DB_POOL_SIZE"):
            config_data["database"]["pool_size"] = int(env("DB_POOL_SIZE"))
        for key, name in (
            ("reference_chunk_size", "REFERENCE_CHUNK_SIZE"),
            ("stream_chunk_rows", "STREAM_CHUNK_ROWS"),
            ("default_user", "DEFAULT_USER"),
        ):
            value = env(name)
            if value:
                config_data["import"][key] = value
        return cls(config_data)

    @classmethod
    def from_file(cls, config_path: str) -> "ConfigManager":
        """Load configuration from a JSON file with "database" and "import" sections.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file is not valid JSON
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        if config_file.stat().st_mode & 0o077 != 0:
            logger.warning(
                f"Configuration file has overly permissive permissions: {config_path}. "
                "Consider setting to 600 for credential files."
            )

        try:
            with open(config_file, "r", encoding="utf-8") as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {e}") from e
        return cls(config_data)

    def get_database_config(self) -> DatabaseConfig:
        if self._database_config is None:
            db_config_data = {k: v for k, v in self._config_data.get("database", {}).items() if v is not None}
            self._database_config = DatabaseConfig(**db_config_data)
        return self._database_config

    def get_import_config(self) -> ImportConfig:
        if self._import_config is None:
            self._import_config = ImportConfig(**self._config_data.get("import", {}))
        return self._import_config

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dot-separated key (e.g. "database.host")."""
        value: Any = self._config_data
        for k in key.split("."):
            if not isinstance(value, dict):
                return default
            value = value.get(k)
        return value if value is not None else default


def get_database_config() -> DatabaseConfig:
    """Database configuration from the environment (DuckDB in memory by default)."""
    return ConfigManager.from_environment().get_database_config()
