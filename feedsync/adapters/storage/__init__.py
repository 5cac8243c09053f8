"""Storage adapters for feedsync.

This module contains storage adapters that implement the StoragePort interface
for the canonical store (DuckDB in-process, PostgreSQL for shared deployments).
"""

from feedsync.adapters.storage.duckdb_adapter import DuckDBAdapter
from feedsync.adapters.storage.postgresql_adapter import PostgreSQLAdapter

__all__ = ["DuckDBAdapter", "PostgreSQLAdapter"]
