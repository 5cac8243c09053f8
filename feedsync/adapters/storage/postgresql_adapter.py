"""PostgreSQL Storage Adapter.

This adapter implements the StoragePort contract on PostgreSQL for
production deployments shared by several importing workstations.

Security Impact:
    - Connection credentials come from DatabaseConfig and are never logged
    - Values are always bound; identifiers are checked before interpolation
    - SSL mode defaults to 'prefer'

Architecture:
    - Implements StoragePort (Hexagonal Architecture)
    - ThreadedConnectionPool; every operation borrows one connection and
      runs in one transaction
    - Bulk statements use psycopg2.extras.execute_values with typed
      templates so NULLs and ISO dates land in DATE/INTEGER columns
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Set, Tuple

import pandas as pd
import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2 import pool
from psycopg2.extras import execute_values

from feedsync.adapters.storage import schema as sql
from feedsync.domain.models import ImportHistoryRecord, TransformedRow, UpsertOutcome
from feedsync.domain.ports import ReferenceTableError, Result, StorageError, StoragePort
from feedsync.domain.priority import (
    CURRENT_PRIORITY_TABLE,
    ORPHAN_STATUS,
    PORTAL_TAG,
    STATUS_COLUMN,
    SourcePriorityTable,
    plan_merge,
)
from feedsync.domain.sources import TableSchema
from feedsync.infrastructure.config_manager import DatabaseConfig

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_CASTS = {"DATE": "date", "INTEGER": "integer", "TEXT": "text"}


def _template(target: TableSchema, columns: Sequence[str]) -> str:
    """execute_values row template with one typed placeholder per column."""
    parts = []
    for column in columns:
        if column == "last_seen_at":
            parts.append("%s::timestamp")
        elif column == "source_tag":
            parts.append("%s::text")
        else:
            parts.append(f"%s::{_CASTS[sql.column_type(target, column, 'postgresql')]}")
    return "(" + ", ".join(parts) + ")"


class PostgreSQLAdapter(StoragePort):
    """PostgreSQL implementation of StoragePort.

    Example Usage:
        ```python
        db_config = ConfigManager.from_environment().get_database_config()
        adapter = PostgreSQLAdapter(db_config=db_config)
        adapter.initialize_schema()
        ```
    """

    def __init__(
        self,
        db_config: Optional[DatabaseConfig] = None,
        connection_string: Optional[str] = None,
        pool_size: int = 5,
        clock: Optional[Clock] = None,
        priority_table: SourcePriorityTable = CURRENT_PRIORITY_TABLE,
    ):
        """Initialize PostgreSQL adapter.

        Parameters:
            db_config: DatabaseConfig from configuration manager (preferred)
            connection_string: Full PostgreSQL URL (used when db_config is absent)
            pool_size: Maximum pooled connections
            clock: Timestamp source for last_seen_at and orphan fences
            priority_table: Source ranks deciding update vs complement

        Raises:
            StorageError: If no usable connection settings are given
        """
        self._connection_pool: Optional[pool.ThreadedConnectionPool] = None
        self._initialized = False
        self.clock: Clock = clock or datetime.now
        self.priority_table = priority_table

        if db_config:
            if db_config.db_type != "postgresql":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match PostgreSQL adapter",
                    operation="__init__",
                )
            if db_config.connection_string:
                self.connection_params: Dict[str, Any] = {"dsn": db_config.connection_string.get_secret_value()}
            elif db_config.host and db_config.database:
                self.connection_params = {
                    "host": db_config.host,
                    "port": db_config.port or 5432,
                    "database": db_config.database,
                    "user": db_config.username,
                    "sslmode": db_config.ssl_mode or "prefer",
                }
                if db_config.password:
                    self.connection_params["password"] = db_config.password.get_secret_value()
            else:
                raise StorageError("PostgreSQL DatabaseConfig requires host and database", operation="__init__")
            self.pool_size = db_config.pool_size
        elif connection_string:
            self.connection_params = {"dsn": connection_string}
            self.pool_size = pool_size
        else:
            raise StorageError(
                "PostgreSQL adapter requires either db_config or connection_string", operation="__init__"
            )

    def _get_connection_pool(self) -> pool.ThreadedConnectionPool:
        if self._connection_pool is None:
            try:
                self._connection_pool = pool.ThreadedConnectionPool(
                    minconn=1, maxconn=self.pool_size, **self.connection_params
                )
                logger.info("Created PostgreSQL connection pool")
            except psycopg2.Error as e:
                raise StorageError(
                    f"Failed to create PostgreSQL connection pool: {e}",
                    operation="connect",
                    details={"host": self.connection_params.get("host", "N/A")},
                ) from e
        return self._connection_pool

    @contextmanager
    def _transaction(self) -> Iterator[Any]:
        """Borrow a pooled connection and yield a cursor inside one transaction."""
        connection_pool = self._get_connection_pool()
        conn = connection_pool.getconn()
        try:
            with conn.cursor() as cursor:
                yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            connection_pool.putconn(conn)

    def _ensure_schema(self) -> None:
        if not self._initialized:
            result = self.initialize_schema()
            if result.is_failure():
                raise StorageError(result.error, operation="initialize_schema")

    @staticmethod
    def _target(table_name: str) -> TableSchema:
        target = sql.targets().get(table_name)
        if target is None:
            raise StorageError(f"Unknown target table '{table_name}'", operation="lookup_table")
        return target

    def initialize_schema(self) -> Result[None]:
        """Create target, reference and history tables if they do not exist."""
        try:
            with self._transaction() as cursor:
                for statement in sql.schema_statements("postgresql"):
                    cursor.execute(statement)
            self._initialized = True
            logger.info("PostgreSQL schema initialized")
            return Result.success_result(None)
        except Exception as e:
            error_msg = f"Failed to initialize schema: {e}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="initialize_schema"), error_type="StorageError"
            )

    def current_timestamp(self) -> datetime:
        return self.clock()

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def _fetch_existing(
        self, cursor, target: TableSchema, rows: Sequence[TransformedRow]
    ) -> Dict[Tuple[str, ...], Dict[str, Any]]:
        selected = list(target.columns) + ["source_tag"]
        keys = list({row.key: sql.key_params(target, row.key) for row in rows}.values())
        join = " AND ".join(f"t.{c} = k.{c}" for c in target.key)
        found = execute_values(
            cursor,
            f"SELECT {', '.join('t.' + c for c in selected)} FROM {target.name} t "
            f"JOIN (VALUES %s) AS k({', '.join(target.key)}) ON {join}",
            keys,
            template=_template(target, target.key),
            page_size=max(len(keys), 1),
            fetch=True,
        )
        existing: Dict[Tuple[str, ...], Dict[str, Any]] = {}
        for record in found:
            values = dict(zip(selected, record))
            existing[tuple(sql.key_text(values[c]) for c in target.key)] = values
        return existing

    def upsert_batch(
        self,
        table_name: str,
        rows: Sequence[TransformedRow],
        source_tag: str,
    ) -> Result[UpsertOutcome]:
        """Merge one chunk atomically (see DuckDBAdapter.upsert_batch for the policy)."""
        if not rows:
            return Result.success_result(UpsertOutcome())

        try:
            self._ensure_schema()
            target = self._target(table_name)
            with self._transaction() as cursor:
                existing = self._fetch_existing(cursor, target, rows)
                plan = plan_merge(rows, existing, source_tag, target.columns, target.key, self.priority_table)
                now = self.clock()

                if plan.inserts:
                    columns = list(target.columns) + ["source_tag", "last_seen_at"]
                    execute_values(
                        cursor,
                        f"INSERT INTO {target.name} ({', '.join(columns)}) VALUES %s",
                        [sql.row_params(target, row.values, target.columns) + (source_tag, now) for row in plan.inserts],
                        template=_template(target, columns),
                    )

                if plan.updates:
                    set_columns = [c for c in target.columns if c not in target.key]
                    columns = list(target.key) + set_columns + ["source_tag", "last_seen_at"]
                    assignments = ", ".join(f"{c} = v.{c}" for c in columns[len(target.key):])
                    match = " AND ".join(f"t.{c} = v.{c}" for c in target.key)
                    execute_values(
                        cursor,
                        f"UPDATE {target.name} AS t SET {assignments} "
                        f"FROM (VALUES %s) AS v({', '.join(columns)}) WHERE {match}",
                        [
                            sql.key_params(target, row.key)
                            + sql.row_params(target, row.values, set_columns)
                            + (source_tag, now)
                            for row in plan.updates
                        ],
                        template=_template(target, columns),
                    )

                where = " AND ".join(f"{c} = %s" for c in target.key)
                for key, fills in plan.complements:
                    if not fills:
                        continue
                    assignments = ", ".join(f"{c} = %s" for c in fills)
                    cursor.execute(
                        f"UPDATE {target.name} SET {assignments} WHERE {where}",
                        [sql.to_db(target, c, v) for c, v in fills.items()] + list(sql.key_params(target, key)),
                    )

            return Result.success_result(plan.outcome)

        except Exception as e:
            error_msg = f"Failed to merge chunk into {table_name}: {e}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="upsert_batch", details={"table_name": table_name, "rows": len(rows)}),
                error_type="StorageError",
                error_details={"table_name": table_name, "rows": len(rows)},
            )

    def mark_orphans(self, table_name: str, source_tag: str, run_started_at: datetime) -> Result[int]:
        try:
            self._ensure_schema()
            target = self._target(table_name)
            if STATUS_COLUMN not in target.columns:
                raise StorageError(
                    f"Table '{table_name}' has no '{STATUS_COLUMN}' column", operation="mark_orphans"
                )
            with self._transaction() as cursor:
                cursor.execute(
                    f"UPDATE {target.name} SET {STATUS_COLUMN} = %s, source_tag = %s "
                    f"WHERE source_tag = %s AND last_seen_at < %s",
                    (ORPHAN_STATUS, PORTAL_TAG, source_tag, run_started_at),
                )
                retired = cursor.rowcount
            return Result.success_result(retired)
        except Exception as e:
            error_msg = f"Failed to mark orphans of {source_tag} in {table_name}: {e}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="mark_orphans", details={"table_name": table_name}),
                error_type="StorageError",
            )

    # ------------------------------------------------------------------
    # Reference reads
    # ------------------------------------------------------------------

    def fetch_existing_codes(self, table_name: str, column: str, codes: Sequence[str]) -> Set[str]:
        if not codes:
            return set()
        sql.check_identifier(table_name)
        trimmed = f"TRIM({sql.check_identifier(column)}::text)"
        try:
            with self._transaction() as cursor:
                cursor.execute(
                    f"SELECT DISTINCT {trimmed} FROM {table_name} WHERE {trimmed} = ANY(%s)",
                    (list(codes),),
                )
                return {row[0] for row in cursor.fetchall()}
        except pg_errors.UndefinedTable as e:
            raise ReferenceTableError(
                f"Reference table '{table_name}' does not exist", details={"table": table_name}
            ) from e
        except psycopg2.Error as e:
            raise StorageError(
                f"Reference query on {table_name}.{column} failed: {e}",
                operation="fetch_existing_codes",
                details={"table": table_name, "codes": len(codes)},
            ) from e

    def load_lookup(self, table_name: str, key_column: str, value_columns: Sequence[str]) -> Dict[str, tuple]:
        columns = [sql.check_identifier(c) for c in (key_column, *value_columns)]
        sql.check_identifier(table_name)
        try:
            with self._transaction() as cursor:
                cursor.execute(f"SELECT {', '.join(columns)} FROM {table_name}")
                return {row[0]: tuple(row[1:]) for row in cursor.fetchall()}
        except pg_errors.UndefinedTable as e:
            raise ReferenceTableError(
                f"Reference table '{table_name}' does not exist", details={"table": table_name}
            ) from e
        except psycopg2.Error as e:
            raise StorageError(f"Failed to load lookup {table_name}: {e}", operation="load_lookup") from e

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def log_import_history(self, record: ImportHistoryRecord) -> Result[str]:
        try:
            self._ensure_schema()
            placeholders = ", ".join(["%s"] * (len(sql.HISTORY_COLUMNS) - 1) + ["%s::jsonb"])
            with self._transaction() as cursor:
                cursor.execute(
                    f"INSERT INTO {sql.HISTORY_TABLE} ({', '.join(sql.HISTORY_COLUMNS)}) VALUES ({placeholders})",
                    sql.history_params(record),
                )
            return Result.success_result(record.id)
        except Exception as e:
            error_msg = f"Failed to log import history: {e}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="log_import_history"), error_type="StorageError"
            )

    def list_import_history(self, limit: int = 50, source_id: Optional[str] = None) -> Result[List[ImportHistoryRecord]]:
        try:
            self._ensure_schema()
            query = f"SELECT {', '.join(sql.HISTORY_COLUMNS)} FROM {sql.HISTORY_TABLE}"
            params: List[Any] = []
            if source_id:
                query += " WHERE tipo_fuente = %s"
                params.append(source_id)
            query += " ORDER BY fecha_importacion DESC LIMIT %s"
            params.append(int(limit))
            with self._transaction() as cursor:
                cursor.execute(query, params)
                rows = cursor.fetchall()
            return Result.success_result([sql.history_from_row(row) for row in rows])
        except Exception as e:
            error_msg = f"Failed to list import history: {e}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="list_import_history"), error_type="StorageError"
            )

    # ------------------------------------------------------------------
    # Bulk loads and diagnostics
    # ------------------------------------------------------------------

    def persist_dataframe(self, df: pd.DataFrame, table_name: str) -> Result[int]:
        """Bulk-load a DataFrame with execute_values, replacing rows on key conflict."""
        if df.empty:
            return Result.success_result(0)

        try:
            self._ensure_schema()
            sql.check_identifier(table_name)
            with self._transaction() as cursor:
                cursor.execute(
                    "SELECT column_name FROM information_schema.columns WHERE table_name = %s",
                    (table_name,),
                )
                table_columns = [row[0] for row in cursor.fetchall()]
                df_columns = [col for col in df.columns if col in table_columns]
                if not df_columns:
                    raise StorageError(
                        f"No matching columns between DataFrame and table '{table_name}'",
                        operation="persist_dataframe",
                        details={"df_columns": list(df.columns), "table_columns": table_columns},
                    )

                df_filtered = df[df_columns].astype(object).where(pd.notna(df[df_columns]), None)
                schema = sql.find_table(table_name)
                conflict = ""
                if schema is not None and all(c in df_columns for c in schema.key):
                    df_filtered = df_filtered.drop_duplicates(subset=list(schema.key), keep="last")
                    others = [c for c in df_columns if c not in schema.key]
                    action = (
                        "DO UPDATE SET " + ", ".join(f"{c} = EXCLUDED.{c}" for c in others)
                        if others else "DO NOTHING"
                    )
                    conflict = f" ON CONFLICT ({', '.join(schema.key)}) {action}"

                execute_values(
                    cursor,
                    f"INSERT INTO {table_name} ({', '.join(df_columns)}) VALUES %s{conflict}",
                    list(df_filtered.itertuples(index=False, name=None)),
                    page_size=1000,
                )

            row_count = len(df_filtered)
            logger.info(f"Persisted {row_count} rows to table '{table_name}'")
            return Result.success_result(row_count)

        except Exception as e:
            error_msg = f"Failed to persist DataFrame to {table_name}: {e}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="persist_dataframe", details={"table_name": table_name}),
                error_type="StorageError",
            )

    def fetch_rows(self, table_name: str, where: Optional[Dict[str, object]] = None) -> Result[List[dict]]:
        try:
            sql.check_identifier(table_name)
            query = f"SELECT * FROM {table_name}"
            params: List[Any] = []
            if where:
                query += " WHERE " + " AND ".join(f"{sql.check_identifier(c)} = %s" for c in where)
                params.extend(where.values())
            with self._transaction() as cursor:
                cursor.execute(query, params)
                names = [d[0] for d in cursor.description]
                rows = cursor.fetchall()
            return Result.success_result([dict(zip(names, row)) for row in rows])
        except Exception as e:
            error_msg = f"Failed to read rows from {table_name}: {e}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(StorageError(error_msg, operation="fetch_rows"), error_type="StorageError")

    def close(self) -> None:
        """Close storage connection pool and release resources."""
        if self._connection_pool is not None:
            try:
                self._connection_pool.closeall()
                logger.info("Closed PostgreSQL connection pool")
            except psycopg2.Error as e:
                logger.warning(f"Error closing connection pool: {e}")
            finally:
                self._connection_pool = None
