"""DuckDB Storage Adapter.

This adapter implements the StoragePort contract on DuckDB, an in-process
database. It is the default store and the one used by the test suite
(':memory:').

Security Impact:
    - Values are always bound as parameters; identifiers are checked
    - Each merge chunk and each orphan retirement is one transaction
    - Connection paths are validated before connecting

Architecture:
    - Implements StoragePort (Hexagonal Architecture)
    - The merge policy is planned by feedsync.domain.priority.plan_merge;
      this adapter reads the stored rows for a chunk and applies the plan
    - The clock is injectable so orphan fences are deterministic in tests
"""

import functools
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

import duckdb
import pandas as pd

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


def _serialized(method):
    """Run the method under the adapter lock; one DuckDB connection is shared across threads."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


class DuckDBAdapter(StoragePort):
    """DuckDB implementation of StoragePort.

    Example Usage:
        ```python
        adapter = DuckDBAdapter(db_path=":memory:")
        adapter.initialize_schema()
        result = adapter.upsert_batch("bd", rows, "BD_NEPS")
        ```
    """

    def __init__(
        self,
        db_config: Optional[DatabaseConfig] = None,
        db_path: Optional[str] = None,
        clock: Optional[Clock] = None,
        priority_table: SourcePriorityTable = CURRENT_PRIORITY_TABLE,
    ):
        """Initialize DuckDB adapter.

        Parameters:
            db_config: DatabaseConfig from the configuration manager (preferred)
            db_path: Database file or ':memory:' (used when db_config is absent)
            clock: Timestamp source for last_seen_at and orphan fences
            priority_table: Source ranks deciding update vs complement

        Raises:
            StorageError: If db_config is not a DuckDB config or the directory is missing
        """
        if db_config:
            if db_config.db_type != "duckdb":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match DuckDB adapter",
                    operation="__init__",
                )
            self.db_path = db_config.db_path or ":memory:"
        else:
            self.db_path = db_path or ":memory:"

        self.clock: Clock = clock or datetime.now
        self.priority_table = priority_table
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialized = False
        self._lock = threading.RLock()

        if self.db_path != ":memory:":
            db_path_obj = Path(self.db_path)
            if not db_path_obj.parent.exists():
                raise StorageError(
                    f"Database directory does not exist: {db_path_obj.parent}",
                    operation="__init__",
                )

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self.db_path)
                logger.info(f"Connected to DuckDB database: {self.db_path}")
            except duckdb.Error as e:
                raise StorageError(
                    f"Failed to connect to DuckDB: {e}",
                    operation="connect",
                    details={"db_path": self.db_path},
                ) from e
        return self._connection

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

    @_serialized
    def initialize_schema(self) -> Result[None]:
        """Create target, reference and history tables if they do not exist."""
        try:
            conn = self._get_connection()
            for statement in sql.schema_statements("duckdb"):
                conn.execute(statement)
            self._initialized = True
            logger.info("DuckDB schema initialized")
            return Result.success_result(None)
        except Exception as e:
            error_msg = f"Failed to initialize schema: {e}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="initialize_schema"),
                error_type="StorageError",
            )

    def current_timestamp(self) -> datetime:
        return self.clock()

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def _fetch_existing(
        self,
        conn: duckdb.DuckDBPyConnection,
        target: TableSchema,
        rows: Sequence[TransformedRow],
    ) -> Dict[Tuple[str, ...], Dict[str, Any]]:
        """Stored rows for the chunk's keys, keyed the way TransformedRow keys are."""
        keys = pd.DataFrame([list(row.key) for row in rows], columns=list(target.key), dtype=object)
        keys = keys.drop_duplicates()
        selected = list(target.columns) + ["source_tag"]
        join = " AND ".join(
            f"CAST(t.{c} AS VARCHAR) = k.{c}" if c in target.date_columns or c in target.integer_columns
            else f"t.{c} = k.{c}"
            for c in target.key
        )
        conn.register("keys_temp", keys)
        try:
            found = conn.execute(
                f"SELECT {', '.join('t.' + c for c in selected)} "
                f"FROM {target.name} t JOIN keys_temp k ON {join}"
            ).fetchall()
        finally:
            conn.unregister("keys_temp")

        existing: Dict[Tuple[str, ...], Dict[str, Any]] = {}
        for record in found:
            values = dict(zip(selected, record))
            existing[tuple(sql.key_text(values[c]) for c in target.key)] = values
        return existing

    @_serialized
    def upsert_batch(
        self,
        table_name: str,
        rows: Sequence[TransformedRow],
        source_tag: str,
    ) -> Result[UpsertOutcome]:
        """Merge one chunk atomically.

        New keys are inserted and owned by source_tag. Existing keys are
        updated (all fields, ownership, last_seen_at) when their owner ranks at
        or below source_tag, otherwise only their blank fields are filled.

        Parameters:
            table_name: Target table
            rows: Deduplicated rows of one chunk
            source_tag: Tag of the importing feed

        Returns:
            Result[UpsertOutcome]: Counts per action, or a StorageError failure
                (the chunk is rolled back entirely)
        """
        if not rows:
            return Result.success_result(UpsertOutcome())

        try:
            self._ensure_schema()
            target = self._target(table_name)
            conn = self._get_connection()
            conn.begin()
            try:
                existing = self._fetch_existing(conn, target, rows)
                plan = plan_merge(
                    rows, existing, source_tag, target.columns, target.key, self.priority_table
                )
                now = self.clock()
                where = " AND ".join(f"{c} = ?" for c in target.key)

                if plan.inserts:
                    columns = list(target.columns) + ["source_tag", "last_seen_at"]
                    placeholders = ", ".join("?" for _ in columns)
                    conn.executemany(
                        f"INSERT INTO {target.name} ({', '.join(columns)}) VALUES ({placeholders})",
                        [
                            list(sql.row_params(target, row.values, target.columns)) + [source_tag, now]
                            for row in plan.inserts
                        ],
                    )

                if plan.updates:
                    set_columns = [c for c in target.columns if c not in target.key]
                    assignments = ", ".join(f"{c} = ?" for c in set_columns)
                    conn.executemany(
                        f"UPDATE {target.name} SET {assignments}, source_tag = ?, last_seen_at = ? WHERE {where}",
                        [
                            list(sql.row_params(target, row.values, set_columns))
                            + [source_tag, now]
                            + list(sql.key_params(target, row.key))
                            for row in plan.updates
                        ],
                    )

                for key, fills in plan.complements:
                    if not fills:
                        continue
                    assignments = ", ".join(f"{c} = ?" for c in fills)
                    conn.execute(
                        f"UPDATE {target.name} SET {assignments} WHERE {where}",
                        [sql.to_db(target, c, v) for c, v in fills.items()] + list(sql.key_params(target, key)),
                    )

                conn.commit()
            except Exception:
                conn.rollback()
                raise

            outcome = plan.outcome
            logger.debug(
                f"Merged {len(rows)} rows into '{table_name}' as {source_tag}: "
                f"{outcome.inserted} inserted, {outcome.updated} updated, {outcome.complemented} complemented"
            )
            return Result.success_result(outcome)

        except Exception as e:
            error_msg = f"Failed to merge chunk into {table_name}: {e}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="upsert_batch", details={"table_name": table_name, "rows": len(rows)}),
                error_type="StorageError",
                error_details={"table_name": table_name, "rows": len(rows)},
            )

    @_serialized
    def mark_orphans(self, table_name: str, source_tag: str, run_started_at: datetime) -> Result[int]:
        """Hand rows of source_tag untouched since run_started_at over to the portal.

        Retired rows get estado 'VALIDAR EN PORTAL EPS' and source_tag
        'PORTAL_COLABORADORES'; count and update happen in one transaction.
        """
        try:
            self._ensure_schema()
            target = self._target(table_name)
            if STATUS_COLUMN not in target.columns:
                raise StorageError(
                    f"Table '{table_name}' has no '{STATUS_COLUMN}' column", operation="mark_orphans"
                )
            conn = self._get_connection()
            condition = "source_tag = ? AND last_seen_at < ?"
            conn.begin()
            try:
                count = conn.execute(
                    f"SELECT COUNT(*) FROM {target.name} WHERE {condition}", [source_tag, run_started_at]
                ).fetchone()[0]
                if count:
                    conn.execute(
                        f"UPDATE {target.name} SET {STATUS_COLUMN} = ?, source_tag = ? WHERE {condition}",
                        [ORPHAN_STATUS, PORTAL_TAG, source_tag, run_started_at],
                    )
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            return Result.success_result(int(count))

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

    @_serialized
    def fetch_existing_codes(self, table_name: str, column: str, codes: Sequence[str]) -> Set[str]:
        if not codes:
            return set()
        sql.check_identifier(table_name)
        sql.check_identifier(column)
        trimmed = f"TRIM(CAST({column} AS VARCHAR))"
        placeholders = ", ".join("?" for _ in codes)
        try:
            found = self._get_connection().execute(
                f"SELECT DISTINCT {trimmed} FROM {table_name} WHERE {trimmed} IN ({placeholders})",
                list(codes),
            ).fetchall()
        except duckdb.CatalogException as e:
            raise ReferenceTableError(
                f"Reference table '{table_name}' does not exist", details={"table": table_name}
            ) from e
        except duckdb.Error as e:
            raise StorageError(
                f"Reference query on {table_name}.{column} failed: {e}",
                operation="fetch_existing_codes",
                details={"table": table_name, "codes": len(codes)},
            ) from e
        return {row[0] for row in found}

    @_serialized
    def load_lookup(self, table_name: str, key_column: str, value_columns: Sequence[str]) -> Dict[str, tuple]:
        columns = [sql.check_identifier(c) for c in (key_column, *value_columns)]
        sql.check_identifier(table_name)
        try:
            rows = self._get_connection().execute(
                f"SELECT {', '.join(columns)} FROM {table_name}"
            ).fetchall()
        except duckdb.CatalogException as e:
            raise ReferenceTableError(
                f"Reference table '{table_name}' does not exist", details={"table": table_name}
            ) from e
        except duckdb.Error as e:
            raise StorageError(
                f"Failed to load lookup {table_name}: {e}", operation="load_lookup"
            ) from e
        return {row[0]: tuple(row[1:]) for row in rows}

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @_serialized
    def log_import_history(self, record: ImportHistoryRecord) -> Result[str]:
        try:
            self._ensure_schema()
            placeholders = ", ".join("?" for _ in sql.HISTORY_COLUMNS)
            self._get_connection().execute(
                f"INSERT INTO {sql.HISTORY_TABLE} ({', '.join(sql.HISTORY_COLUMNS)}) VALUES ({placeholders})",
                list(sql.history_params(record)),
            )
            return Result.success_result(record.id)
        except Exception as e:
            error_msg = f"Failed to log import history: {e}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="log_import_history"),
                error_type="StorageError",
            )

    @_serialized
    def list_import_history(self, limit: int = 50, source_id: Optional[str] = None) -> Result[List[ImportHistoryRecord]]:
        try:
            self._ensure_schema()
            query = f"SELECT {', '.join(sql.HISTORY_COLUMNS)} FROM {sql.HISTORY_TABLE}"
            params: List[Any] = []
            if source_id:
                query += " WHERE tipo_fuente = ?"
                params.append(source_id)
            query += " ORDER BY fecha_importacion DESC LIMIT ?"
            params.append(int(limit))
            rows = self._get_connection().execute(query, params).fetchall()
            return Result.success_result([sql.history_from_row(row) for row in rows])
        except Exception as e:
            error_msg = f"Failed to list import history: {e}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="list_import_history"),
                error_type="StorageError",
            )

    # ------------------------------------------------------------------
    # Bulk loads and diagnostics
    # ------------------------------------------------------------------

    @_serialized
    def persist_dataframe(self, df: pd.DataFrame, table_name: str) -> Result[int]:
        """Bulk-load a DataFrame (reference tables, seeds).

        Columns not present in the table are dropped; rows replace existing
        rows with the same key.

        Returns:
            Result[int]: Number of rows persisted or error
        """
        if df.empty:
            return Result.success_result(0)

        try:
            self._ensure_schema()
            sql.check_identifier(table_name)
            conn = self._get_connection()

            table_columns = [col[1] for col in conn.execute(f"PRAGMA table_info({table_name})").fetchall()]
            df_columns = [col for col in df.columns if col in table_columns]
            if not df_columns:
                raise StorageError(
                    f"No matching columns between DataFrame and table '{table_name}'",
                    operation="persist_dataframe",
                    details={"df_columns": list(df.columns), "table_columns": table_columns},
                )

            df_filtered = df[df_columns].astype(object).where(pd.notna(df[df_columns]), None)
            schema = sql.find_table(table_name)
            if schema is not None and all(c in df_columns for c in schema.key):
                df_filtered = df_filtered.drop_duplicates(subset=list(schema.key), keep="last")

            conn.register("df_temp", df_filtered)
            try:
                columns_str = ", ".join(df_columns)
                conn.execute(f"INSERT OR REPLACE INTO {table_name} ({columns_str}) SELECT {columns_str} FROM df_temp")
            finally:
                conn.unregister("df_temp")

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

    @_serialized
    def fetch_rows(self, table_name: str, where: Optional[Dict[str, object]] = None) -> Result[List[dict]]:
        try:
            self._ensure_schema()
            sql.check_identifier(table_name)
            query = f"SELECT * FROM {table_name}"
            params: List[Any] = []
            if where:
                query += " WHERE " + " AND ".join(f"{sql.check_identifier(c)} = ?" for c in where)
                params.extend(where.values())
            cursor = self._get_connection().execute(query, params)
            names = [d[0] for d in cursor.description]
            return Result.success_result([dict(zip(names, row)) for row in cursor.fetchall()])
        except Exception as e:
            error_msg = f"Failed to read rows from {table_name}: {e}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="fetch_rows"), error_type="StorageError"
            )

    @_serialized
    def close(self) -> None:
        """Close storage connection and release resources."""
        if self._connection is not None:
            try:
                self._connection.close()
                logger.info("Closed DuckDB connection")
            except duckdb.Error as e:
                logger.warning(f"Error closing connection: {e}")
            finally:
                self._connection = None
