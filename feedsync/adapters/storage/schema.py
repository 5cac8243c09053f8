"""Relational Schema Shared by the Storage Adapters.

Translates the TableSchema declarations of the source catalog into DDL for
each dialect and converts values between the pipeline's text/ISO form and
the typed columns of the store.

Security Impact:
    - Table and column names are checked against a strict identifier
      pattern before they are interpolated into SQL; values are always bound

Architecture:
    - Target tables carry two bookkeeping columns: source_tag (owning feed)
      and last_seen_at (last time a run of the owning feed touched the row)
    - Reference tables are plain code tables keyed on their code column
    - import_history is append-only; detalles holds JSON text
"""

import json
import re
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from feedsync.domain.models import ImportHistoryRecord
from feedsync.domain.ports import StorageError
from feedsync.domain.sources import REFERENCE_TABLES, TableSchema, target_tables

HISTORY_TABLE = "import_history"
HISTORY_COLUMNS = (
    "id", "fecha_importacion", "usuario", "archivo_nombre", "tipo_fuente",
    "total_registros", "exitosos", "fallidos", "duplicados", "duracion", "detalles",
)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_TEXT_TYPE = {"duckdb": "VARCHAR", "postgresql": "TEXT"}


def check_identifier(name: str) -> str:
    """Return name if it is a plain SQL identifier, else raise StorageError."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise StorageError(f"Invalid SQL identifier: {name!r}", operation="check_identifier")
    return name


def targets() -> Dict[str, TableSchema]:
    return target_tables()


def references() -> Dict[str, TableSchema]:
    return {schema.name: schema for schema in REFERENCE_TABLES}


def find_table(table_name: str) -> Optional[TableSchema]:
    return targets().get(table_name) or references().get(table_name)


def column_type(schema: TableSchema, column: str, dialect: str) -> str:
    if column in schema.integer_columns:
        return "INTEGER"
    if column in schema.date_columns:
        return "DATE"
    return _TEXT_TYPE[dialect]


def create_table_sql(schema: TableSchema, dialect: str, bookkeeping: bool) -> str:
    """CREATE TABLE IF NOT EXISTS statement for one schema."""
    check_identifier(schema.name)
    lines = [f"{check_identifier(c)} {column_type(schema, c, dialect)}" for c in schema.columns]
    if bookkeeping:
        lines.append(f"source_tag {_TEXT_TYPE[dialect]}")
        lines.append("last_seen_at TIMESTAMP")
    lines.append(f"PRIMARY KEY ({', '.join(schema.key)})")
    body = ",\n    ".join(lines)
    return f"CREATE TABLE IF NOT EXISTS {schema.name} (\n    {body}\n)"


def history_table_sql(dialect: str) -> str:
    text = _TEXT_TYPE[dialect]
    detalles = "JSONB" if dialect == "postgresql" else text
    return f"""
        CREATE TABLE IF NOT EXISTS {HISTORY_TABLE} (
            id {text} PRIMARY KEY,
            fecha_importacion TIMESTAMP NOT NULL,
            usuario {text},
            archivo_nombre {text},
            tipo_fuente {text} NOT NULL,
            total_registros INTEGER,
            exitosos INTEGER,
            fallidos INTEGER,
            duplicados INTEGER,
            duracion {text},
            detalles {detalles}
        )
    """


def schema_statements(dialect: str) -> List[str]:
    """Every DDL statement needed by the pipeline, in creation order."""
    statements = [create_table_sql(s, dialect, bookkeeping=True) for s in targets().values()]
    statements.extend(create_table_sql(s, dialect, bookkeeping=False) for s in references().values())
    statements.append(history_table_sql(dialect))
    statements.append(
        f"CREATE INDEX IF NOT EXISTS idx_{HISTORY_TABLE}_fecha ON {HISTORY_TABLE}(fecha_importacion)"
    )
    if dialect == "postgresql":
        # DuckDB rejects UPDATEs of columns covered by an ART index
        for schema in targets().values():
            statements.append(
                f"CREATE INDEX IF NOT EXISTS idx_{schema.name}_source_tag ON {schema.name}(source_tag)"
            )
    return statements


def to_db(schema: Optional[TableSchema], column: str, value: Any) -> Any:
    """Convert a pipeline value to the type of its column."""
    if value is None or (isinstance(value, str) and value == ""):
        return None
    if schema is None:
        return value
    if column in schema.date_columns and isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    if column in schema.integer_columns and not isinstance(value, int):
        try:
            return int(str(value).strip())
        except ValueError:
            return None
    return value


def key_text(value: Any) -> str:
    """Render a stored key value the way TransformedRow keys are rendered."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def row_params(schema: TableSchema, values: Mapping[str, Any], columns: Sequence[str]) -> Tuple[Any, ...]:
    return tuple(to_db(schema, c, values.get(c)) for c in columns)


def key_params(schema: TableSchema, key: Sequence[str]) -> Tuple[Any, ...]:
    return tuple(to_db(schema, c, k) for c, k in zip(schema.key, key))


def history_params(record: ImportHistoryRecord) -> Tuple[Any, ...]:
    return (
        record.id,
        record.fecha_importacion,
        record.usuario,
        record.archivo_nombre,
        record.tipo_fuente,
        record.total_registros,
        record.exitosos,
        record.fallidos,
        record.duplicados,
        record.duracion,
        json.dumps(record.detalles, ensure_ascii=False, default=str),
    )


def history_from_row(row: Sequence[Any]) -> ImportHistoryRecord:
    values = dict(zip(HISTORY_COLUMNS, row))
    detalles = values.get("detalles")
    if isinstance(detalles, str):
        values["detalles"] = json.loads(detalles) if detalles else {}
    elif detalles is None:
        values["detalles"] = {}
    for column in ("usuario", "duracion"):
        if values.get(column) is None:
            values.pop(column)
    for column in ("total_registros", "exitosos", "fallidos", "duplicados"):
        values[column] = values.get(column) or 0
    return ImportHistoryRecord(**values)
