"""Domain Models for the Import Pipeline.

This module holds the value objects that flow between pipeline stages:
raw tabular documents, resolved column maps, transformed rows, merge
outcomes and the two persisted/returned artifacts (ImportResult and
ImportHistoryRecord).

Architecture:
    - RawDocument, ColumnMap and TransformedRow are immutable per-call values
    - ImportResult and ImportHistoryRecord are Pydantic models (wire contracts)
    - No infrastructure dependencies; adapters translate to and from these types
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class DocumentFormat(str, Enum):
    """Classification produced by the format sniffer."""
    HTML = "html"
    BINARY_WORKBOOK = "binary_workbook"


class ImportMode(str, Enum):
    """How a source delivers its payload."""
    FILE = "file"
    CLOUD = "cloud"


class SourceStatus(str, Enum):
    """Availability of an import source."""
    ACTIVE = "active"
    COMING_SOON = "coming-soon"
    MAINTENANCE = "maintenance"


class RunState(str, Enum):
    """States of a single import run.

    Idle -> Reading -> Parsing -> Transforming -> Validating -> Loading
    -> Reconciling -> Reporting -> Done, with Failed reachable from any step.
    """
    IDLE = "idle"
    READING = "reading"
    PARSING = "parsing"
    TRANSFORMING = "transforming"
    VALIDATING = "validating"
    LOADING = "loading"
    RECONCILING = "reconciling"
    REPORTING = "reporting"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.DONE, RunState.FAILED)


Table = Tuple[Tuple[str, ...], ...]


@dataclass(frozen=True)
class RawDocument:
    """Uniform tabular output of the sniffing stage.

    Ordered tables of ordered rows of ordered text cells. HTML documents
    may carry several tables; workbooks always produce exactly one (the
    first sheet).
    """

    tables: Tuple[Table, ...]

    @classmethod
    def from_rows(cls, *tables) -> 'RawDocument':
        """Build a document from nested iterables of cell values."""
        return cls(tables=tuple(
            tuple(tuple("" if cell is None else str(cell) for cell in row) for row in table)
            for table in tables
        ))

    @property
    def is_empty(self) -> bool:
        return not any(self.tables)

    def table(self, index: int) -> Table:
        return self.tables[index]


@dataclass(frozen=True)
class ColumnMap:
    """Field-name -> column-index map, immutable once resolved."""

    _indices: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "_indices", MappingProxyType(dict(self._indices)))

    def __getitem__(self, field_name: str) -> int:
        return self._indices[field_name]

    def __contains__(self, field_name: object) -> bool:
        return field_name in self._indices

    def __iter__(self) -> Iterator[str]:
        return iter(self._indices)

    def __len__(self) -> int:
        return len(self._indices)

    def get(self, field_name: str, default: Optional[int] = None) -> Optional[int]:
        return self._indices.get(field_name, default)

    @property
    def fields(self) -> frozenset:
        return frozenset(self._indices)

    def as_dict(self) -> Dict[str, int]:
        return dict(self._indices)

    def cell(self, cells, field_name: str) -> str:
        """Return the raw cell text for a field, or "" when unmapped or out of range."""
        index = self._indices.get(field_name)
        if index is None or index >= len(cells):
            return ""
        value = cells[index]
        return "" if value is None else str(value)


@dataclass(frozen=True)
class HeaderMatch:
    """Location of the data table inside a RawDocument."""

    table_index: int
    header_row_index: int
    column_map: ColumnMap


@dataclass(frozen=True)
class TransformedRow:
    """A typed record keyed by its source natural key."""

    key: Tuple[str, ...]
    values: Mapping[str, Any]

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def get(self, field_name: str, default: Any = None) -> Any:
        return self.values.get(field_name, default)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.values)


@dataclass
class UpsertOutcome:
    """Counts returned by one merge call."""

    inserted: int = 0
    updated: int = 0
    complemented: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.complemented

    def add(self, other: 'UpsertOutcome') -> None:
        self.inserted += other.inserted
        self.updated += other.updated
        self.complemented += other.complemented


class ImportResult(BaseModel):
    """Stable result contract consumed by any presentation layer.

    Invariants:
        success + errors <= total_processed
        duplicates + skipped + success + errors == total_processed
    """

    model_config = ConfigDict(populate_by_name=True)

    success: int = 0
    errors: int = 0
    duplicates: int = 0
    skipped: int = 0
    total_processed: int = Field(default=0, alias="totalProcessed")
    duration: str = "0m 0s"
    error_report: Optional[str] = Field(default=None, alias="errorReport")
    info_report: Optional[str] = Field(default=None, alias="infoReport")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with camelCase keys, dropping absent optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ImportHistoryRecord(BaseModel):
    """Append-only audit row, created once per completed or failed run."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    fecha_importacion: datetime = Field(default_factory=datetime.now)
    usuario: str = "unknown"
    archivo_nombre: str
    tipo_fuente: str
    total_registros: int = 0
    exitosos: int = 0
    fallidos: int = 0
    duplicados: int = 0
    duracion: str = "0m 0s"
    detalles: Dict[str, Any] = Field(default_factory=dict)
