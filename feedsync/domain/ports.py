"""Domain Ports - Abstract Contracts for the Import Pipeline.

This module defines the Port interfaces (abstract contracts) that Adapters must implement.
Following Hexagonal Architecture, the Domain Core defines what it needs, not how it's provided.

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Readers turn raw bytes into RawDocument tables
    - Storage exposes exactly two write operations per source (merge and orphan marking),
      batched reference reads and the append-only import history
    - Result type communicates storage success/failure without exceptions
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Dict, Generic, Iterable, Iterator, List, Optional, Sequence, Set, TypeVar, Union

import pandas as pd

from feedsync.domain.models import (
    ImportHistoryRecord,
    RawDocument,
    TransformedRow,
    UpsertOutcome,
)

# Type variable for Result generic
T = TypeVar('T')


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Storage operations return Result so the pipeline can absorb chunk-level
    failures into counters instead of aborting the run.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error information (only present if success=False)
        error_type: Type of error (StorageError, ReferenceTableError, etc.)
        error_details: Additional error context (table, chunk size, etc.)

    Example:
        ```python
        result = storage.upsert_batch("bd", rows, "BD_NEPS")
        if result.is_success():
            summary.add(result.value)
        else:
            summary.errors += len(rows)
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result.

        Parameters:
            value: The successful result value

        Returns:
            Result: Success result with the value
        """
        return cls(
            success=True,
            value=value,
            error=None,
            error_type=None,
            error_details=None
        )

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error (e.g., "StorageError")
            error_details: Additional context (table, operation, etc.)

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (type(error).__name__ if isinstance(error, Exception) else "UnknownError")

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=error_details or {}
        )

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class IngestionError(Exception):
    """Base exception for all import-related errors."""
    pass


class StructuralError(IngestionError):
    """Raised when a run cannot proceed at all.

    Structural failures (no matching table or headers, empty file, missing
    reference table, unreadable format) abort the run before any row loads.
    They are the only failures that propagate to the caller.

    Attributes:
        source: The source identifier of the run
        details: Additional error details
    """

    def __init__(self, message: str, source: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.source = source
        self.details = details or {}


class EmptyFileError(StructuralError):
    """Raised when the payload has no data rows (or no valid rows at all)."""
    pass


class HeaderNotFoundError(StructuralError):
    """Raised when no table carries the required header tokens, or a required field is unresolved."""
    pass


class ReferenceTableError(StructuralError):
    """Raised when a reference table needed for validation or lookup does not exist."""
    pass


class UnsupportedSourceError(StructuralError):
    """Raised when the source id or payload format is not supported.

    Attributes:
        source: The source identifier that is unsupported
        adapter: The adapter that cannot handle the source
    """

    def __init__(self, message: str, source: Optional[str] = None, adapter: Optional[str] = None):
        super().__init__(message, source=source)
        self.adapter = adapter


class SourceNotFoundError(IngestionError):
    """Raised when the payload file cannot be found or accessed.

    Attributes:
        source: The path or identifier that was not found
    """

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class ValidationError(IngestionError):
    """Raised when a row fails strict validation.

    Row-level failures never abort a run; the pipeline converts them to
    counters. This exception is used inside the transformer for strict
    date checks and caught there.

    Attributes:
        field: The field that failed validation
        value: The offending value (may be truncated)
    """

    def __init__(self, message: str, field: Optional[str] = None, value: Optional[str] = None):
        super().__init__(message)
        self.field = field
        self.value = value


class TransformationError(IngestionError):
    """Raised when a derive hook cannot enrich a row.

    Attributes:
        source: The source identifier being transformed
        row_key: The natural key of the failing row, when known
    """

    def __init__(self, message: str, source: Optional[str] = None, row_key: Optional[tuple] = None):
        super().__init__(message)
        self.source = source
        self.row_key = row_key


class StorageError(IngestionError):
    """Raised when the backing store fails.

    Attributes:
        operation: The storage operation that failed
        details: Additional context (never contains credentials)
    """

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.operation = operation
        self.details = details or {}


class CloudImportError(IngestionError):
    """Raised when a cloud-triggered import reports an error frame or ends without a result."""
    pass


# ============================================================================
# Reader Port
# ============================================================================

class ReaderPort(ABC):
    """Abstract contract for payload readers.

    Readers turn raw bytes into the uniform RawDocument so that header
    resolution and row transformation never depend on the file format.
    """

    @abstractmethod
    def read(self, data: bytes) -> RawDocument:
        """Parse a payload into tables of text cells.

        Parameters:
            data: Raw payload bytes

        Returns:
            RawDocument: Ordered tables of ordered rows of text cells

        Raises:
            EmptyFileError: If the payload is empty
            UnsupportedSourceError: If the payload cannot be decoded
        """
        pass


class RecordReaderPort(ABC):
    """Abstract contract for streaming delimited readers.

    Large text dumps are never materialized: records are yielded one line at
    a time. A payload may hold several tables (one per bundle member); the
    first record of each table is its header line.
    """

    @abstractmethod
    def iter_tables(self, source: BinaryIO) -> Iterator[Iterator[List[str]]]:
        """Yield one record iterator per table in the payload.

        Parameters:
            source: Binary stream positioned at the start of the payload

        Raises:
            UnsupportedSourceError: If the payload cannot be opened
        """
        pass


# ============================================================================
# Storage Port
# ============================================================================

class StoragePort(ABC):
    """Abstract contract for the canonical store.

    Write path: exactly two backend operations per source, both idempotent
    and safely retryable:
        - upsert_batch: rows + source tag -> {inserted, updated, complemented}
        - mark_orphans: source tag + run-start timestamp -> retired count

    Reference reads return "set of codes present", never row content, except
    lookup maps used for enrichment (DIVIPOLA, RED, TIPOID).
    """

    @abstractmethod
    def initialize_schema(self) -> Result[None]:
        """Create target, reference and history tables if they do not exist."""
        pass

    @abstractmethod
    def current_timestamp(self) -> datetime:
        """Return the store clock; used as the orphan-reconciliation fence."""
        pass

    @abstractmethod
    def upsert_batch(
        self,
        table_name: str,
        rows: Sequence[TransformedRow],
        source_tag: str
    ) -> Result[UpsertOutcome]:
        """Merge one chunk atomically using the source-priority policy."""
        pass

    @abstractmethod
    def mark_orphans(self, table_name: str, source_tag: str, run_started_at: datetime) -> Result[int]:
        """Retire rows of source_tag whose last-touched timestamp precedes run_started_at."""
        pass

    @abstractmethod
    def fetch_existing_codes(self, table_name: str, column: str, codes: Sequence[str]) -> Set[str]:
        """Return the subset of codes present in a reference table.

        Raises:
            ReferenceTableError: If the table does not exist
            StorageError: On any other backend failure
        """
        pass

    @abstractmethod
    def load_lookup(self, table_name: str, key_column: str, value_columns: Sequence[str]) -> Dict[str, tuple]:
        """Load a whole lookup table as key -> tuple(values).

        Raises:
            ReferenceTableError: If the table does not exist
        """
        pass

    @abstractmethod
    def log_import_history(self, record: ImportHistoryRecord) -> Result[str]:
        """Append one import history row."""
        pass

    @abstractmethod
    def list_import_history(self, limit: int = 50, source_id: Optional[str] = None) -> Result[List[ImportHistoryRecord]]:
        """Return the most recent history rows, newest first."""
        pass

    @abstractmethod
    def persist_dataframe(self, df: pd.DataFrame, table_name: str) -> Result[int]:
        """Bulk-load a DataFrame into a (reference) table."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection and release resources."""
        pass

    def fetch_rows(self, table_name: str, where: Optional[Dict[str, object]] = None) -> Result[List[dict]]:
        """Read rows back (diagnostics and tests). Optional for adapters."""
        return Result.failure_result("fetch_rows not supported", error_type="NotImplementedError")


def chunked(items: Sequence, size: int) -> Iterable[Sequence]:
    """Yield consecutive slices of at most size items."""
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield items[start:start + size]
