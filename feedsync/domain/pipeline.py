"""Import Pipeline - Orchestration of One Import Run.

Runs a payload through every stage and folds row- and chunk-level problems
into an ImportResult:

    Idle -> Reading -> Parsing -> Transforming -> Validating -> Loading
         -> Reconciling -> Reporting -> Done          (Failed from any step)

Only structural failures (unknown source, empty or unreadable payload,
missing headers, missing reference tables) propagate; a history record is
written for failed runs as well as completed ones.

Security Impact:
    - File contents never reach the logs, only counts and source ids
    - Oversized payloads are rejected before parsing

Architecture:
    - Depends on ports only: readers arrive through reader_factory and the
      store through StoragePort
    - Streaming sources keep only the dedupe map and counters in memory
"""

import io
import logging
import time
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Iterator, List, Optional, Sequence, Tuple, Union

from feedsync.domain.deduplicator import Deduplicator
from feedsync.domain.enrichment import EnrichmentStats
from feedsync.domain.header_resolver import build_column_map, locate
from feedsync.domain.loader import BatchLoader
from feedsync.domain.models import ColumnMap, ImportHistoryRecord, ImportResult, RunState
from feedsync.domain.normalizers import format_duration
from feedsync.domain.ports import (
    EmptyFileError,
    HeaderNotFoundError,
    RecordReaderPort,
    ReaderPort,
    StoragePort,
    TransformationError,
    UnsupportedSourceError,
    ValidationError,
)
from feedsync.domain.progress import ProgressCallback, ProgressReporter, StateCallback
from feedsync.domain.reconciler import OrphanReconciler
from feedsync.domain.report import ReportBuilder, ReportStats
from feedsync.domain.sources import SourceConfig, get_source
from feedsync.domain.transformer import RowTransformer
from feedsync.domain.validator import REFERENCE_CHUNK_SIZE, ReferenceCache, ReferenceValidator

logger = logging.getLogger(__name__)

Payload = Union[bytes, BinaryIO]
ReaderFactory = Callable[[SourceConfig], Union[ReaderPort, RecordReaderPort]]


@dataclass
class _Scan:
    """Counters of the transforming stage."""

    total: int = 0
    skipped: int = 0
    date_errors: int = 0
    transform_errors: int = 0
    dedup: Deduplicator = field(default_factory=Deduplicator)


def _payload_size(payload: Payload) -> Optional[int]:
    if isinstance(payload, (bytes, bytearray)):
        return len(payload)
    # Never fileno(): it rolls a SpooledTemporaryFile over to disk.
    try:
        position = payload.tell()
        payload.seek(0, io.SEEK_END)
        size = payload.tell() - position
    except (AttributeError, OSError, io.UnsupportedOperation):
        return None
    payload.seek(position)
    return size


class ImportPipeline:
    """Runs imports for any configured source against one StoragePort."""

    def __init__(
        self,
        storage: StoragePort,
        reader_factory: ReaderFactory,
        reference_chunk_size: int = REFERENCE_CHUNK_SIZE,
        include_info_report: bool = True,
        default_user: str = "unknown",
    ):
        """Create a pipeline.

        Parameters:
            storage: Canonical store (also serves reference tables and history)
            reader_factory: Returns the reader for a source's layout
            reference_chunk_size: Codes per reference query
            include_info_report: Always attach the info report to results
            default_user: User recorded when the caller gives none
        """
        self.storage = storage
        self.reader_factory = reader_factory
        self.reference_chunk_size = reference_chunk_size
        self.include_info_report = include_info_report
        self.default_user = default_user
        self.cache = ReferenceCache()

    @staticmethod
    def resolve_source(source_id: str) -> SourceConfig:
        """Return an importable source or raise UnsupportedSourceError."""
        config = get_source(source_id)
        if config is None:
            raise UnsupportedSourceError(f"Unknown import source '{source_id}'", source=source_id)
        if not config.is_importable:
            raise UnsupportedSourceError(
                f"Import source '{source_id}' is not available (status: {config.status.value})",
                source=source_id,
            )
        return config

    def run(
        self,
        source_id: str,
        payload: Payload,
        file_name: str = "",
        user: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_state: Optional[StateCallback] = None,
    ) -> ImportResult:
        """Import one payload.

        Parameters:
            source_id: Catalog id of the source (e.g. "cirugias")
            payload: Raw bytes or a binary stream
            file_name: Original file name, recorded in history
            user: Importing user, recorded in history
            on_progress: Called with (status, percent)
            on_state: Called with each RunState as the run enters it

        Returns:
            ImportResult: Counters, duration and reports

        Raises:
            StructuralError: When the run cannot proceed
        """
        started = time.monotonic()
        reporter = ProgressReporter(on_progress, on_state)
        user = user or self.default_user
        file_name = file_name or source_id

        try:
            config = self.resolve_source(source_id)
            result, details = self._execute(config, payload, reporter, started)
        except Exception as e:
            duration = format_duration(time.monotonic() - started)
            logger.error(f"Import of '{source_id}' failed: {e}", exc_info=True)
            reporter.transition(RunState.FAILED)
            self._record_history(ImportHistoryRecord(
                usuario=user,
                archivo_nombre=file_name,
                tipo_fuente=source_id,
                duracion=duration,
                detalles={"estado": "fallido", "error": str(e), "tipo_error": type(e).__name__},
            ))
            raise

        reporter.report("Registrando en historial...", 95)
        self._record_history(ImportHistoryRecord(
            usuario=user,
            archivo_nombre=file_name,
            tipo_fuente=source_id,
            total_registros=result.total_processed,
            exitosos=result.success,
            fallidos=result.errors,
            duplicados=result.duplicates,
            duracion=result.duration,
            detalles=details,
        ))
        reporter.transition(RunState.DONE, "Importación completada", 100)
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _execute(
        self,
        config: SourceConfig,
        payload: Payload,
        reporter: ProgressReporter,
        started: float,
    ) -> Tuple[ImportResult, dict]:
        reporter.transition(RunState.READING, "Leyendo archivo...", 0)
        size = _payload_size(payload)
        if size == 0:
            raise EmptyFileError("El archivo está vacío o no tiene datos.", source=config.id)
        if size is not None and size > config.max_file_size:
            raise UnsupportedSourceError(
                f"File of {size} bytes exceeds the {config.max_file_size} byte limit for '{config.id}'",
                source=config.id,
            )

        self.cache.invalidate()
        validator = ReferenceValidator(self.storage, self.cache, self.reference_chunk_size, reporter.report)
        run_started_at = self.storage.current_timestamp()
        lookups = {}
        if config.lookups:
            reporter.report("Cargando tablas de referencia...", 2)
            lookups = validator.load_lookups(config.lookups)

        reporter.transition(RunState.PARSING, "Analizando estructura...", 5)
        column_map, records = self._open(config, payload)

        reporter.transition(RunState.TRANSFORMING, "Extrayendo datos...", 10)
        enrichment = EnrichmentStats()
        scan = self._scan(config, column_map, records, lookups, enrichment)
        if scan.total == 0:
            raise EmptyFileError("El archivo está vacío o no tiene datos.", source=config.id)
        if len(scan.dedup) == 0:
            raise EmptyFileError("No se encontraron registros válidos para importar.", source=config.id)
        unique_rows = scan.dedup.rows()
        reporter.report(f"{len(unique_rows)} registros únicos de {scan.total} filas", 40)

        reporter.transition(RunState.VALIDATING, "Validando códigos de referencia...", 40)
        outcome = validator.classify(unique_rows, config)

        reporter.transition(RunState.LOADING, f"Importando {len(outcome.accepted)} registros...", 50)
        loader = BatchLoader(self.storage, config.target.name, config.chunk_size)
        summary = loader.upsert(outcome.accepted, config.source_tag, reporter.scaled(50, 85))

        retired = 0
        orphan_failure = False
        if config.retire_orphans:
            reporter.transition(RunState.RECONCILING, "Marcando registros no incluidos...", 85)
            reconciler = OrphanReconciler(self.storage, config.target.name)
            retired = reconciler.retire(config.source_tag, run_started_at)
            orphan_failure = reconciler.last_error is not None

        reporter.transition(RunState.REPORTING, "Generando reporte...", 90)
        stats = ReportStats(
            source=config,
            total=scan.total,
            unique=len(unique_rows),
            inserted=summary.outcome.inserted,
            updated=summary.outcome.updated,
            complemented=summary.outcome.complemented,
            retired=retired,
            duplicates=scan.dedup.duplicates,
            skipped=scan.skipped,
            processing_errors=summary.errors,
            date_errors=scan.date_errors,
            transform_errors=scan.transform_errors,
            orphan_failure=orphan_failure,
            validation=outcome,
            enrichment=enrichment,
        )
        builder = ReportBuilder(include_info=self.include_info_report)
        bundle = builder.compile(stats)

        errors = (
            outcome.rejected_count
            + outcome.unverified_rows
            + summary.errors
            + scan.date_errors
            + scan.transform_errors
        )
        result = ImportResult(
            success=summary.success,
            errors=errors,
            duplicates=scan.dedup.duplicates,
            skipped=scan.skipped,
            total_processed=scan.total,
            duration=format_duration(time.monotonic() - started),
            error_report=bundle.error_report,
            info_report=bundle.info_report,
            error_message=bundle.error_message,
        )
        details = builder.details(stats)
        details["estado"] = "completado"
        logger.info(
            f"Import of '{config.id}' finished: {result.success} ok, {result.errors} errors, "
            f"{result.duplicates} duplicates, {result.skipped} skipped of {result.total_processed}"
        )
        return result, details

    def _open(self, config: SourceConfig, payload: Payload) -> Tuple[Optional[ColumnMap], Iterator[Sequence[str]]]:
        """Return the column map (None for positional sources) and the data records."""
        reader = self.reader_factory(config)

        if isinstance(reader, ReaderPort):
            data = payload if isinstance(payload, (bytes, bytearray)) else payload.read()
            document = reader.read(bytes(data))
            if document.is_empty:
                raise EmptyFileError("El archivo está vacío o no tiene datos.", source=config.id)
            match = locate(
                document,
                config.required_tokens,
                config.column_dictionary,
                required_fields=config.required_fields,
                compact=config.header_compact,
                fuzzy=config.fuzzy,
                fuzzy_max_length_diff=config.fuzzy_max_length_diff,
            )
            table = document.table(match.table_index)
            return match.column_map, iter(table[match.header_row_index + 1:])

        stream = io.BytesIO(payload) if isinstance(payload, (bytes, bytearray)) else payload
        tables = reader.iter_tables(stream)
        if config.positional:
            return None, self._positional_records(tables)

        first = next(tables, None)
        header = next(first, None) if first is not None else None
        if header is None:
            raise EmptyFileError("El archivo está vacío o no tiene datos.", source=config.id)
        column_map = build_column_map(header, config.column_dictionary, compact=config.header_compact)
        missing = [f for f in config.required_fields if f not in column_map]
        if missing:
            raise HeaderNotFoundError(
                f"Required columns not found: {', '.join(missing)}", source=config.id,
                details={"missing": missing},
            )
        return column_map, first

    @staticmethod
    def _positional_records(tables: Iterator[Iterator[List[str]]]) -> Iterator[List[str]]:
        for table in tables:
            next(table, None)  # header line
            yield from table

    def _scan(
        self,
        config: SourceConfig,
        column_map: Optional[ColumnMap],
        records: Iterator[Sequence[str]],
        lookups: dict,
        enrichment: EnrichmentStats,
    ) -> _Scan:
        transformer = RowTransformer(config, column_map, lookups, enrichment)
        scan = _Scan()

        for cells in records:
            if config.min_fields and len(cells) < config.min_fields:
                scan.total += 1
                scan.skipped += 1
                continue
            if len(cells) < config.min_cells:
                continue

            scan.total += 1
            try:
                row = transformer.transform(cells)
            except ValidationError:
                scan.date_errors += 1
                continue
            except TransformationError as e:
                scan.transform_errors += 1
                logger.warning(f"Row {scan.total} of '{config.id}' not transformed: {e}")
                continue

            if row is None:
                scan.skipped += 1
                continue
            scan.dedup.add(row)

        return scan

    def _record_history(self, record: ImportHistoryRecord) -> None:
        result = self.storage.log_import_history(record)
        if result.is_failure():
            logger.error(f"Failed to log import history for {record.tipo_fuente}: {result.error}")
