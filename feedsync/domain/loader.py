"""Batch Loader - Chunked Merge into the Canonical Store."""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from feedsync.domain.models import TransformedRow, UpsertOutcome
from feedsync.domain.ports import StoragePort, chunked

logger = logging.getLogger(__name__)

ProgressFn = Callable[[int, int], None]


@dataclass
class LoadSummary:
    """Merge counts for a whole run; failed chunks count every row as an error."""

    outcome: UpsertOutcome = field(default_factory=UpsertOutcome)
    errors: int = 0
    failed_chunks: int = 0
    chunk_errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> int:
        return self.outcome.total


class BatchLoader:
    """Sends fixed-size chunks to StoragePort.upsert_batch.

    A failing chunk never aborts the run: its rows are added to ``errors``
    and loading continues with the next chunk.
    """

    def __init__(self, storage: StoragePort, table_name: str, chunk_size: int):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.storage = storage
        self.table_name = table_name
        self.chunk_size = chunk_size

    def upsert(
        self,
        rows: Sequence[TransformedRow],
        source_tag: str,
        on_progress: Optional[ProgressFn] = None,
    ) -> LoadSummary:
        """Merge rows chunk by chunk.

        Parameters:
            rows: Deduplicated, validated rows
            source_tag: Tag attributed to inserted and updated rows
            on_progress: Called with (processed, total) after every chunk

        Returns:
            LoadSummary: Aggregated outcome and error counts
        """
        summary = LoadSummary()
        total = len(rows)

        for index, chunk in enumerate(chunked(rows, self.chunk_size)):
            result = self.storage.upsert_batch(self.table_name, chunk, source_tag)
            if result.is_success():
                summary.outcome.add(result.value)
            else:
                summary.errors += len(chunk)
                summary.failed_chunks += 1
                summary.chunk_errors.append(result.error or "unknown error")
                logger.error(
                    f"Chunk {index + 1} into '{self.table_name}' failed "
                    f"({len(chunk)} rows): {result.error}"
                )

            if on_progress:
                on_progress(min((index + 1) * self.chunk_size, total), total)

        logger.info(
            f"Loaded {summary.success}/{total} rows into '{self.table_name}' "
            f"(inserted={summary.outcome.inserted}, updated={summary.outcome.updated}, "
            f"complemented={summary.outcome.complemented}, errors={summary.errors})"
        )
        return summary
