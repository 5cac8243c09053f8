"""Tests for chunked loading and orphan retirement against a mocked store."""

from datetime import datetime
from unittest.mock import Mock

import pytest

from feedsync.domain.loader import BatchLoader
from feedsync.domain.models import TransformedRow, UpsertOutcome
from feedsync.domain.ports import Result, StorageError, StoragePort
from feedsync.domain.reconciler import OrphanReconciler


def rows(n):
    return [TransformedRow(key=("CC", str(i)), values={"tipo_id": "CC", "id": str(i)}) for i in range(n)]


@pytest.fixture
def mock_storage():
    return Mock(spec=StoragePort)


class TestBatchLoader:
    def test_failed_chunk_counts_its_rows_and_loading_continues(self, mock_storage):
        mock_storage.upsert_batch.side_effect = [
            Result.success_result(UpsertOutcome(inserted=2)),
            Result.failure_result(StorageError("constraint violated"), error_type="StorageError"),
            Result.success_result(UpsertOutcome(updated=1)),
        ]
        progress = []

        summary = BatchLoader(mock_storage, "bd", chunk_size=2).upsert(
            rows(5), "BD_NEPS", lambda done, total: progress.append((done, total))
        )

        assert mock_storage.upsert_batch.call_count == 3
        assert summary.success == 3
        assert summary.errors == 2
        assert summary.failed_chunks == 1
        assert progress == [(2, 5), (4, 5), (5, 5)]

    def test_chunk_size_must_be_positive(self, mock_storage):
        with pytest.raises(ValueError):
            BatchLoader(mock_storage, "bd", chunk_size=0)

    def test_source_tag_is_passed_through(self, mock_storage):
        mock_storage.upsert_batch.return_value = Result.success_result(UpsertOutcome(inserted=1))
        BatchLoader(mock_storage, "bd", chunk_size=10).upsert(rows(1), "BD_ST_PGP")
        args = mock_storage.upsert_batch.call_args[0]
        assert args[0] == "bd"
        assert args[2] == "BD_ST_PGP"


class TestOrphanReconciler:
    def test_returns_retired_count(self, mock_storage):
        fence = datetime(2024, 1, 1, 8, 0)
        mock_storage.mark_orphans.return_value = Result.success_result(4)

        reconciler = OrphanReconciler(mock_storage, "bd")

        assert reconciler.retire("BD_NEPS", fence) == 4
        mock_storage.mark_orphans.assert_called_once_with("bd", "BD_NEPS", fence)
        assert reconciler.last_error is None

    def test_failure_reports_zero(self, mock_storage):
        mock_storage.mark_orphans.return_value = Result.failure_result(StorageError("locked"))

        reconciler = OrphanReconciler(mock_storage, "bd")

        assert reconciler.retire("BD_NEPS", datetime(2024, 1, 1)) == 0
        assert reconciler.last_error
