"""Tests for the DuckDB storage adapter against an in-memory database.

Covers the priority merge (insert / update / complement), orphan retirement
with the run fence, reference reads and the import history.
"""

from datetime import date, datetime

import pandas as pd
import pytest

from feedsync.adapters.storage import DuckDBAdapter
from feedsync.domain.models import ImportHistoryRecord, TransformedRow
from feedsync.domain.ports import ReferenceTableError, StorageError
from feedsync.domain.priority import ORPHAN_STATUS, PORTAL_TAG
from feedsync.infrastructure.config_manager import DatabaseConfig


def roster_row(id_: str, **values) -> TransformedRow:
    base = {"tipo_id": "CC", "id": id_, "nombres": f"PERSONA {id_}", "estado": "ACTIVO"}
    base.update(values)
    return TransformedRow(key=("CC", id_), values=base)


def stored(storage, id_: str) -> dict:
    result = storage.fetch_rows("bd", {"id": id_})
    assert result.is_success()
    assert len(result.value) == 1
    return result.value[0]


class TestConstruction:
    """Configuration handling."""

    def test_rejects_postgresql_config(self):
        config = DatabaseConfig(db_type="postgresql", host="localhost", database="feeds")
        with pytest.raises(StorageError):
            DuckDBAdapter(db_config=config)

    def test_missing_directory_rejected(self, tmp_path):
        with pytest.raises(StorageError, match="does not exist"):
            DuckDBAdapter(db_path=str(tmp_path / "missing" / "feeds.duckdb"))

    def test_file_database_persists_schema(self, tmp_path):
        path = str(tmp_path / "feeds.duckdb")
        adapter = DuckDBAdapter(db_path=path)
        assert adapter.initialize_schema().is_success()
        adapter.upsert_batch("bd", [roster_row("1")], "BD_NEPS")
        adapter.close()

        reopened = DuckDBAdapter(db_path=path)
        try:
            assert len(reopened.fetch_rows("bd").value) == 1
        finally:
            reopened.close()


class TestUpsertBatch:
    """Priority merge applied by upsert_batch."""

    def test_empty_chunk_is_a_no_op(self, storage):
        result = storage.upsert_batch("bd", [], "BD_NEPS")
        assert result.is_success()
        assert result.value.total == 0

    def test_inserts_new_keys_with_owner_and_timestamp(self, storage, clock):
        result = storage.upsert_batch(
            "bd", [roster_row("1", fecha_nacimiento="1980-05-17"), roster_row("2")], "BD_NEPS"
        )

        assert result.is_success()
        assert result.value.inserted == 2
        row = stored(storage, "1")
        assert row["source_tag"] == "BD_NEPS"
        assert row["fecha_nacimiento"] == date(1980, 5, 17)
        assert row["last_seen_at"] == clock.now

    def test_equal_or_higher_rank_updates_every_field(self, storage):
        storage.upsert_batch("bd", [roster_row("1", telefono="3001112233")], "BD_SIGIRES_NEPS")
        result = storage.upsert_batch("bd", [roster_row("1", nombres="NUEVO NOMBRE")], "BD_NEPS")

        assert result.value.updated == 1
        row = stored(storage, "1")
        assert row["nombres"] == "NUEVO NOMBRE"
        assert row["telefono"] is None
        assert row["source_tag"] == "BD_NEPS"

    def test_lower_rank_only_fills_blanks(self, storage):
        storage.upsert_batch("bd", [roster_row("1")], "BD_NEPS")
        before = stored(storage, "1")

        result = storage.upsert_batch(
            "bd", [roster_row("1", nombres="OTRO", telefono="3001112233")], "BD_SIGIRES_NEPS"
        )

        assert result.value.complemented == 1
        row = stored(storage, "1")
        assert row["nombres"] == "PERSONA 1"
        assert row["telefono"] == "3001112233"
        assert row["source_tag"] == "BD_NEPS"
        assert row["last_seen_at"] == before["last_seen_at"]

    def test_unknown_tag_ranks_lowest(self, storage):
        storage.upsert_batch("bd", [roster_row("1")], "BD_NEPS")
        result = storage.upsert_batch("bd", [roster_row("1", nombres="X")], "UNREGISTERED")
        assert result.value.complemented == 1
        assert stored(storage, "1")["nombres"] == "PERSONA 1"

    def test_unknown_table_is_a_failure_result(self, storage):
        result = storage.upsert_batch("nope", [roster_row("1")], "BD_NEPS")
        assert result.is_failure()
        assert result.error_type == "StorageError"
        assert "nope" in str(result.error)


class TestMarkOrphans:
    """Retirement of rows a roster run did not touch."""

    def test_retires_untouched_rows_only(self, storage):
        storage.upsert_batch("bd", [roster_row("A"), roster_row("B"), roster_row("C")], "BD_NEPS")
        fence = storage.current_timestamp()
        storage.upsert_batch("bd", [roster_row("A"), roster_row("B")], "BD_NEPS")

        result = storage.mark_orphans("bd", "BD_NEPS", fence)

        assert result.is_success()
        assert result.value == 1
        retired = stored(storage, "C")
        assert retired["estado"] == ORPHAN_STATUS
        assert retired["source_tag"] == PORTAL_TAG
        assert stored(storage, "A")["estado"] == "ACTIVO"

    def test_other_sources_untouched(self, storage):
        storage.upsert_batch("bd", [roster_row("A")], "BD_ST_CERETE")
        fence = storage.current_timestamp()
        assert storage.mark_orphans("bd", "BD_NEPS", fence).value == 0
        assert stored(storage, "A")["source_tag"] == "BD_ST_CERETE"

    def test_table_without_status_column_fails(self, storage):
        result = storage.mark_orphans("cirugias", "CIRUGIAS", datetime(2024, 1, 1))
        assert result.is_failure()


class TestReferenceReads:
    """fetch_existing_codes and load_lookup."""

    def test_fetch_existing_codes_trims_stored_values(self, storage, seed):
        seed("cups", [{"cups": " 890201 ", "descripcion": "CONSULTA"}, {"cups": "871121", "descripcion": "RX"}])
        found = storage.fetch_existing_codes("cups", "cups", ["890201", "999999"])
        assert found == {"890201"}

    def test_empty_code_list_skips_the_query(self, storage):
        assert storage.fetch_existing_codes("no_such_table", "code", []) == set()

    def test_missing_table_raises_reference_error(self, storage):
        storage._get_connection().execute("DROP TABLE cups")
        with pytest.raises(ReferenceTableError):
            storage.fetch_existing_codes("cups", "cups", ["890201"])

    def test_identifiers_are_checked(self, storage):
        with pytest.raises(StorageError, match="Invalid SQL identifier"):
            storage.fetch_existing_codes("cups; DROP TABLE bd", "cups", ["1"])

    def test_load_lookup(self, storage, seed):
        seed("red", [{"cod_hab": "2300100001", "nombre_ips": "ESE CAMU"}])
        assert storage.load_lookup("red", "cod_hab", ["nombre_ips"]) == {"2300100001": ("ESE CAMU",)}


class TestPersistDataframe:
    """Bulk loads of reference tables."""

    def test_replaces_rows_with_same_key(self, storage):
        storage.persist_dataframe(pd.DataFrame([{"cups": "890201", "descripcion": "OLD"}]), "cups")
        result = storage.persist_dataframe(
            pd.DataFrame([{"cups": "890201", "descripcion": "NEW", "extra": "ignored"}]), "cups"
        )

        assert result.is_success()
        assert result.value == 1
        assert storage.fetch_rows("cups").value == [{"cups": "890201", "descripcion": "NEW"}]

    def test_empty_frame(self, storage):
        assert storage.persist_dataframe(pd.DataFrame(), "cups").value == 0

    def test_no_matching_columns_fails(self, storage):
        result = storage.persist_dataframe(pd.DataFrame([{"foo": "1"}]), "cups")
        assert result.is_failure()
        assert "No matching columns" in str(result.error)


class TestImportHistory:
    """Append-only history rows."""

    def test_round_trip_and_filter(self, storage):
        first = ImportHistoryRecord(
            fecha_importacion=datetime(2024, 3, 1, 9, 0),
            usuario="auditoria",
            archivo_nombre="Cirugias.xls",
            tipo_fuente="cirugias",
            total_registros=10,
            exitosos=9,
            fallidos=1,
            duracion="0m 3s",
            detalles={"errores": ["CUPS 999999"]},
        )
        second = ImportHistoryRecord(
            fecha_importacion=datetime(2024, 3, 2, 9, 0),
            archivo_nombre="BD_Neps.zip",
            tipo_fuente="bd-neps",
        )
        assert storage.log_import_history(first).value == first.id
        storage.log_import_history(second)

        listed = storage.list_import_history(limit=10).value
        assert [r.id for r in listed] == [second.id, first.id]
        assert listed[1] == first

        only = storage.list_import_history(source_id="cirugias").value
        assert [r.tipo_fuente for r in only] == ["cirugias"]
        assert len(storage.list_import_history(limit=1).value) == 1
