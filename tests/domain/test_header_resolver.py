"""Tests for locating the header row and building column maps."""

import itertools

import pytest

from feedsync.domain.header_resolver import build_column_map, locate
from feedsync.domain.models import RawDocument
from feedsync.domain.ports import HeaderNotFoundError
from feedsync.domain.sources import CIRUGIAS, CITAS

CIRUGIAS_HEADER = ["FECHA", "TIPO ID", "IDPCTE", "PRIMER APELLIDO", "CUPS", "DX PRINCIPAL"]


def cirugias_document(header):
    banner = [["REPORTE DE CIRUGIAS"], ["Generado: 2024-03-05"]]
    data = [["Sede principal"], header, ["2024/03/05", "CC", "1001", "PEREZ", "5340010000", "A001"]]
    return RawDocument.from_rows(banner, data)


class TestLocate:
    def test_skips_banner_table_and_title_rows(self):
        match = locate(
            cirugias_document(CIRUGIAS_HEADER),
            CIRUGIAS.required_tokens,
            CIRUGIAS.column_dictionary,
            required_fields=CIRUGIAS.required_fields,
        )

        assert match.table_index == 1
        assert match.header_row_index == 1
        assert match.column_map["id"] == 2
        assert match.column_map["cups"] == 4
        assert match.column_map["dx1"] == 5

    def test_header_permutation_changes_indices_not_fields(self):
        reference = locate(cirugias_document(CIRUGIAS_HEADER), CIRUGIAS.required_tokens, CIRUGIAS.column_dictionary)

        for permutation in itertools.islice(itertools.permutations(CIRUGIAS_HEADER), 0, 720, 97):
            header = list(permutation)
            match = locate(cirugias_document(header), CIRUGIAS.required_tokens, CIRUGIAS.column_dictionary)
            assert match.column_map.fields == reference.column_map.fields
            for field_name in match.column_map:
                assert header[match.column_map[field_name]] == CIRUGIAS_HEADER[reference.column_map[field_name]]

    def test_missing_token_raises(self):
        header = [c for c in CIRUGIAS_HEADER if c != "CUPS"]
        with pytest.raises(HeaderNotFoundError):
            locate(cirugias_document(header), CIRUGIAS.required_tokens, CIRUGIAS.column_dictionary)

    def test_unresolved_required_field_raises(self):
        with pytest.raises(HeaderNotFoundError) as exc_info:
            locate(
                cirugias_document(CIRUGIAS_HEADER),
                ("FECHA",),
                {"FECHA": "fecha"},
                required_fields=("fecha", "cups"),
            )
        assert exc_info.value.details["missing"] == ["cups"]

    def test_header_beyond_scan_window_is_not_found(self):
        filler = [[f"fila {i}"] for i in range(25)]
        doc = RawDocument.from_rows(filler + [CIRUGIAS_HEADER])
        with pytest.raises(HeaderNotFoundError):
            locate(doc, CIRUGIAS.required_tokens, CIRUGIAS.column_dictionary)


class TestBuildColumnMap:
    def test_first_matching_column_wins(self):
        column_map = build_column_map(["CUPS", "CUPS"], {"CUPS": "cups"})
        assert column_map["cups"] == 0

    def test_spaced_style_distinguishes_id_cita(self):
        column_map = build_column_map(
            ["ID CITA", "PACIENTE", "ESTADO"], CITAS.column_dictionary, compact=False
        )
        assert column_map["id_cita"] == 0
        assert column_map["nombres_completos"] == 1
        assert column_map["estado_cita"] == 2

    def test_fuzzy_pass_only_fills_unresolved_fields(self):
        column_map = build_column_map(
            ["ID CITA", "ESP. MEDICOS", "MEDICO"],
            CITAS.column_dictionary,
            compact=False,
            fuzzy=True,
            fuzzy_max_length_diff=3,
        )
        assert column_map["medico"] == 2
        assert column_map["especialidad"] == 1

    def test_fuzzy_pass_respects_length_bound(self):
        column_map = build_column_map(
            ["OBSERVACIONES DEL MEDICO TRATANTE"],
            {"MEDICO": "medico"},
            compact=False,
            fuzzy=True,
            fuzzy_max_length_diff=3,
        )
        assert "medico" not in column_map
