"""Tests for the cell normalizers shared by every source."""

import pytest

from feedsync.domain import normalizers as norm


class TestHeaders:
    def test_compact_style_removes_accents_and_spaces(self):
        assert norm.normalize_header("  Fecha Atención ") == "FECHAATENCION"

    def test_spaced_style_keeps_inner_spaces(self):
        assert norm.normalize_header("id cita", compact=False) == "ID CITA"
        assert norm.normalize_header("ID CITA", compact=False) != norm.normalize_header("IDCITA", compact=False)

    def test_nbsp_entity_and_character_are_ignored(self):
        assert norm.normalize_header("PRIMER&nbsp;APELLIDO") == "PRIMERAPELLIDO"
        assert norm.normalize_header("PRIMER\xa0APELLIDO") == "PRIMERAPELLIDO"

    def test_empty_header(self):
        assert norm.normalize_header(None) == ""
        assert norm.normalize_header("") == ""


class TestSanitize:
    @pytest.mark.parametrize("sentinel", ["NULL", "null", " NaN ", "undefined"])
    def test_sentinels_become_empty(self, sentinel):
        assert norm.sanitize(sentinel) == ""

    def test_nul_bytes_are_removed(self):
        assert norm.sanitize("AB\x00C ") == "ABC"

    def test_quotes_only_stripped_when_asked(self):
        assert norm.sanitize('"PEREZ"') == '"PEREZ"'
        assert norm.sanitize('"PEREZ"', strip_quotes=True) == "PEREZ"


class TestCodes:
    @pytest.mark.parametrize("raw,expected", [
        ("5340010000", "534001"),
        ("6400000000", "640000"),
        ("70101", "070101"),
        ("890201.0", "890201"),
        ("abc", None),
        ("", None),
        (None, None),
    ])
    def test_normalize_cups(self, raw, expected):
        assert norm.normalize_cups(raw) == expected

    def test_cups_head_takes_code_before_description(self):
        assert norm.cups_head("881201 - ECOGRAFIA DE MAMA") == "881201"
        assert norm.cups_head("") is None

    def test_clean_id_drops_float_suffix(self):
        assert norm.clean_id(" 1067890.0 ") == "1067890"


class TestParseDate:
    @pytest.mark.parametrize("raw,expected", [
        ("2024/03/05", "2024-03-05"),
        ("05/03/2024", "2024-03-05"),
        ("05-03-2024 10:30", "2024-03-05"),
        ("3/5/24", "2024-03-05"),
        ("3/5/95", "1995-03-05"),
        ("45000", "2023-03-15"),
        ("2024-03-05T10:00:00", "2024-03-05"),
    ])
    def test_default_order(self, raw, expected):
        assert norm.parse_date(raw) == expected

    def test_impossible_values_fall_through_to_none(self):
        assert norm.parse_date("13/25/2024") is None
        assert norm.parse_date("2024-02-30") is None
        assert norm.parse_date("no es fecha") is None

    def test_blank_is_none(self):
        assert norm.parse_date("   ") is None
        assert norm.parse_date(None) is None

    def test_source_order_decides_ambiguous_dates(self):
        assert norm.parse_date("03/05/2024", order=("mdy",)) == "2024-03-05"
        assert norm.parse_date("03/05/2024", order=("dmy",)) == "2024-05-03"

    def test_serials_outside_range_are_rejected(self):
        assert norm.parse_date("12", order=("excel_serial",)) is None


class TestFieldCleaners:
    def test_integers(self):
        assert norm.leading_int("3.0") == 3
        assert norm.leading_int("x") is None
        assert norm.digits_int("45 AÑOS") == 45
        assert norm.digits_int("AÑOS") is None

    def test_phone_keeps_only_mobile_numbers(self):
        assert norm.clean_phone("300-123-4567") == "3001234567"
        assert norm.clean_phone("6047771234") == ""
        assert norm.clean_phone("") == ""

    def test_status(self):
        assert norm.normalize_status("activo con novedad") == "ACTIVO"
        assert norm.normalize_status(" retirado ") == "RETIRADO"
        assert norm.status_prefix("ASISTIDA - CONFIRMADA") == "ASISTIDA"

    def test_duration(self):
        assert norm.clean_duration("18 Minutos") == "18 minutes"
        assert norm.clean_duration("sin dato") is None

    def test_trim_punct(self):
        assert norm.trim_punct('"PEREZ",') == "PEREZ"

    def test_calculate_age(self):
        assert norm.calculate_age("2000-06-15", "2024-06-14") == 23
        assert norm.calculate_age("2000-06-15", "2024-06-15") == 24
        assert norm.calculate_age("2030-01-01", "2024-01-01") == 0
        assert norm.calculate_age(None, "2024-01-01") is None

    def test_format_duration(self):
        assert norm.format_duration(125.4) == "2m 5s"
        assert norm.format_duration(0) == "0m 0s"
