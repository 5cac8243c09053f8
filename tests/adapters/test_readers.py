"""Tests for the payload readers: sniffing, HTML, workbooks, delimited streams and ZIP bundles."""

import io
import zipfile
from datetime import datetime

import pytest
from openpyxl import Workbook

from feedsync.adapters.readers import (
    BundleReader,
    DelimitedStreamReader,
    HtmlTableReader,
    SpreadsheetReader,
    WorkbookNormalizer,
    detect,
    get_reader,
)
from feedsync.adapters.readers.delimited_reader import MAX_FIELDS
from feedsync.domain.models import DocumentFormat
from feedsync.domain.ports import EmptyFileError, UnsupportedSourceError
from feedsync.domain.sources import BD_NEPS, BD_SALUD_TOTAL, CIRUGIAS


def xlsx_bytes(rows):
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def zip_bytes(members):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in members.items():
            archive.writestr(name, data)
    return buffer.getvalue()


class TestFormatSniffer:
    @pytest.mark.parametrize("payload", [
        b"<html><table></table></html>",
        b"\xef\xbb\xbf  \r\n<table>",
        b"\n\n\t<!DOCTYPE html>",
    ])
    def test_html(self, payload):
        assert detect(payload) is DocumentFormat.HTML

    @pytest.mark.parametrize("payload", [
        b"PK\x03\x04rest-of-xlsx",
        b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1",
        b"",
        b" " * 150 + b"<html>",
    ])
    def test_binary_workbook(self, payload):
        assert detect(payload) is DocumentFormat.BINARY_WORKBOOK


class TestHtmlTableReader:
    def test_every_table_row_and_cell(self):
        payload = (
            "<html><body><table><tr><td>Banner</td></tr></table>"
            "<table><tr><th>FECHA</th><th>NOMBRE</th></tr>"
            "<tr><td>2024/03/05</td><td><b>José</b> Pérez</td></tr></table></body></html>"
        ).encode("utf-8")

        doc = HtmlTableReader().read(payload)

        assert len(doc.tables) == 2
        assert doc.tables[0] == (("Banner",),)
        assert doc.tables[1][1] == ("2024/03/05", "José Pérez")

    def test_cp1252_fallback(self):
        payload = "<table><tr><td>Cereté</td></tr></table>".encode("cp1252")
        assert HtmlTableReader().read(payload).tables[0][0] == ("Cereté",)

    def test_blank_payload(self):
        with pytest.raises(EmptyFileError):
            HtmlTableReader().read(b"   ")

    def test_xml_declaration_is_accepted(self):
        payload = (
            '<?xml version="1.0" encoding="UTF-8"?>\n'
            "<html><body><table><tr><th>FECHA</th><th>CIUDAD</th></tr>"
            "<tr><td>2024/03/05</td><td>Cereté</td></tr></table></body></html>"
        ).encode("utf-8")

        doc = HtmlTableReader().read(payload)

        assert doc.tables == ((("FECHA", "CIUDAD"), ("2024/03/05", "Cereté")),)
        assert SpreadsheetReader().read(payload).tables == doc.tables

    def test_nested_table_rows_stay_in_the_nested_table(self):
        payload = (
            "<table><tr><td>A</td><td><table><tr><td>inner</td></tr></table></td></tr>"
            "<tbody><tr><td>B</td></tr></tbody></table>"
        ).encode("utf-8")

        outer, inner = HtmlTableReader().read(payload).tables

        assert [row[0] for row in outer] == ["A", "B"]
        assert inner == (("inner",),)


class TestWorkbookNormalizer:
    def test_first_sheet_cells_become_text(self):
        payload = xlsx_bytes([
            ["FECHA", "IDPCTE", "EDAD", "CUPS"],
            [datetime(2024, 3, 5, 10, 30), 1001, 45.0, "5340010000"],
            [None, 1002, None, "870001"],
        ])

        doc = WorkbookNormalizer().parse(payload)

        rows = doc.tables[0]
        assert rows[0] == ("FECHA", "IDPCTE", "EDAD", "CUPS")
        assert rows[1] == ("2024-03-05", "1001", "45", "5340010000")
        assert rows[2] == ("", "1002", "", "870001")

    def test_unreadable_workbook(self):
        with pytest.raises(UnsupportedSourceError):
            WorkbookNormalizer().parse(b"PK\x03\x04 not really a workbook")

    def test_spreadsheet_reader_dispatches_on_content(self):
        reader = SpreadsheetReader()
        html_doc = reader.read(b"<table><tr><td>A</td></tr></table>")
        xlsx_doc = reader.read(xlsx_bytes([["A"]]))
        assert html_doc.tables == xlsx_doc.tables == ((("A",),),)

    def test_spreadsheet_reader_rejects_empty_payload(self):
        with pytest.raises(EmptyFileError):
            SpreadsheetReader().read(b"")


class TestDelimitedStreamReader:
    def test_header_and_records(self):
        text = "\ufeffTipo\tDocumento\r\nCC\tMuñoz\r\n\r\nTI\tPeñaloza\n"
        reader = DelimitedStreamReader(encoding="utf-8", delimiter="\t")

        records = list(reader.iter_records(io.BytesIO(text.encode("utf-8"))))

        assert records == [["Tipo", "Documento"], ["CC", "Muñoz"], ["TI", "Peñaloza"]]

    @pytest.mark.parametrize("chunk_rows", [1, 2, 3, 1000])
    def test_records_are_independent_of_chunk_size(self, chunk_rows):
        lines = ["TIPO;ID;NOMBRE"] + [f"CC;{1000 + n};PACIENTE {n}" for n in range(7)]
        payload = ("\n".join(lines) + "\n").encode("cp1252")
        reader = DelimitedStreamReader(encoding="cp1252", delimiter=";", chunk_rows=chunk_rows)

        records = list(reader.iter_records(io.BytesIO(payload)))

        assert len(records) == 8
        assert records[0] == ["TIPO", "ID", "NOMBRE"]
        assert records[-1] == ["CC", "1006", "PACIENTE 6"]

    def test_quoted_field_may_hold_the_delimiter(self):
        payload = b'"1";"CALLE 5; APTO 2";"X"\n2;"DIJO ""HOLA""";Y\n'
        records = list(DelimitedStreamReader(delimiter=";").iter_records(io.BytesIO(payload)))
        assert records == [["1", "CALLE 5; APTO 2", "X"], ["2", 'DIJO "HOLA"', "Y"]]

    def test_each_record_keeps_its_width(self):
        payload = b"A;B;C;D\n1;2\n3;;;\n"
        records = list(DelimitedStreamReader(delimiter=";").iter_records(io.BytesIO(payload)))
        assert records == [["A", "B", "C", "D"], ["1", "2"], ["3", "", "", ""]]

    def test_undecodable_bytes_are_replaced(self):
        reader = DelimitedStreamReader(encoding="utf-8", delimiter=";")
        records = list(reader.iter_records(io.BytesIO(b"A;\xff\xfeB\n")))
        assert records == [["A", "\ufffd\ufffdB"]]

    def test_empty_stream_has_no_records(self):
        assert list(DelimitedStreamReader().iter_records(io.BytesIO(b""))) == []

    def test_record_wider_than_limit(self):
        payload = (";".join(["X"] * (MAX_FIELDS + 10)) + "\n").encode("utf-8")
        with pytest.raises(UnsupportedSourceError, match="Malformed"):
            list(DelimitedStreamReader(delimiter=";").iter_records(io.BytesIO(payload)))

    def test_unknown_encoding(self):
        with pytest.raises(UnsupportedSourceError):
            DelimitedStreamReader(encoding="no-such-codec")

    def test_non_positive_chunk_rows(self):
        with pytest.raises(ValueError):
            DelimitedStreamReader(chunk_rows=0)

    def test_single_table(self):
        tables = list(DelimitedStreamReader().iter_tables(io.BytesIO(b"a;b\n")))
        assert len(tables) == 1


class TestBundleReader:
    def test_every_csv_member_is_a_table(self):
        payload = zip_bytes({
            "parte1.csv": "\ufeffH1;H2\r\nA;1\r\n".encode("utf-8"),
            "parte2.CSV": "H1;H2\nMuñoz;2\n".encode("latin-1"),
            "leame.txt": b"ignored",
        })

        tables = [list(table) for table in BundleReader(";").iter_tables(io.BytesIO(payload))]

        assert tables == [
            [["H1", "H2"], ["A", "1"]],
            [["H1", "H2"], ["Muñoz", "2"]],
        ]

    def test_member_fields_follow_csv_quoting(self):
        payload = zip_bytes({"afiliados.csv": b'TIPO;ID;DIRECCION\nCC;1001;"CALLE 5; APTO 2"\n'})

        [table] = [list(t) for t in BundleReader(";").iter_tables(io.BytesIO(payload))]

        assert table[1] == ["CC", "1001", "CALLE 5; APTO 2"]

    def test_zip_without_csv_members(self):
        payload = zip_bytes({"leame.txt": b"nada"})
        with pytest.raises(EmptyFileError, match="CSVs"):
            list(BundleReader().iter_tables(io.BytesIO(payload)))

    def test_not_a_zip(self):
        with pytest.raises(UnsupportedSourceError):
            list(BundleReader().iter_tables(io.BytesIO(b"plain text")))


class TestGetReader:
    def test_layouts(self):
        assert isinstance(get_reader(CIRUGIAS), SpreadsheetReader)
        delimited = get_reader(BD_SALUD_TOTAL, chunk_rows=4096)
        assert isinstance(delimited, DelimitedStreamReader)
        assert delimited.encoding == "cp1252"
        assert delimited.delimiter == "\t"
        assert delimited.chunk_rows == 4096
        assert isinstance(get_reader(BD_NEPS), BundleReader)
