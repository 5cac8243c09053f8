"""HTML Table Reader.

Parses "spreadsheets" that are really HTML documents into RawDocument
tables: every <table>, each of its own <tr> rows (rows of nested tables
belong to the nested table), the text of every <td>/<th>.

Security Impact:
    - lxml's HTML parser never resolves external entities or fetches resources
    - Cell text is returned verbatim; cleaning happens in the domain rules

Architecture:
    - Implements ReaderPort
    - The payload is parsed as UTF-8 when it decodes as UTF-8, else as
      windows-1252, which is what the scheduling system emits
"""

import logging
from typing import List, Tuple

from lxml import etree
from lxml import html as lxml_html

from feedsync.domain.models import RawDocument
from feedsync.domain.ports import EmptyFileError, ReaderPort, UnsupportedSourceError

logger = logging.getLogger(__name__)

FALLBACK_ENCODING = "windows-1252"
UTF8_BOM = b"\xef\xbb\xbf"

# Rows that belong to the table itself, not to tables nested in its cells.
OWN_ROWS = "./tr|./thead/tr|./tbody/tr|./tfoot/tr"


def sniff_encoding(data: bytes) -> str:
    """UTF-8 when the payload decodes as UTF-8, else windows-1252."""
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        logger.debug(f"HTML payload is not UTF-8, parsing as {FALLBACK_ENCODING}")
        return FALLBACK_ENCODING
    return "utf-8"


class HtmlTableReader(ReaderPort):
    """Extracts all tables of an HTML document."""

    def __init__(self):
        self.adapter_name = "html_table_reader"

    def read(self, data: bytes) -> RawDocument:
        if data.startswith(UTF8_BOM):
            data = data[len(UTF8_BOM):]
        if not data.strip():
            raise EmptyFileError("El archivo está vacío o no tiene datos.")

        # lxml rejects str input that carries an XML encoding declaration.
        parser = lxml_html.HTMLParser(encoding=sniff_encoding(data))
        try:
            root = lxml_html.document_fromstring(data, parser=parser)
        except (etree.ParserError, ValueError) as e:
            raise UnsupportedSourceError(
                f"Payload could not be parsed as HTML: {e}", adapter=self.adapter_name
            ) from e

        tables: List[Tuple[Tuple[str, ...], ...]] = []
        for table in root.iter("table"):
            rows = []
            for tr in table.xpath(OWN_ROWS):
                cells = tuple(
                    (cell.text_content() or "")
                    for cell in tr
                    if isinstance(cell.tag, str) and cell.tag.lower() in ("td", "th")
                )
                rows.append(cells)
            tables.append(tuple(rows))

        logger.debug(f"HTML payload holds {len(tables)} tables")
        return RawDocument(tables=tuple(tables))
