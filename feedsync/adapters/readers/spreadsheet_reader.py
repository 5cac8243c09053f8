"""Spreadsheet Reader - dispatches on the sniffed payload format."""

import logging

from feedsync.adapters.readers.format_sniffer import detect
from feedsync.adapters.readers.html_reader import HtmlTableReader
from feedsync.adapters.readers.workbook_reader import WorkbookNormalizer
from feedsync.domain.models import DocumentFormat, RawDocument
from feedsync.domain.ports import EmptyFileError, ReaderPort

logger = logging.getLogger(__name__)


class SpreadsheetReader(ReaderPort):
    """Reads .xls/.xlsx uploads, whether they hold HTML or a real workbook."""

    def __init__(self):
        self.html_reader = HtmlTableReader()
        self.workbook_reader = WorkbookNormalizer()

    def read(self, data: bytes) -> RawDocument:
        if not data:
            raise EmptyFileError("El archivo está vacío o no tiene datos.")
        fmt = detect(data)
        logger.info(f"Detected spreadsheet format: {fmt.value} ({len(data)} bytes)")
        if fmt is DocumentFormat.HTML:
            return self.html_reader.read(data)
        return self.workbook_reader.parse(data)
