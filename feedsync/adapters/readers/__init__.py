"""Payload readers for feedsync.

This module contains the readers that turn uploaded payloads into tables of
text cells: spreadsheets (HTML or binary workbook), streamed delimited text
dumps and ZIP bundles of CSV members.
"""

from typing import Union

from feedsync.adapters.readers.bundle_reader import BundleReader
from feedsync.adapters.readers.delimited_reader import DEFAULT_CHUNK_ROWS, DelimitedStreamReader
from feedsync.adapters.readers.format_sniffer import detect
from feedsync.adapters.readers.html_reader import HtmlTableReader
from feedsync.adapters.readers.spreadsheet_reader import SpreadsheetReader
from feedsync.adapters.readers.workbook_reader import WorkbookNormalizer
from feedsync.domain.ports import ReaderPort, RecordReaderPort, UnsupportedSourceError
from feedsync.domain.sources import SourceConfig

__all__ = [
    "BundleReader",
    "DelimitedStreamReader",
    "HtmlTableReader",
    "SpreadsheetReader",
    "WorkbookNormalizer",
    "detect",
    "get_reader",
]


def get_reader(config: SourceConfig, chunk_rows: int = DEFAULT_CHUNK_ROWS) -> Union[ReaderPort, RecordReaderPort]:
    """Return the reader for a source's payload layout.

    Parameters:
        config: Source configuration (layout, encoding, delimiter)
        chunk_rows: Rows per parsed chunk for delimited and bundle sources

    Returns:
        ReaderPort for spreadsheets, RecordReaderPort for delimited and bundle layouts

    Raises:
        UnsupportedSourceError: If the layout is unknown

    Example Usage:
        ```python
        pipeline = ImportPipeline(storage, reader_factory=get_reader)
        ```
    """
    if config.layout == "spreadsheet":
        return SpreadsheetReader()
    if config.layout == "delimited":
        return DelimitedStreamReader(encoding=config.encoding, delimiter=config.delimiter, chunk_rows=chunk_rows)
    if config.layout == "bundle":
        return BundleReader(delimiter=config.delimiter, chunk_rows=chunk_rows)
    raise UnsupportedSourceError(
        f"No reader for layout '{config.layout}'", source=config.id, adapter=None
    )
