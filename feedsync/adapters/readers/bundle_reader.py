"""ZIP Bundle Reader.

The cloud roster feed is delivered as a ZIP holding one or more ';'
separated CSV members. Each member becomes one table of the payload.

Security Impact:
    - Only regular .csv members are read; directory entries and other
      files are ignored
    - Member names are logged, member contents never are

Architecture:
    - Implements RecordReaderPort
    - Members are decoded as UTF-8 and fall back to Latin-1 (a member is
      never half one encoding and half the other), then parsed with the
      same CSV quoting rules as streamed dumps
"""

import io
import logging
import zipfile
from typing import BinaryIO, Iterator, List

from feedsync.adapters.readers.delimited_reader import DEFAULT_CHUNK_ROWS, read_records
from feedsync.domain.ports import EmptyFileError, RecordReaderPort, UnsupportedSourceError

logger = logging.getLogger(__name__)

MEMBER_SUFFIX = ".csv"


def decode_member(data: bytes) -> str:
    """Decode one member: UTF-8 (BOM stripped), else Latin-1."""
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")
    return text[1:] if text.startswith("\ufeff") else text


class BundleReader(RecordReaderPort):
    """Reads every CSV member of a ZIP archive."""

    def __init__(self, delimiter: str = ";", chunk_rows: int = DEFAULT_CHUNK_ROWS):
        self.delimiter = delimiter
        self.chunk_rows = chunk_rows
        self.adapter_name = "bundle_reader"

    def member_names(self, archive: zipfile.ZipFile) -> List[str]:
        return [
            info.filename
            for info in archive.infolist()
            if not info.is_dir() and info.filename.lower().endswith(MEMBER_SUFFIX)
        ]

    def iter_tables(self, source: BinaryIO) -> Iterator[Iterator[List[str]]]:
        try:
            archive = zipfile.ZipFile(source)
        except zipfile.BadZipFile as e:
            raise UnsupportedSourceError(
                f"El archivo no es un ZIP válido: {e}", adapter=self.adapter_name
            ) from e

        with archive:
            names = self.member_names(archive)
            if not names:
                raise EmptyFileError("Los archivos ZIP no contienen CSVs validos")
            logger.info(f"ZIP bundle holds {len(names)} CSV member(s)")

            for name in names:
                text = decode_member(archive.read(name))
                logger.debug(f"Reading bundle member '{name}' ({len(text)} characters)")
                yield read_records(io.StringIO(text), self.delimiter, self.chunk_rows)
