"""Binary Workbook Normalizer.

Reads the first sheet of an XLSX/XLS workbook with pandas and turns it into
a one-table RawDocument of text cells.

Architecture:
    - pandas.read_excel picks openpyxl (XLSX) or xlrd (XLS) from the content
    - Date and datetime cells become ISO "YYYY-MM-DD" text so the date
      parsers downstream see a single unambiguous format
    - Integral floats ("1234.0") are rendered without the fraction; numeric
      identifiers come out of Excel as floats
"""

import io
import logging
import math
from datetime import date, datetime
from typing import Any

import pandas as pd

from feedsync.domain.models import RawDocument
from feedsync.domain.ports import EmptyFileError, ReaderPort, UnsupportedSourceError

logger = logging.getLogger(__name__)


def cell_text(value: Any) -> str:
    """Render one workbook cell as text."""
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    if value is pd.NaT:
        return ""
    if isinstance(value, (pd.Timestamp, datetime)):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class WorkbookNormalizer(ReaderPort):
    """First-sheet workbook reader."""

    def __init__(self):
        self.adapter_name = "workbook_normalizer"

    def parse(self, data: bytes) -> RawDocument:
        """Parse workbook bytes.

        Parameters:
            data: XLSX or XLS file content

        Returns:
            RawDocument: A single table with every row of the first sheet

        Raises:
            EmptyFileError: If the payload is empty
            UnsupportedSourceError: If the payload is not a readable workbook
        """
        if not data:
            raise EmptyFileError("El archivo está vacío o no tiene datos.")

        try:
            frame = pd.read_excel(io.BytesIO(data), sheet_name=0, header=None, dtype=object)
        except Exception as e:
            logger.error(f"Workbook could not be read: {type(e).__name__}", exc_info=True)
            raise UnsupportedSourceError(
                f"No se pudo leer el archivo Excel: {e}", adapter=self.adapter_name
            ) from e

        rows = tuple(
            tuple(cell_text(value) for value in record)
            for record in frame.itertuples(index=False, name=None)
        )
        logger.debug(f"Workbook first sheet: {len(rows)} rows x {frame.shape[1]} columns")
        return RawDocument(tables=(rows,))

    def read(self, data: bytes) -> RawDocument:
        return self.parse(data)
