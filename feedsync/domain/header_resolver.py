"""Header Resolver - Locating the Data Table in a RawDocument.

Extracts exported as HTML often carry several tables (banners, filters,
totals) and a few title rows above the real header. The resolver scans the
top of every table for a row that carries all required header tokens and
turns that row into a ColumnMap.

Architecture:
    - Pure function of (document, configuration); no I/O
    - Exact matches are resolved first, fuzzy containment matches only fill
      fields that are still unresolved, first winning column per field
    - Permuting the header columns changes indices, never the field set
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from feedsync.domain.models import ColumnMap, HeaderMatch, RawDocument
from feedsync.domain.normalizers import normalize_header
from feedsync.domain.ports import HeaderNotFoundError

logger = logging.getLogger(__name__)

HEADER_SCAN_ROWS = 20


def build_column_map(
    header_cells: Sequence[str],
    column_dictionary: Mapping[str, str],
    compact: bool = True,
    fuzzy: bool = False,
    fuzzy_max_length_diff: Optional[int] = None,
) -> ColumnMap:
    """Map target fields to column indices for one header row.

    Parameters:
        header_cells: Raw header cells
        column_dictionary: Header label -> target field
        compact: Header normalization style (see normalize_header)
        fuzzy: Enable the containment pass for unresolved fields
        fuzzy_max_length_diff: Maximum length difference accepted by the fuzzy pass

    Returns:
        ColumnMap: Immutable field -> index map
    """
    normalized = [normalize_header(cell, compact) for cell in header_cells]
    keys = {normalize_header(label, compact): target for label, target in column_dictionary.items()}
    indices: Dict[str, int] = {}

    for index, header in enumerate(normalized):
        target = keys.get(header)
        if target and target not in indices:
            indices[target] = index

    if fuzzy:
        for index, header in enumerate(normalized):
            if not header:
                continue
            for key, target in keys.items():
                if target in indices:
                    continue
                if fuzzy_max_length_diff is not None and abs(len(header) - len(key)) > fuzzy_max_length_diff:
                    continue
                if key in header or header in key:
                    indices[target] = index
                    break

    return ColumnMap(indices)


def locate(
    doc: RawDocument,
    required_tokens: Iterable[str],
    column_dictionary: Mapping[str, str],
    required_fields: Iterable[str] = (),
    compact: bool = True,
    fuzzy: bool = False,
    fuzzy_max_length_diff: Optional[int] = None,
) -> HeaderMatch:
    """Find the first table whose top rows carry every required header token.

    Parameters:
        doc: Parsed document
        required_tokens: Normalized tokens the header row must contain
        column_dictionary: Header label -> target field
        required_fields: Target fields that must be resolved
        compact: Header normalization style
        fuzzy: Enable the fuzzy pass
        fuzzy_max_length_diff: Length bound for fuzzy matches

    Returns:
        HeaderMatch: table index, header row index and column map

    Raises:
        HeaderNotFoundError: When no table matches or a required field is unresolved
    """
    tokens = {normalize_header(token, compact) for token in required_tokens}

    for table_index, table in enumerate(doc.tables):
        for row_index, row in enumerate(table[:HEADER_SCAN_ROWS]):
            cells = {normalize_header(cell, compact) for cell in row}
            if not tokens.issubset(cells):
                continue

            column_map = build_column_map(
                row, column_dictionary, compact=compact, fuzzy=fuzzy,
                fuzzy_max_length_diff=fuzzy_max_length_diff,
            )
            missing: List[str] = [f for f in required_fields if f not in column_map]
            if missing:
                raise HeaderNotFoundError(
                    f"Required columns not found: {', '.join(missing)}",
                    details={"missing": missing, "table_index": table_index},
                )
            logger.debug(
                f"Header located at table {table_index}, row {row_index} "
                f"({len(column_map)} fields mapped)"
            )
            return HeaderMatch(table_index=table_index, header_row_index=row_index, column_map=column_map)

    raise HeaderNotFoundError(
        f"No table with headers {sorted(tokens)} found in the file",
        details={"required_tokens": sorted(tokens), "tables": len(doc.tables)},
    )
