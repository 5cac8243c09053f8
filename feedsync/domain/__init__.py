"""Domain layer for feedsync.

This module contains the import pipeline core: source catalog, row
transformation, reference validation, merge policy and reporting.
All domain code is pure Python with no external dependencies beyond Pydantic.
"""

from .models import ImportHistoryRecord, ImportResult, RawDocument, TransformedRow, UpsertOutcome
from .pipeline import ImportPipeline
from .sources import SourceConfig, get_source, list_sources

__all__ = [
    "ImportHistoryRecord",
    "ImportResult",
    "ImportPipeline",
    "RawDocument",
    "SourceConfig",
    "TransformedRow",
    "UpsertOutcome",
    "get_source",
    "list_sources",
]
