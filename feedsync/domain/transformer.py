"""Row Transformer - Raw Cells to Typed, Keyed Rows.

Applies a source's field rules to one row of cells, adds constants, runs the
derive hook and builds the natural key. Rows missing any key field are
skipped (None). Malformed dates become None and are counted per field; for
sources with strict dates the row is rejected with ValidationError instead.

Security Impact:
    - Values are sanitized (NUL bytes, sentinels) before leaving this module
    - Only columns of the target table survive projection

Architecture:
    - One transformer per run, holding the source config, the ColumnMap and
      the run's lookup maps
    - Rule kinds are dispatched through a table of small functions
"""

import logging
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from feedsync.domain import normalizers as norm
from feedsync.domain.enrichment import DeriveContext, EnrichmentStats
from feedsync.domain.models import ColumnMap, TransformedRow
from feedsync.domain.ports import TransformationError, ValidationError
from feedsync.domain.sources import FieldRule, SourceConfig

logger = logging.getLogger(__name__)


def _optional(value: str) -> Optional[str]:
    return value or None


def _code(value: str) -> Optional[str]:
    return value.upper() or None


RULE_FUNCTIONS: Dict[str, Callable[[str], Any]] = {
    "text": lambda v: v,
    "optional_text": _optional,
    "upper": lambda v: v.upper(),
    "code": _code,
    "id": norm.clean_id,
    "cups": norm.normalize_cups,
    "cups_head": norm.cups_head,
    "int": norm.leading_int,
    "digits_int": norm.digits_int,
    "phone": norm.clean_phone,
    "status": norm.normalize_status,
    "status_prefix": norm.status_prefix,
    "duration": norm.clean_duration,
    "trim_punct": norm.trim_punct,
}


class RowTransformer:
    """Turns rows of cells into TransformedRow values for one source."""

    def __init__(
        self,
        config: SourceConfig,
        column_map: Optional[ColumnMap] = None,
        lookups: Optional[Mapping[str, Mapping[str, tuple]]] = None,
        stats: Optional[EnrichmentStats] = None,
    ):
        """Create a transformer.

        Parameters:
            config: Source configuration
            column_map: Resolved header map; positional sources build it
                from their configured positions when omitted
            lookups: Lookup maps loaded for the run
            stats: Shared counters (invalid dates, IPS matches)
        """
        if column_map is None:
            if not config.positions:
                raise ValueError(f"Source '{config.id}' needs a resolved column map")
            column_map = ColumnMap(config.positions)
        for rule in config.field_rules:
            if rule.kind != "date" and rule.kind not in RULE_FUNCTIONS:
                raise ValueError(f"Unknown field rule kind '{rule.kind}' for field '{rule.field}'")

        self.config = config
        self.column_map = column_map
        self.stats = stats or EnrichmentStats()
        self.context = DeriveContext(lookups=lookups or {}, stats=self.stats)
        self._columns = config.target.columns if config.target else ()

    def _apply(self, rule: FieldRule, raw: str) -> Any:
        value = norm.sanitize(raw, self.config.strip_quotes)
        if rule.kind != "date":
            return RULE_FUNCTIONS[rule.kind](value)

        parsed = norm.parse_date(value, self.config.date_order)
        if value and parsed is None:
            self.stats.invalid_dates[rule.field] += 1
            if self.config.strict_dates:
                raise ValidationError(
                    f"Invalid date in field '{rule.field}'", field=rule.field, value=value[:20]
                )
        return parsed

    def transform(self, cells: Sequence[str]) -> Optional[TransformedRow]:
        """Transform one row.

        Parameters:
            cells: Row cells in file order

        Returns:
            Optional[TransformedRow]: The keyed row, or None when a key field is missing

        Raises:
            ValidationError: On a malformed date when the source is strict
            TransformationError: When the derive hook fails
        """
        values: Dict[str, Any] = {
            rule.field: self._apply(rule, self.column_map.cell(cells, rule.source_column))
            for rule in self.config.field_rules
        }
        values.update(self.config.constants)

        if self.config.derive is not None:
            try:
                self.config.derive(values, self.context)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise TransformationError(
                    f"Derive step failed for source '{self.config.id}': {e}", source=self.config.id
                ) from e

        key = tuple(values.get(f) for f in self.config.key_fields)
        if any(part is None or part == "" for part in key):
            return None

        projected = {column: values.get(column) for column in self._columns} if self._columns else values
        return TransformedRow(key=tuple(str(part) for part in key), values=projected)
