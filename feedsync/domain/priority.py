"""Source Priority and Merge Planning.

Several feeds write the same roster rows. The priority table decides, per
existing row, whether an incoming row overwrites it or only fills its empty
fields:

    insert      key not stored yet
    update      stored source ranks at or below the incoming source;
                every field is overwritten and ownership moves to the
                incoming source with a fresh last-touched timestamp
    complement  stored source ranks strictly higher; only NULL or empty
                fields are filled, ownership and last-touched are unchanged

Architecture:
    - The table is versioned data, not code; adapters never branch on tags
    - plan_merge is pure so both storage adapters share one policy
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from feedsync.domain.models import TransformedRow, UpsertOutcome

PORTAL_TAG = "PORTAL_COLABORADORES"
ORPHAN_STATUS = "VALIDAR EN PORTAL EPS"
STATUS_COLUMN = "estado"


class MergeAction(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    COMPLEMENT = "complement"


@dataclass(frozen=True)
class SourcePriorityTable:
    """Versioned source-tag -> rank mapping (higher rank wins)."""

    version: int
    ranks: Mapping[str, int]
    default_rank: int = 0

    def __post_init__(self):
        object.__setattr__(self, "ranks", MappingProxyType(dict(self.ranks)))

    def rank(self, source_tag: str) -> int:
        return self.ranks.get(source_tag, self.default_rank)

    def decide(self, stored_tag: str, incoming_tag: str) -> MergeAction:
        """Action for an existing row owned by stored_tag."""
        if self.rank(stored_tag) <= self.rank(incoming_tag):
            return MergeAction.UPDATE
        return MergeAction.COMPLEMENT


PRIORITY_TABLE_V2 = SourcePriorityTable(
    version=2,
    ranks={
        "BD_ST_CERETE": 100,
        "BD_NEPS": 80,
        "BD_SIGIRES_NEPS": 60,
        "BD_ST_PGP": 60,
        "CITAS": 50,
        "ORDENAMIENTOS": 50,
        "CIRUGIAS": 50,
        "IMAGENES": 50,
        "INCAPACIDADES": 50,
        PORTAL_TAG: 0,
    },
)

CURRENT_PRIORITY_TABLE = PRIORITY_TABLE_V2


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


@dataclass
class MergePlan:
    """Rows of one chunk split by merge action."""

    inserts: List[TransformedRow] = field(default_factory=list)
    updates: List[TransformedRow] = field(default_factory=list)
    complements: List[Tuple[Tuple[str, ...], Dict[str, Any]]] = field(default_factory=list)

    @property
    def outcome(self) -> UpsertOutcome:
        return UpsertOutcome(
            inserted=len(self.inserts),
            updated=len(self.updates),
            complemented=len(self.complements),
        )


def plan_merge(
    rows: Sequence[TransformedRow],
    existing: Mapping[Tuple[str, ...], Mapping[str, Any]],
    source_tag: str,
    columns: Sequence[str],
    key_columns: Sequence[str],
    table: SourcePriorityTable = CURRENT_PRIORITY_TABLE,
) -> MergePlan:
    """Split a chunk into inserts, updates and complements.

    Parameters:
        rows: Deduplicated incoming rows
        existing: Stored rows by key, including their source_tag
        source_tag: Tag of the incoming source
        columns: Business columns of the target table
        key_columns: Natural key columns (never complemented)
        table: Priority table to decide with

    Returns:
        MergePlan: every row lands in exactly one list; complements carry
        only the fields to fill (possibly none)
    """
    plan = MergePlan()
    for row in rows:
        stored = existing.get(row.key)
        if stored is None:
            plan.inserts.append(row)
            continue

        if table.decide(stored.get("source_tag") or "", source_tag) is MergeAction.UPDATE:
            plan.updates.append(row)
            continue

        fills = {
            column: row.get(column)
            for column in columns
            if column not in key_columns and is_blank(stored.get(column)) and not is_blank(row.get(column))
        }
        plan.complements.append((row.key, fills))
    return plan
