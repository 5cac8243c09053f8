"""Reference Validator - Batched Code Checks and Lookup Loading.

Codes referenced by imported rows (CUPS procedures, CIE10 diagnoses,
roster identifiers) are checked against reference tables in fixed chunks.
Absence means invalid. A chunk whose query fails is logged and its codes are
marked unverified; rows depending on unverified blocking codes are counted as
errors, never reported as invalid codes.

Architecture:
    - ReferenceCache is the run-scoped memo (valid codes, unverified codes,
      lookup maps); it is invalidated at the start of every run
    - ReferenceValidator talks to StoragePort only through
      fetch_existing_codes and load_lookup
    - classify() applies a source's blocking/advisory policy to unique rows
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from feedsync.domain.models import TransformedRow
from feedsync.domain.ports import StorageError, StoragePort, chunked
from feedsync.domain.sources import LOOKUPS, SourceConfig, ValidationRule

logger = logging.getLogger(__name__)

REFERENCE_CHUNK_SIZE = 1000

CodeKey = Tuple[str, str]


class ReferenceCache:
    """Run-scoped memo of reference lookups."""

    def __init__(self):
        self._checked: Dict[CodeKey, Set[str]] = defaultdict(set)
        self._valid: Dict[CodeKey, Set[str]] = defaultdict(set)
        self._unverified: Dict[CodeKey, Set[str]] = defaultdict(set)
        self._lookups: Dict[str, Dict[str, tuple]] = {}

    def invalidate(self) -> None:
        self._checked.clear()
        self._valid.clear()
        self._unverified.clear()
        self._lookups.clear()

    def pending(self, key: CodeKey, codes: Iterable[str]) -> List[str]:
        checked = self._checked[key]
        return sorted({c for c in codes if c not in checked})

    def record(self, key: CodeKey, queried: Iterable[str], found: Iterable[str]) -> None:
        self._checked[key].update(queried)
        self._valid[key].update(found)

    def record_unverified(self, key: CodeKey, codes: Iterable[str]) -> None:
        self._checked[key].update(codes)
        self._unverified[key].update(codes)

    def valid(self, key: CodeKey) -> Set[str]:
        return self._valid[key]

    def unverified(self, key: CodeKey) -> Set[str]:
        return self._unverified[key]

    def lookup(self, name: str) -> Optional[Dict[str, tuple]]:
        return self._lookups.get(name)

    def store_lookup(self, name: str, values: Dict[str, tuple]) -> None:
        self._lookups[name] = values


@dataclass
class Finding:
    """One row that failed a reference check."""

    code: str
    example: str
    contract: str = ""


@dataclass
class ValidationOutcome:
    """Result of applying a source's validation policy to its unique rows."""

    accepted: List[TransformedRow] = field(default_factory=list)
    rejected: Dict[ValidationRule, List[Finding]] = field(default_factory=dict)
    advisories: Dict[ValidationRule, List[Finding]] = field(default_factory=dict)
    unverified_rows: int = 0

    @property
    def rejected_count(self) -> int:
        return sum(len(findings) for findings in self.rejected.values())


class ReferenceValidator:
    """Checks codes against reference tables through a StoragePort."""

    def __init__(
        self,
        storage: StoragePort,
        cache: Optional[ReferenceCache] = None,
        chunk_size: int = REFERENCE_CHUNK_SIZE,
        progress: Optional[Callable[[str, Optional[float]], None]] = None,
    ):
        self.storage = storage
        self.cache = cache or ReferenceCache()
        self.chunk_size = chunk_size
        self.progress = progress

    def validate_batch(self, codes: Iterable[str], table: str, column: str) -> Set[str]:
        """Return the subset of codes present in table.column.

        Parameters:
            codes: Codes to check (duplicates and empties are ignored)
            table: Reference table name
            column: Column holding the codes

        Returns:
            Set[str]: Codes confirmed present

        Raises:
            ReferenceTableError: If the reference table does not exist
        """
        key = (table, column)
        wanted = {c for c in codes if c}
        pending = self.cache.pending(key, wanted)

        for index, chunk in enumerate(chunked(pending, self.chunk_size)):
            try:
                found = self.storage.fetch_existing_codes(table, column, list(chunk))
            except StorageError as e:
                logger.error(
                    f"Reference check failed for {table}.{column} "
                    f"(chunk {index + 1}, {len(chunk)} codes): {e}",
                    exc_info=True,
                )
                self.cache.record_unverified(key, chunk)
                continue
            self.cache.record(key, chunk, found)
            if self.progress:
                done = min((index + 1) * self.chunk_size, len(pending))
                self.progress(f"Validando {table}... {done}/{len(pending)}", None)

        return self.cache.valid(key) & wanted

    def unverified(self, table: str, column: str) -> Set[str]:
        return set(self.cache.unverified((table, column)))

    def load_lookups(self, names: Iterable[str]) -> Dict[str, Dict[str, tuple]]:
        """Load lookup maps by name, memoized in the cache.

        Keys are trimmed and uppercased so hooks can match normalized text.

        Raises:
            ReferenceTableError: If a lookup table does not exist
        """
        loaded: Dict[str, Dict[str, tuple]] = {}
        for name in names:
            cached = self.cache.lookup(name)
            if cached is None:
                spec = LOOKUPS[name]
                raw = self.storage.load_lookup(spec.table, spec.key_column, spec.value_columns)
                cached = {
                    str(k).strip().upper(): tuple("" if v is None else str(v).strip() for v in values)
                    for k, values in raw.items()
                    if k is not None and str(k).strip()
                }
                self.cache.store_lookup(name, cached)
                logger.info(f"Loaded lookup '{name}' from {spec.table} ({len(cached)} entries)")
            loaded[name] = cached
        return loaded

    def classify(self, rows: List[TransformedRow], config: SourceConfig) -> ValidationOutcome:
        """Apply the source's validation policy.

        Blocking rules are applied in order and the first failure rejects the
        row; advisory rules are only evaluated for rows that pass every
        blocking rule.
        """
        outcome = ValidationOutcome()
        if not config.validations:
            outcome.accepted = list(rows)
            return outcome

        valid: Dict[ValidationRule, Set[str]] = {}
        unverified: Dict[ValidationRule, Set[str]] = {}
        for rule in config.validations:
            codes = {rule.code_of(row.get(rule.field)) for row in rows}
            codes.discard(None)
            valid[rule] = self.validate_batch(codes, rule.table, rule.column)
            unverified[rule] = self.unverified(rule.table, rule.column)

        blocking = [r for r in config.validations if r.blocking]
        advisory = [r for r in config.validations if not r.blocking]

        for row in rows:
            rejected = False
            for rule in blocking:
                code = rule.code_of(row.get(rule.field))
                if code is None:
                    continue
                if code in unverified[rule]:
                    outcome.unverified_rows += 1
                    rejected = True
                    break
                if code not in valid[rule]:
                    outcome.rejected.setdefault(rule, []).append(self._finding(code, row, config))
                    rejected = True
                    break
            if rejected:
                continue

            for rule in advisory:
                code = rule.code_of(row.get(rule.field))
                if code is None or code in valid[rule] or code in unverified[rule]:
                    continue
                outcome.advisories.setdefault(rule, []).append(self._finding(code, row, config))

            outcome.accepted.append(row)

        return outcome

    @staticmethod
    def _finding(code: str, row: TransformedRow, config: SourceConfig) -> Finding:
        values: Mapping = row.values
        return Finding(
            code=code,
            example=config.example_name(values),
            contract=str(values.get(config.contract_field) or ""),
        )
