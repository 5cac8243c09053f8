"""In-file deduplication by natural key (last write wins)."""

from typing import Dict, Iterator, List, Tuple

from feedsync.domain.models import TransformedRow


class Deduplicator:
    """Ordered map natural key -> row.

    A repeated key increments ``duplicates`` and the newer row replaces the
    older one while keeping the first-seen position, so
    ``duplicates == added - len(self)`` always holds.
    """

    def __init__(self):
        self._rows: Dict[Tuple[str, ...], TransformedRow] = {}
        self.duplicates = 0
        self.added = 0

    def add(self, row: TransformedRow) -> bool:
        """Insert or replace a row; returns True when the key was new."""
        self.added += 1
        is_new = row.key not in self._rows
        if not is_new:
            self.duplicates += 1
        self._rows[row.key] = row
        return is_new

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[TransformedRow]:
        return iter(self._rows.values())

    def rows(self) -> List[TransformedRow]:
        return list(self._rows.values())
