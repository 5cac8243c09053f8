"""Orphan Reconciler - Retiring Roster Rows a Feed No Longer Sends.

A roster feed is a full snapshot. After all of its chunks are merged, every
row still attributed to the feed whose last-touched timestamp precedes the
run start was absent from the file; it is handed over to the collaborator
portal with status "VALIDAR EN PORTAL EPS" for manual review.

Architecture:
    - The fence timestamp comes from the storage clock, taken before the
      first chunk is written, so every row touched by this run is newer
    - A failed retirement is logged and reported as 0 retired rows
"""

import logging
from datetime import datetime

from feedsync.domain.ports import StoragePort

logger = logging.getLogger(__name__)


class OrphanReconciler:
    """Retires orphaned rows of one source in one target table."""

    def __init__(self, storage: StoragePort, table_name: str):
        self.storage = storage
        self.table_name = table_name
        self.last_error = None

    def retire(self, source_tag: str, run_started_at: datetime) -> int:
        """Mark rows of source_tag untouched since run_started_at as orphans.

        Parameters:
            source_tag: The feed whose snapshot just finished loading
            run_started_at: Storage-clock timestamp taken at run start

        Returns:
            int: Number of rows retired (0 when the operation failed)
        """
        result = self.storage.mark_orphans(self.table_name, source_tag, run_started_at)
        if result.is_failure():
            self.last_error = result.error
            logger.error(f"Orphan retirement failed for {source_tag} in '{self.table_name}': {result.error}")
            return 0

        retired = result.value or 0
        if retired:
            logger.info(f"Retired {retired} orphaned rows of {source_tag} from '{self.table_name}'")
        return retired
