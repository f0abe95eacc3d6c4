"""Pull side of the sync engine: folds the remote recent-entries view into the local store."""

import logging
from typing import Dict

from shared.config import MAX_RECENT_LIMIT
from shared.db_operations import LocalStore
from shared.errors import TransientNetworkError
from shared.models import SyncState
from services.sync_engine.remote_client import RemoteEntryClient

logger = logging.getLogger(__name__)


class PullMerge:
    """
    Last-fetch-wins merge for every id that is not locally pending.

    A local entry that is still unsynced always outranks the remote snapshot
    for the same id; anything else is replaced whole by the remote record.
    """

    def __init__(self, store: LocalStore, remote: RemoteEntryClient, limit: int = 100):
        self.store = store
        self.remote = remote
        self.limit = min(limit, MAX_RECENT_LIMIT)

    async def run(self) -> Dict:
        """
        Fetch the remote recent entries and merge them.

        Returns:
            Dictionary with merge summary
        """
        try:
            remote_entries = await self.remote.get_recent_entries(self.limit)
        except TransientNetworkError as e:
            logger.warning(f"Pull failed, will retry on next cycle: {e}")
            return {"status": "failed", "error": str(e), "fetched": 0, "upserted": 0, "skipped": 0}

        upserted = 0
        skipped = 0
        for remote_entry in remote_entries:
            local = self.store.get(remote_entry.id)
            if local is not None and local.sync_state == SyncState.UNSYNCED:
                logger.debug(f"Pull: keeping local pending copy of entry {remote_entry.id}")
                skipped += 1
                continue

            self.store.upsert(remote_entry)
            upserted += 1

        logger.info(f"Pulled {len(remote_entries)} entries: {upserted} upserted, {skipped} skipped")
        return {
            "status": "completed",
            "fetched": len(remote_entries),
            "upserted": upserted,
            "skipped": skipped,
        }
