"""Push side of the sync engine: drains the local unsynced queue."""

import logging
from dataclasses import replace
from typing import Dict, List

from shared.db_operations import LocalStore
from shared.errors import MalformedLocalStateError, TransientNetworkError
from shared.models import Attachment, Entry
from services.sync_engine.remote_client import RemoteEntryClient
from services.sync_engine.uploader import AttachmentUploader

logger = logging.getLogger(__name__)

PUSH_SYNCED = "synced"
PUSH_PENDING_ATTACHMENTS = "pending_attachments"
PUSH_COMMIT_FAILED = "commit_failed"
PUSH_FAILED = "failed"


def newly_resolved(before: List[Attachment], after: List[Attachment]) -> List[str]:
    """Ids of attachments that gained a remote key between two snapshots."""
    previous = {attachment.id: attachment.resolved for attachment in before}
    return [
        attachment.id for attachment in after
        if attachment.resolved and not previous.get(attachment.id, False)
    ]


class PushSync:
    """Runs the upload-then-commit pipeline for each unsynced entry, oldest first."""

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteEntryClient,
        uploader: AttachmentUploader
    ):
        self.store = store
        self.remote = remote
        self.uploader = uploader

    async def run(self) -> Dict:
        """
        Drain the unsynced queue once.

        Entries are processed strictly serially so the remote service sees
        them in capture order. A failing entry stays unsynced and never stops
        the entries after it.

        Returns:
            Dictionary with cycle summary
        """
        queued = self.store.query_unsynced()
        if not queued:
            logger.debug("Push: nothing to sync")
            return {"total": 0, "synced": 0, "pending": 0, "results": []}

        logger.info(f"Push: {len(queued)} unsynced entries")
        results = []
        for entry in queued:
            try:
                status = await self.push_entry(entry)
            except Exception as e:
                logger.error(f"Push of entry {entry.id} failed: {e}", exc_info=True)
                status = PUSH_FAILED
            results.append({"entry_id": entry.id, "status": status})

        synced = sum(1 for result in results if result["status"] == PUSH_SYNCED)
        logger.info(f"Push completed: {synced} synced, {len(results) - synced} pending")
        return {
            "total": len(results),
            "synced": synced,
            "pending": len(results) - synced,
            "results": results,
        }

    async def push_entry(self, entry: Entry) -> str:
        """
        Upload the entry's attachments, persist progress, then commit it.

        Returns:
            One of the PUSH_* status strings
        """
        snapshot = entry.snapshot_attachments()

        if entry.all_resolved:
            attachments = snapshot
        else:
            attachments = await self.uploader.upload_all(snapshot)
            changed = newly_resolved(snapshot, attachments)
            if changed:
                self.store.update_attachments(entry.id, attachments)
                logger.debug(f"Entry {entry.id}: persisted remote keys for {', '.join(changed)}")

        pending = [attachment.id for attachment in attachments if not attachment.resolved]
        if pending:
            logger.info(
                f"Entry {entry.id}: {len(pending)} of {len(attachments)} attachments unresolved, "
                f"leaving unsynced"
            )
            return PUSH_PENDING_ATTACHMENTS

        try:
            await self.remote.create_entry(replace(entry, attachments=attachments))
        except TransientNetworkError as e:
            logger.warning(f"Commit of entry {entry.id} failed, will retry: {e}")
            return PUSH_COMMIT_FAILED

        try:
            self.store.mark_synced(entry.id)
        except MalformedLocalStateError as e:
            logger.error(f"Entry {entry.id} committed remotely but cannot be marked synced: {e}")
            return PUSH_FAILED

        logger.info(f"Entry {entry.id} synced")
        return PUSH_SYNCED
