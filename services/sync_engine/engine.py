"""Wiring of the local store, remote client and sync components."""

import logging
from typing import List, Optional, Sequence

from shared.config import get_sync_config
from shared.db_operations import LocalStore
from shared.models import Attachment, Entry
from services.sync_engine.network import NetworkMonitor
from services.sync_engine.pull import PullMerge
from services.sync_engine.push import PushSync
from services.sync_engine.remote_client import RemoteEntryClient
from services.sync_engine.scheduler import SyncScheduler
from services.sync_engine.uploader import AttachmentUploader

logger = logging.getLogger(__name__)


class SyncEngine:
    """Offline-first capture with background reconciliation against the remote store."""

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteEntryClient,
        monitor: Optional[NetworkMonitor] = None,
        upload_concurrency: Optional[int] = None,
        pull_limit: Optional[int] = None
    ):
        sync_config = get_sync_config()
        self.store = store
        self.remote = remote
        self.monitor = monitor
        self.uploader = AttachmentUploader(
            remote, concurrency=upload_concurrency or sync_config["upload_concurrency"]
        )
        self.push_sync = PushSync(store, remote, self.uploader)
        self.pull_merge = PullMerge(store, remote, limit=pull_limit or sync_config["pull_limit"])
        self.scheduler = SyncScheduler(self.push_sync, self.pull_merge)

        if monitor is not None:
            monitor.add_reconnect_callback(self.scheduler.on_reconnect)

    async def start(self) -> None:
        """Start watching the network and run the initial push + pull."""
        if self.monitor is not None:
            await self.monitor.start()
        self.scheduler.trigger(include_pull=True)

    async def stop(self) -> None:
        """Stop the monitor and let the cycle in flight run to completion."""
        if self.monitor is not None:
            await self.monitor.stop()
        await self.scheduler.wait_idle()

    def capture(
        self,
        text: str,
        attachments: Sequence[Attachment] = (),
        parent_id: Optional[str] = None
    ) -> Entry:
        """
        Record a note locally, then trigger a push.

        Raises:
            ValueError: If the capture is empty or the parent does not exist
        """
        text = (text or "").strip()
        if not text and not attachments:
            raise ValueError("Nothing to capture")

        parent = None
        if parent_id:
            parent = self.store.get(parent_id)
            if parent is None:
                raise ValueError(f"Parent entry {parent_id} not found")

        entry = self.store.append(Entry.new(text, list(attachments), parent=parent))
        logger.info(f"Captured entry {entry.id} ({len(entry.attachments)} attachments)")
        try:
            self.scheduler.trigger()
        except RuntimeError as e:
            logger.warning(f"Entry {entry.id} saved but no sync could be started: {e}")
        return entry

    def recent(self, limit: int = 20) -> List[Entry]:
        return self.store.get_recent(limit)

    def status(self) -> dict:
        return {
            "in_flight": self.scheduler.in_flight,
            "unsynced": self.store.count_unsynced(),
            "online": self.monitor.is_online if self.monitor is not None else None,
        }
