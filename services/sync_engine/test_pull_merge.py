"""Unit tests for PullMerge."""

from datetime import datetime, timezone

import pytest

from shared.config import MAX_RECENT_LIMIT, get_sync_config
from shared.models import Attachment, AttachmentKind, Entry, SyncState
from services.sync_engine.pull import PullMerge


def remote_entry(entry_id, text, attachments=None):
    return Entry(
        id=entry_id,
        root_id=entry_id,
        text=text,
        created_at=datetime(2024, 2, 1, 9, 0, tzinfo=timezone.utc),
        attachments=attachments or [],
        sync_state=SyncState.SYNCED,
    )


@pytest.fixture
def pull(store, fake_remote):
    return PullMerge(store, fake_remote, limit=100)


@pytest.mark.asyncio
async def test_new_remote_entries_are_inserted_as_synced(store, fake_remote, pull):
    image = Attachment(
        id="img-1", kind=AttachmentKind.IMAGE, mime_type="image/jpeg", name="a.jpg", remote_key="img-1"
    )
    fake_remote.recent = [remote_entry("r1", "from another device", [image])]

    summary = await pull.run()

    assert summary == {"status": "completed", "fetched": 1, "upserted": 1, "skipped": 0}
    stored = store.get("r1")
    assert stored.sync_state == SyncState.SYNCED
    assert stored.text == "from another device"
    assert stored.attachments[0].remote_key == "img-1"
    assert stored.attachments[0].local_payload is None


@pytest.mark.asyncio
async def test_unsynced_local_entry_is_never_clobbered(store, fake_remote, pull):
    """Scenario C: the local pending copy wins over a same-id remote record."""
    local = store.append(Entry.new("C"))
    fake_remote.recent = [remote_entry(local.id, "stale remote copy")]

    summary = await pull.run()

    assert summary["skipped"] == 1
    assert summary["upserted"] == 0
    stored = store.get(local.id)
    assert stored.text == "C"
    assert stored.sync_state == SyncState.UNSYNCED
    assert stored.created_at == local.created_at


@pytest.mark.asyncio
async def test_synced_local_entry_is_replaced_by_remote(store, fake_remote, pull):
    """Last fetch wins for any id that is not locally pending."""
    local = store.append(Entry.new("old text"))
    store.mark_synced(local.id)
    fake_remote.recent = [remote_entry(local.id, "edited elsewhere")]

    await pull.run()

    stored = store.get(local.id)
    assert stored.text == "edited elsewhere"
    assert stored.sync_state == SyncState.SYNCED


@pytest.mark.asyncio
async def test_pull_respects_limit(store, fake_remote):
    fake_remote.recent = [remote_entry(f"r{i}", f"entry {i}") for i in range(5)]

    summary = await PullMerge(store, fake_remote, limit=2).run()

    assert summary["fetched"] == 2
    assert store.get("r0") is not None
    assert store.get("r4") is None


@pytest.mark.asyncio
async def test_failed_fetch_leaves_store_untouched(store, fake_remote, pull):
    local = store.append(Entry.new("local"))
    fake_remote.online = False

    summary = await pull.run()

    assert summary["status"] == "failed"
    assert store.get(local.id).text == "local"


def test_pull_limit_never_exceeds_recent_view_page(store, fake_remote, monkeypatch):
    assert PullMerge(store, fake_remote, limit=500).limit == MAX_RECENT_LIMIT

    monkeypatch.setenv("PULL_LIMIT", "500")
    assert get_sync_config()["pull_limit"] == MAX_RECENT_LIMIT

    monkeypatch.setenv("PULL_LIMIT", "20")
    assert get_sync_config()["pull_limit"] == 20
