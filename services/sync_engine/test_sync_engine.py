"""End-to-end tests for SyncEngine against an in-memory remote.

Covers the offline capture, flaky upload and pull-during-pending scenarios
plus eventual delivery of every queued entry.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from shared.models import Entry, SyncState
from services.sync_engine.engine import SyncEngine
from services.sync_engine.network import ManualNetworkMonitor


@pytest.fixture
def monitor():
    return ManualNetworkMonitor(initially_online=False)


@pytest.fixture
def engine(store, fake_remote, monitor):
    return SyncEngine(store, fake_remote, monitor, upload_concurrency=4, pull_limit=50)


@pytest.mark.asyncio
async def test_offline_capture_syncs_on_reconnect(store, fake_remote, monitor, engine):
    """Capture "A" offline, reconnect, and the entry becomes synced."""
    fake_remote.online = False

    entry = engine.capture("A")
    await engine.scheduler.wait_idle()

    assert store.count_unsynced() == 1
    stored = store.get(entry.id)
    assert stored.sync_state == SyncState.UNSYNCED
    assert stored.attachments == []

    fake_remote.online = True
    monitor.set_online(True)
    await engine.scheduler.wait_idle()

    assert store.get(entry.id).sync_state == SyncState.SYNCED
    assert fake_remote.pull_calls == 1


@pytest.mark.asyncio
async def test_flaky_upload_syncs_on_second_cycle(store, fake_remote, engine, make_attachment):
    """Upload fails once: cycle 1 leaves the entry pending, cycle 2 syncs it."""
    image = make_attachment(b"jpeg bytes", mime_type="image/jpeg", name="b.jpg")
    fake_remote.fail_uploads[image.id] = 1

    entry = engine.capture("B", [image])
    await engine.scheduler.wait_idle()

    stored = store.get(entry.id)
    assert stored.sync_state == SyncState.UNSYNCED
    assert stored.attachments[0].remote_key is None
    assert stored.attachments[0].local_payload.read() == b"jpeg bytes"
    assert fake_remote.commits == []

    await engine.scheduler.trigger()

    stored = store.get(entry.id)
    assert stored.sync_state == SyncState.SYNCED
    assert stored.attachments[0].remote_key == image.id
    assert fake_remote.blobs[image.id] == b"jpeg bytes"


@pytest.mark.asyncio
async def test_pull_keeps_pending_local_entry(store, fake_remote, engine):
    """A same-id remote record never overwrites the unsynced local copy."""
    fake_remote.online = False
    entry = engine.capture("C")
    await engine.scheduler.wait_idle()

    fake_remote.online = True
    fake_remote.recent = [
        Entry(
            id=entry.id,
            root_id=entry.id,
            text="copy from another device",
            created_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
            sync_state=SyncState.SYNCED,
        )
    ]
    summary = await engine.pull_merge.run()

    assert summary["skipped"] == 1
    stored = store.get(entry.id)
    assert stored.text == "C"
    assert stored.sync_state == SyncState.UNSYNCED


@pytest.mark.asyncio
async def test_every_entry_eventually_syncs(store, fake_remote, engine, make_attachment):
    """After an outage, sustained availability drains the whole queue."""
    fake_remote.online = False
    captured = [engine.capture(f"note {i}", [make_attachment()] if i % 2 else []) for i in range(5)]
    await engine.scheduler.wait_idle()
    assert store.count_unsynced() == 5

    fake_remote.online = True
    await engine.scheduler.trigger()

    assert store.count_unsynced() == 0
    assert set(fake_remote.records) == {entry.id for entry in captured}


@pytest.mark.asyncio
async def test_capture_rejects_empty_note(engine):
    with pytest.raises(ValueError):
        engine.capture("   ")


@pytest.mark.asyncio
async def test_capture_allows_attachment_only_note(engine, make_attachment):
    entry = engine.capture("", [make_attachment()])
    await engine.scheduler.wait_idle()

    assert entry.text == ""
    assert len(entry.attachments) == 1


@pytest.mark.asyncio
async def test_reply_joins_parent_thread(store, engine):
    root = engine.capture("root")
    await engine.scheduler.wait_idle()
    reply = engine.capture("reply", parent_id=root.id)
    await engine.scheduler.wait_idle()
    nested = engine.capture("nested", parent_id=reply.id)
    await engine.scheduler.wait_idle()

    assert root.root_id == root.id
    assert reply.parent_id == root.id
    assert reply.root_id == root.id
    assert nested.root_id == root.id
    assert nested.parent_id == reply.id


@pytest.mark.asyncio
async def test_reply_to_unknown_parent_is_rejected(engine):
    with pytest.raises(ValueError):
        engine.capture("orphan", parent_id="missing")


@pytest.mark.asyncio
async def test_start_runs_initial_push_and_pull(store, fake_remote, engine):
    store.append(Entry.new("captured before start"))

    await engine.start()
    await engine.stop()

    assert store.count_unsynced() == 0
    assert fake_remote.pull_calls == 1


@pytest.mark.asyncio
async def test_status_reports_queue(store, fake_remote, monitor, engine):
    fake_remote.online = False
    engine.capture("waiting")
    await engine.scheduler.wait_idle()

    assert engine.status() == {"in_flight": False, "unsynced": 1, "online": False}


@pytest.mark.asyncio
async def test_capture_during_cycle_syncs_without_another_trigger(store, fake_remote, engine):
    """A capture whose trigger collapses into a running cycle is still delivered by it."""
    fake_remote.commit_gate = asyncio.Event()
    first = engine.capture("first")
    await asyncio.sleep(0)
    second = engine.capture("second")

    fake_remote.commit_gate.set()
    await engine.scheduler.wait_idle()

    assert store.get(first.id).sync_state == SyncState.SYNCED
    assert store.get(second.id).sync_state == SyncState.SYNCED
    assert not engine.scheduler.in_flight


def test_capture_without_event_loop_still_returns_saved_entry(store, engine):
    entry = engine.capture("saved while no loop runs")

    assert store.get(entry.id).sync_state == SyncState.UNSYNCED
    assert not engine.scheduler.in_flight
