"""Fixtures shared by the sync engine tests."""

import asyncio
from typing import Dict, List, Optional

import pytest

from shared.content import BytesContentSource
from shared.db_operations import LocalStore
from shared.errors import TransientNetworkError
from shared.models import Attachment, Entry, to_epoch_ms


class FakeRemote:
    """In-memory stand-in for RemoteEntryClient with switchable failures."""

    def __init__(self):
        self.online = True
        self.uploads: List[str] = []
        self.commits: List[str] = []
        self.blobs: Dict[str, bytes] = {}
        self.records: Dict[str, dict] = {}
        self.fail_uploads: Dict[str, int] = {}
        self.fail_commits = 0
        self.recent: List[Entry] = []
        self.pull_calls = 0
        self.commit_gate: Optional[asyncio.Event] = None

    async def upload_attachment(self, attachment_id: str, mime_type: str, payload: bytes) -> str:
        self.uploads.append(attachment_id)
        if not self.online:
            raise TransientNetworkError("offline")
        remaining = self.fail_uploads.get(attachment_id, 0)
        if remaining:
            self.fail_uploads[attachment_id] = remaining - 1
            raise TransientNetworkError(f"upload of {attachment_id} failed")
        self.blobs[attachment_id] = payload
        return attachment_id

    async def create_entry(self, entry: Entry) -> dict:
        if self.commit_gate is not None:
            await self.commit_gate.wait()
        self.commits.append(entry.id)
        if not self.online:
            raise TransientNetworkError("offline")
        if self.fail_commits:
            self.fail_commits -= 1
            raise TransientNetworkError(f"commit of {entry.id} failed")
        record = dict(entry.to_remote_dict(), createdAt=to_epoch_ms(entry.created_at))
        return self.records.setdefault(entry.id, record)

    async def get_recent_entries(self, limit: int) -> List[Entry]:
        self.pull_calls += 1
        if not self.online:
            raise TransientNetworkError("offline")
        return list(self.recent)[:limit]

    async def health(self) -> bool:
        return self.online


@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'local.db'}"


@pytest.fixture
def store(db_url):
    """Local store on a temporary SQLite file."""
    local_store = LocalStore(database_url=db_url)
    local_store.create_tables()
    return local_store


@pytest.fixture
def make_attachment():
    def factory(data: bytes = b"\x89PNG fake", mime_type: str = "image/png", name: str = "photo.png"):
        return Attachment.new(BytesContentSource(data), mime_type, name)
    return factory
