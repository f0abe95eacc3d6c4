"""Database operations for the capture sync engine."""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from sqlalchemy import create_engine, func, select
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from shared.config import get_database_url, get_local_database_url
from shared.content import ContentSource
from shared.db_models import Base, LocalAttachment, LocalEntry, RemoteEntry
from shared.errors import MalformedLocalStateError
from shared.models import Attachment, AttachmentKind, Entry, SyncState

logger = logging.getLogger(__name__)


def _ensure_sqlite_dir(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)


class StoredPayloadSource(ContentSource):
    """Attachment payload left in the local store until it is read."""

    def __init__(self, store: "LocalStore", entry_id: str, attachment_id: str, size: int):
        self.store = store
        self.entry_id = entry_id
        self.attachment_id = attachment_id
        self._size = size

    def read(self) -> bytes:
        payload = self.store.read_payload(self.entry_id, self.attachment_id)
        if payload is None:
            raise MalformedLocalStateError(
                f"Attachment {self.attachment_id} of entry {self.entry_id} has no stored payload"
            )
        return payload

    def size(self) -> int:
        return self._size

    def __repr__(self):
        return f"StoredPayloadSource(entry_id={self.entry_id!r}, attachment_id={self.attachment_id!r})"


def _attachment_from_row(row: LocalAttachment, store: "LocalStore") -> Attachment:
    local_payload = None
    if row.remote_key is None and row.payload_size is not None:
        local_payload = StoredPayloadSource(store, row.entry_id, row.id, row.payload_size)
    return Attachment(
        id=row.id,
        kind=AttachmentKind(row.kind),
        mime_type=row.mime_type,
        name=row.name,
        local_payload=local_payload,
        remote_key=row.remote_key,
    )


def _entry_from_row(row: LocalEntry, store: "LocalStore") -> Entry:
    return Entry(
        id=row.id,
        root_id=row.root_id,
        parent_id=row.parent_id,
        text=row.text,
        created_at=row.created_at,
        attachments=[_attachment_from_row(a, store) for a in row.attachments],
        sync_state=SyncState(row.sync_state),
    )


def _new_attachment_row(attachment: Attachment, position: int) -> LocalAttachment:
    payload = None
    if not attachment.resolved:
        if attachment.local_payload is None:
            raise MalformedLocalStateError(
                f"Attachment {attachment.id} has neither a local payload nor a remote key"
            )
        payload = attachment.local_payload.read()

    return LocalAttachment(
        position=position,
        id=attachment.id,
        kind=attachment.kind.value,
        mime_type=attachment.mime_type,
        name=attachment.name or "",
        payload=payload,
        remote_key=attachment.remote_key,
    )


class LocalStore:
    """
    Durable local record storage for entries and their attachments.

    Every mutation is committed before the call returns, so partial sync
    progress survives a process restart.
    """

    def __init__(self, database_url: Optional[str] = None):
        """Initialize database connection."""
        self.database_url = database_url or get_local_database_url()
        _ensure_sqlite_dir(self.database_url)
        self.engine = create_engine(self.database_url)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )

    def create_tables(self):
        """Create all tables in the database."""
        Base.metadata.create_all(bind=self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    def append(self, entry: Entry) -> Entry:
        """
        Insert a freshly captured entry as unsynced.

        Raises:
            MalformedLocalStateError: If the id already exists or an attachment
                has nothing to upload
        """
        with self.get_session() as session:
            if session.get(LocalEntry, entry.id) is not None:
                raise MalformedLocalStateError(f"Entry {entry.id} already exists")

            row = LocalEntry(
                id=entry.id,
                root_id=entry.root_id or entry.id,
                parent_id=entry.parent_id,
                text=entry.text,
                created_at=entry.created_at,
                sync_state=SyncState.UNSYNCED.value,
                attachments=[
                    _new_attachment_row(attachment, position)
                    for position, attachment in enumerate(entry.attachments)
                ],
            )
            session.add(row)
            session.commit()
            logger.debug(f"Appended entry {entry.id} with {len(entry.attachments)} attachments")
        return self.get(entry.id)

    def get(self, entry_id: str) -> Optional[Entry]:
        """Get a single entry by ID."""
        with self.get_session() as session:
            row = session.get(LocalEntry, entry_id)
            return _entry_from_row(row, self) if row else None

    def update_attachments(self, entry_id: str, attachments: List[Attachment]) -> Entry:
        """
        Replace an entry's attachment list in place, leaving sync_state alone.

        A remote key already persisted for an attachment is never cleared, and
        the local payload is dropped as soon as an attachment is resolved.

        Raises:
            MalformedLocalStateError: If the entry does not exist
        """
        with self.get_session() as session:
            row = session.get(LocalEntry, entry_id)
            if row is None:
                raise MalformedLocalStateError(f"Cannot update attachments of unknown entry {entry_id}")

            existing = {a.id: a for a in row.attachments}
            updated = []
            for position, attachment in enumerate(attachments):
                current = existing.pop(attachment.id, None)
                if current is None:
                    updated.append(_new_attachment_row(attachment, position))
                    continue

                current.position = position
                if current.remote_key is None and attachment.remote_key is not None:
                    current.remote_key = attachment.remote_key
                if current.remote_key is not None:
                    current.payload = None
                elif current.payload_size is None and attachment.local_payload is not None:
                    current.payload = attachment.local_payload.read()
                updated.append(current)

            row.attachments = updated
            session.commit()
        return self.get(entry_id)

    def mark_synced(self, entry_id: str) -> None:
        """
        Flip an entry to synced after a successful remote commit.

        Raises:
            MalformedLocalStateError: If the entry is unknown or still has
                unresolved attachments
        """
        with self.get_session() as session:
            row = session.get(LocalEntry, entry_id)
            if row is None:
                raise MalformedLocalStateError(f"Cannot mark unknown entry {entry_id} as synced")

            unresolved = [a.id for a in row.attachments if a.remote_key is None]
            if unresolved:
                raise MalformedLocalStateError(
                    f"Entry {entry_id} has unresolved attachments: {', '.join(unresolved)}"
                )

            if row.sync_state == SyncState.SYNCED.value:
                return

            row.sync_state = SyncState.SYNCED.value
            session.commit()

    def query_unsynced(self) -> List[Entry]:
        """Get all unsynced entries, oldest capture first."""
        with self.get_session() as session:
            stmt = (
                select(LocalEntry)
                .where(LocalEntry.sync_state == SyncState.UNSYNCED.value)
                .order_by(LocalEntry.created_at.asc(), LocalEntry.id.asc())
            )
            return [_entry_from_row(row, self) for row in session.execute(stmt).scalars().all()]

    def upsert(self, entry: Entry) -> Entry:
        """
        Replace a whole record with a remote version, stored as synced.

        Only the pull merge writes through here; attachments are kept as
        remote keys with no local payload.
        """
        with self.get_session() as session:
            row = session.get(LocalEntry, entry.id)
            if row is None:
                row = LocalEntry(id=entry.id)
                session.add(row)

            row.root_id = entry.root_id or entry.id
            row.parent_id = entry.parent_id
            row.text = entry.text
            row.created_at = entry.created_at
            row.sync_state = SyncState.SYNCED.value
            row.attachments = [
                LocalAttachment(
                    position=position,
                    id=attachment.id,
                    kind=attachment.kind.value,
                    mime_type=attachment.mime_type,
                    name=attachment.name or "",
                    payload=None,
                    remote_key=attachment.remote_key,
                )
                for position, attachment in enumerate(entry.attachments)
            ]
            session.commit()
        return self.get(entry.id)

    def get_recent(self, limit: int = 20) -> List[Entry]:
        """Get the most recent entries, newest first."""
        with self.get_session() as session:
            stmt = select(LocalEntry).order_by(LocalEntry.created_at.desc()).limit(limit)
            return [_entry_from_row(row, self) for row in session.execute(stmt).scalars().all()]

    def read_payload(self, entry_id: str, attachment_id: str) -> Optional[bytes]:
        """Load one attachment's stored bytes, or None once it has been dropped."""
        with self.get_session() as session:
            stmt = select(LocalAttachment.payload).where(
                LocalAttachment.entry_id == entry_id,
                LocalAttachment.id == attachment_id,
            )
            return session.execute(stmt).scalars().first()

    def count_unsynced(self) -> int:
        """Count entries still waiting for a remote commit."""
        with self.get_session() as session:
            stmt = select(func.count()).select_from(LocalEntry).where(
                LocalEntry.sync_state == SyncState.UNSYNCED.value
            )
            return session.execute(stmt).scalar_one()


class RemoteEntryOperations:
    """Handles storage of authoritative entry records for the entry service."""

    def __init__(self, database_url: Optional[str] = None):
        """Initialize database connection."""
        self.database_url = database_url or get_database_url()
        _ensure_sqlite_dir(self.database_url)
        self.engine = create_engine(self.database_url, pool_pre_ping=True)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )

    def create_tables(self):
        """Create all tables in the database."""
        Base.metadata.create_all(bind=self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    @staticmethod
    def to_dict(record: RemoteEntry) -> Dict:
        """Wire form of a remote record."""
        return {
            "entryId": record.entry_id,
            "rootId": record.root_id,
            "parentId": record.parent_id,
            "text": record.text,
            "createdAt": record.created_at,
            "attachments": json.loads(record.attachments_json) if record.attachments_json else [],
        }

    def create_entry(
        self,
        entry_id: str,
        text: str,
        created_at: int,
        root_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        attachments: Optional[List[Dict]] = None
    ) -> Tuple[Dict, bool]:
        """
        Create an entry unless one with the same id already exists.

        Args:
            entry_id: Client-generated idempotency key
            text: Entry text
            created_at: Commit time in epoch milliseconds
            root_id: Thread root (defaults to entry_id)
            parent_id: Parent entry for replies
            attachments: Wire-form attachment dicts

        Returns:
            Tuple of (record dict, created flag)
        """
        with self.get_session() as session:
            existing = session.get(RemoteEntry, entry_id)
            if existing is not None:
                return self.to_dict(existing), False

            record = RemoteEntry(
                entry_id=entry_id,
                root_id=root_id or entry_id,
                parent_id=parent_id,
                text=text,
                created_at=created_at,
                attachments_json=json.dumps(attachments) if attachments else None,
            )
            session.add(record)
            session.commit()
            return self.to_dict(record), True

    def get_entry(self, entry_id: str) -> Optional[Dict]:
        """Get a single remote entry by ID."""
        with self.get_session() as session:
            record = session.get(RemoteEntry, entry_id)
            return self.to_dict(record) if record else None

    def get_recent(self, limit: int = 50) -> List[Dict]:
        """Get the most recent entries, newest first."""
        with self.get_session() as session:
            stmt = select(RemoteEntry).order_by(RemoteEntry.created_at.desc()).limit(limit)
            return [self.to_dict(record) for record in session.execute(stmt).scalars().all()]

    def count_entries(self) -> int:
        """Count stored entries."""
        with self.get_session() as session:
            return session.execute(select(func.count()).select_from(RemoteEntry)).scalar_one()
