"""Shared data models for the capture sync engine."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from shared.content import ContentSource


class SyncState(str, Enum):
    """Whether the local copy of an entry matches an acknowledged remote commit."""
    UNSYNCED = "unsynced"
    SYNCED = "synced"


class AttachmentKind(str, Enum):
    """Kind of binary asset attached to an entry."""
    IMAGE = "image"
    FILE = "file"

    @classmethod
    def from_mime_type(cls, mime_type: Optional[str]) -> "AttachmentKind":
        if mime_type and mime_type.startswith("image/"):
            return cls.IMAGE
        return cls.FILE


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def from_epoch_ms(value) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


@dataclass
class Attachment:
    """One binary asset tied to an entry.

    ``remote_key`` is set only after a successful upload and is permanent
    from then on. ``local_payload`` is present only before upload.
    """
    id: str
    kind: AttachmentKind
    mime_type: str
    name: str
    local_payload: Optional[ContentSource] = None
    remote_key: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.remote_key is not None

    @classmethod
    def new(
        cls,
        payload: ContentSource,
        mime_type: str,
        name: str,
        kind: Optional[AttachmentKind] = None
    ) -> "Attachment":
        """Create an unresolved attachment for a fresh capture."""
        return cls(
            id=str(uuid.uuid4()),
            kind=kind or AttachmentKind.from_mime_type(mime_type),
            mime_type=mime_type,
            name=name,
            local_payload=payload,
        )

    def to_remote_dict(self) -> Dict:
        """Wire form used by the remote commit and the recent-entries view."""
        return {
            "id": self.id,
            "key": self.remote_key,
            "type": self.kind.value,
            "mimeType": self.mime_type,
            "name": self.name,
        }

    @classmethod
    def from_remote_dict(cls, data: Dict) -> "Attachment":
        """Parse a remote attachment. Remote records never carry local bytes."""
        if not isinstance(data, dict):
            raise ValueError(f"Remote attachment is not an object: {data!r}")
        return cls(
            id=data["id"],
            kind=AttachmentKind(data.get("type") or AttachmentKind.FILE.value),
            mime_type=data.get("mimeType") or "application/octet-stream",
            name=data.get("name") or "",
            remote_key=data.get("key"),
        )


@dataclass
class Entry:
    """A captured note."""
    id: str
    root_id: str
    text: str
    created_at: datetime
    parent_id: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)
    sync_state: SyncState = SyncState.UNSYNCED

    @classmethod
    def new(
        cls,
        text: str,
        attachments: Optional[List[Attachment]] = None,
        parent: Optional["Entry"] = None
    ) -> "Entry":
        entry_id = str(uuid.uuid4())
        return cls(
            id=entry_id,
            root_id=parent.root_id if parent else entry_id,
            parent_id=parent.id if parent else None,
            text=text,
            created_at=utc_now(),
            attachments=list(attachments or []),
        )

    @property
    def all_resolved(self) -> bool:
        return all(attachment.resolved for attachment in self.attachments)

    def unresolved_attachments(self) -> List[Attachment]:
        return [attachment for attachment in self.attachments if not attachment.resolved]

    def snapshot_attachments(self) -> List[Attachment]:
        """Shallow per-attachment copies, safe to hand to the uploader."""
        return [replace(attachment) for attachment in self.attachments]

    def to_remote_dict(self) -> Dict:
        """Payload for the idempotent remote commit."""
        return {
            "entryId": self.id,
            "rootId": self.root_id,
            "parentId": self.parent_id,
            "text": self.text,
            "attachments": [attachment.to_remote_dict() for attachment in self.attachments],
        }

    @classmethod
    def from_remote_dict(cls, data: Dict) -> "Entry":
        """
        Parse a record from the remote recent-entries view.

        Raises:
            ValueError: If the record has no id or no usable timestamp
        """
        if not isinstance(data, dict):
            raise ValueError(f"Remote entry is not an object: {data!r}")

        entry_id = data.get("entryId") or data.get("id")
        if not entry_id:
            raise ValueError("Remote entry has no id")

        try:
            created_at = from_epoch_ms(data["createdAt"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Remote entry {entry_id} has invalid createdAt: {e}")

        try:
            attachments = [Attachment.from_remote_dict(item) for item in data.get("attachments") or []]
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Remote entry {entry_id} has invalid attachments: {e}")

        return cls(
            id=entry_id,
            root_id=data.get("rootId") or entry_id,
            parent_id=data.get("parentId"),
            text=data.get("text") or "",
            created_at=created_at,
            attachments=attachments,
            sync_state=SyncState.SYNCED,
        )
