"""Binary payload sources for not-yet-uploaded attachments."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Union


class ContentSource(ABC):
    """Readable handle on an attachment's bytes."""

    @abstractmethod
    def read(self) -> bytes:
        """Return the full payload."""

    @abstractmethod
    def size(self) -> int:
        """Return the payload size in bytes."""


class BytesContentSource(ContentSource):
    """Payload held in memory."""

    def __init__(self, data: bytes):
        self._data = bytes(data)

    def read(self) -> bytes:
        return self._data

    def size(self) -> int:
        return len(self._data)

    def __eq__(self, other):
        if not isinstance(other, ContentSource):
            return NotImplemented
        return self.read() == other.read()

    def __repr__(self):
        return f"BytesContentSource(size={len(self._data)})"


class FileContentSource(ContentSource):
    """Payload read lazily from a file on disk."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def read(self) -> bytes:
        return self.path.read_bytes()

    def size(self) -> int:
        return self.path.stat().st_size

    def __repr__(self):
        return f"FileContentSource(path={str(self.path)!r})"
