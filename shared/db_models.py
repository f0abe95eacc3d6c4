"""SQLAlchemy database models for the capture sync engine."""

from datetime import timezone

from sqlalchemy import (
    BigInteger, Column, DateTime, ForeignKey, Index, Integer, LargeBinary, String, Text, TypeDecorator, func
)
from sqlalchemy.orm import column_property, declarative_base, deferred, relationship


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime stored as naive UTC.

    SQLite drops tzinfo on the way out; this puts it back.
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


Base = declarative_base()


class LocalEntry(Base):
    """Model for local_entries table (the always-writable local store)."""
    __tablename__ = 'local_entries'

    id = Column(String(64), primary_key=True)
    root_id = Column(String(64), nullable=False)
    parent_id = Column(String(64), nullable=True)
    text = Column(Text, nullable=False, default="")
    created_at = Column(UTCDateTime(), nullable=False)
    sync_state = Column(String(20), nullable=False)

    attachments = relationship(
        "LocalAttachment",
        back_populates="entry",
        order_by="LocalAttachment.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index('idx_local_entries_sync_created', 'sync_state', 'created_at'),
        Index('idx_local_entries_created', 'created_at'),
    )


class LocalAttachment(Base):
    """Model for local_attachments table."""
    __tablename__ = 'local_attachments'

    pk = Column(Integer, primary_key=True, autoincrement=True)
    entry_id = Column(String(64), ForeignKey('local_entries.id', ondelete='CASCADE'), nullable=False)
    position = Column(Integer, nullable=False)
    id = Column(String(64), nullable=False)
    kind = Column(String(20), nullable=False)
    mime_type = Column(String(255), nullable=False)
    name = Column(String(1024), nullable=False, default="")
    payload = deferred(Column(LargeBinary, nullable=True))  # Dropped once uploaded
    remote_key = Column(String(255), nullable=True)

    entry = relationship("LocalEntry", back_populates="attachments")

    __table_args__ = (
        Index('idx_local_attachments_entry', 'entry_id', 'position'),
    )


# Loaded with the row so callers can size a payload without reading it
LocalAttachment.payload_size = column_property(func.length(LocalAttachment.__table__.c.payload))


class RemoteEntry(Base):
    """Model for remote_entries table (authoritative store behind the entry service)."""
    __tablename__ = 'remote_entries'

    entry_id = Column(String(64), primary_key=True)
    root_id = Column(String(64), nullable=False)
    parent_id = Column(String(64), nullable=True)
    text = Column(Text, nullable=False, default="")
    created_at = Column(BigInteger, nullable=False)  # Epoch milliseconds
    attachments_json = Column(Text, nullable=True)

    __table_args__ = (
        Index('idx_remote_entries_created', 'created_at'),
    )
