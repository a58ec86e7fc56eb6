"""SQLAlchemy database models for the version history and sync state stores."""

from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import (
    Column, String, Integer, Boolean, Text, DateTime, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp, the form SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware datetime to naive UTC for storage."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


Base = declarative_base()


class NoteRecord(Base):
    """Model for notes table: one row per note ever versioned."""
    __tablename__ = 'notes'

    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(255), nullable=False, unique=True)
    title = Column(Text, nullable=True)
    folder_path = Column(Text, nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    versions = relationship(
        "Version", back_populates="note", cascade="all, delete-orphan", passive_deletes=True
    )


class Version(Base):
    """Model for versions table. Rows are never mutated, only pruned."""
    __tablename__ = 'versions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(Integer, ForeignKey('notes.id', ondelete='CASCADE'), nullable=False)
    version_number = Column(Integer, nullable=False)
    content_hash = Column(String(64), nullable=False)
    storage_path = Column(Text, nullable=False)
    plaintext_preview = Column(Text, nullable=True)
    character_count = Column(Integer, nullable=False, default=0)
    word_count = Column(Integer, nullable=False, default=0)
    change_summary = Column(Text, nullable=True)
    source_modified_at = Column(DateTime, nullable=True)
    captured_at = Column(DateTime, nullable=False, default=utcnow)

    note = relationship("NoteRecord", back_populates="versions")

    __table_args__ = (
        UniqueConstraint('note_id', 'version_number', name='uq_versions_note_number'),
        Index('idx_versions_note', 'note_id'),
        Index('idx_versions_captured', 'captured_at'),
    )


class MonitorState(Base):
    """Model for monitor_state table: last observed state per note."""
    __tablename__ = 'monitor_state'

    note_uuid = Column(String(255), primary_key=True)
    last_hash = Column(String(64), nullable=False)
    last_source_modified_at = Column(DateTime, nullable=True)
    last_checked_at = Column(DateTime, nullable=False, default=utcnow)


class SyncState(Base):
    """Model for sync_state table: one row per tracked local path."""
    __tablename__ = 'sync_state'

    id = Column(Integer, primary_key=True, autoincrement=True)
    local_path = Column(Text, nullable=False, unique=True)
    note_uuid = Column(String(255), nullable=True)
    note_id = Column(String(255), nullable=True)
    folder_path = Column(Text, nullable=False)
    local_hash = Column(String(64), nullable=True)
    remote_hash = Column(String(64), nullable=True)
    sync_status = Column(String(50), nullable=False, default='new_local')
    last_sync_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('idx_sync_state_uuid', 'note_uuid'),
        Index('idx_sync_state_status', 'sync_status'),
    )


class SyncLog(Base):
    """Model for sync_log table."""
    __tablename__ = 'sync_log'

    id = Column(Integer, primary_key=True, autoincrement=True)
    operation = Column(String(50), nullable=False)
    local_path = Column(Text, nullable=True)
    note_uuid = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False)  # success, conflict, failed
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_sync_log_created', 'created_at'),
    )
