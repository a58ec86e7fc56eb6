"""Database operations for the version history and sync state stores."""

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional
from sqlalchemy import create_engine, select, func, delete, update
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.dialects import postgresql, sqlite

from shared.db_models import (
    Base, NoteRecord, Version, MonitorState, SyncState, SyncLog, to_naive_utc, utcnow
)
from shared.config import get_version_database_url
from shared.models import SyncStatistics, SyncStatus, VersionStatistics


class DatabaseOperations:
    """Handles all database operations for the notes core.

    Every logical store (version index, monitor state, sync state) has its
    own write lock, so writes to one store are serialized without blocking
    the others. Reads take no lock.
    """

    STORES = ("versions", "monitor", "sync")

    def __init__(self, database_url: Optional[str] = None):
        """Initialize database connection."""
        self.database_url = database_url or get_version_database_url()
        if self.database_url.startswith("sqlite") and ":memory:" in self.database_url:
            # One shared connection, otherwise every session sees an empty database
            self.engine = create_engine(
                self.database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool
            )
        else:
            self.engine = create_engine(self.database_url, pool_pre_ping=True)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )
        self._locks: Dict[str, threading.RLock] = {
            store: threading.RLock() for store in self.STORES
        }

    def create_tables(self):
        """Create all tables in the database."""
        Base.metadata.create_all(bind=self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    @contextmanager
    def write_lock(self, store: str) -> Iterator[None]:
        """Hold the single-writer lock of one store."""
        with self._locks[store]:
            yield

    def _insert(self, table):
        """Dialect-specific INSERT supporting ON CONFLICT."""
        if self.engine.dialect.name == "postgresql":
            return postgresql.insert(table)
        return sqlite.insert(table)

    # Note Operations

    def get_or_create_note(
        self,
        uuid: str,
        title: Optional[str] = None,
        folder_path: Optional[str] = None
    ) -> NoteRecord:
        """
        Get a note record, creating it if needed.

        Title and folder are refreshed on every call and a tombstoned note
        is revived, since the caller has just observed it.

        Args:
            uuid: The note's stable identifier
            title: Current title
            folder_path: Current folder

        Returns:
            The NoteRecord
        """
        with self.write_lock("versions"), self.get_session() as session:
            note = session.execute(
                select(NoteRecord).where(NoteRecord.uuid == uuid)
            ).scalar_one_or_none()

            if note:
                if title is not None:
                    note.title = title
                if folder_path is not None:
                    note.folder_path = folder_path
                note.is_deleted = False
            else:
                note = NoteRecord(uuid=uuid, title=title, folder_path=folder_path)
                session.add(note)

            session.commit()
            session.refresh(note)
            return note

    def get_note(self, uuid: str) -> Optional[NoteRecord]:
        """Get a note record by UUID."""
        with self.get_session() as session:
            stmt = select(NoteRecord).where(NoteRecord.uuid == uuid)
            return session.execute(stmt).scalar_one_or_none()

    def get_all_notes(self, include_deleted: bool = False) -> List[NoteRecord]:
        """Get all tracked notes."""
        with self.get_session() as session:
            stmt = select(NoteRecord).order_by(NoteRecord.id)
            if not include_deleted:
                stmt = stmt.where(NoteRecord.is_deleted.is_(False))
            return list(session.execute(stmt).scalars().all())

    def mark_note_deleted(self, uuid: str) -> bool:
        """
        Tombstone a note.

        Args:
            uuid: The note UUID

        Returns:
            True if the note was live and is now marked deleted
        """
        with self.write_lock("versions"), self.get_session() as session:
            result = session.execute(
                update(NoteRecord)
                .where(NoteRecord.uuid == uuid, NoteRecord.is_deleted.is_(False))
                .values(is_deleted=True, updated_at=utcnow())
            )
            session.commit()
            return result.rowcount > 0

    # Version Operations

    def get_next_version_number(self, note_id: int) -> int:
        """Next version number for a note: max existing plus one, starting at 1."""
        with self.get_session() as session:
            current = session.execute(
                select(func.max(Version.version_number)).where(Version.note_id == note_id)
            ).scalar()
            return (current or 0) + 1

    def insert_version(self, note_id: int, version_number: int, **fields) -> Version:
        """
        Insert a version row.

        Args:
            note_id: Primary key of the owning NoteRecord
            version_number: Per-note version number
            **fields: Remaining Version columns

        Returns:
            The created Version record
        """
        with self.write_lock("versions"), self.get_session() as session:
            version = Version(note_id=note_id, version_number=version_number, **fields)
            session.add(version)
            session.commit()
            session.refresh(version)
            return version

    def get_version(self, version_id: int) -> Optional[Version]:
        """Get a version by ID."""
        with self.get_session() as session:
            return session.get(Version, version_id)

    def get_latest_version(self, note_id: int) -> Optional[Version]:
        """Get the highest-numbered version of a note."""
        with self.get_session() as session:
            stmt = select(Version).where(
                Version.note_id == note_id
            ).order_by(
                Version.version_number.desc()
            ).limit(1)
            return session.execute(stmt).scalar_one_or_none()

    def get_versions(
        self,
        note_id: int,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Version]:
        """
        Get versions of a note, newest first.

        Args:
            note_id: Primary key of the owning NoteRecord
            limit: Maximum number of versions to return
            offset: Number of versions to skip

        Returns:
            List of Version records
        """
        with self.get_session() as session:
            stmt = select(Version).where(
                Version.note_id == note_id
            ).order_by(
                Version.version_number.desc()
            ).offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)
            return list(session.execute(stmt).scalars().all())

    def delete_version(self, version_id: int) -> bool:
        """Delete a version row. Returns True if a row was removed."""
        with self.write_lock("versions"), self.get_session() as session:
            result = session.execute(delete(Version).where(Version.id == version_id))
            session.commit()
            return result.rowcount > 0

    def get_version_statistics(self) -> VersionStatistics:
        """Get counts and capture range of the version history."""
        with self.get_session() as session:
            tracked = session.execute(
                select(func.count()).select_from(NoteRecord).where(NoteRecord.is_deleted.is_(False))
            ).scalar()
            total, oldest, newest = session.execute(
                select(func.count(Version.id), func.min(Version.captured_at), func.max(Version.captured_at))
            ).one()
            return VersionStatistics(
                tracked_notes=tracked or 0,
                total_versions=total or 0,
                oldest_version=oldest,
                newest_version=newest
            )

    # Monitor State Operations

    def get_monitor_state(self, note_uuid: str) -> Optional[MonitorState]:
        """Get the monitor state row for a note."""
        with self.get_session() as session:
            return session.get(MonitorState, note_uuid)

    def get_all_monitor_states(self) -> List[MonitorState]:
        """Get all monitor state rows."""
        with self.get_session() as session:
            return list(session.execute(select(MonitorState)).scalars().all())

    def upsert_monitor_state(
        self,
        note_uuid: str,
        last_hash: str,
        last_source_modified_at: Optional[datetime] = None
    ) -> MonitorState:
        """
        Insert or update the monitor state of a note.

        Args:
            note_uuid: The note UUID
            last_hash: Content hash just observed
            last_source_modified_at: Source modification time just observed

        Returns:
            The created or updated MonitorState record
        """
        with self.write_lock("monitor"), self.get_session() as session:
            now = utcnow()
            stmt = self._insert(MonitorState).values(
                note_uuid=note_uuid,
                last_hash=last_hash,
                last_source_modified_at=to_naive_utc(last_source_modified_at),
                last_checked_at=now
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=['note_uuid'],
                set_={
                    'last_hash': stmt.excluded.last_hash,
                    'last_source_modified_at': stmt.excluded.last_source_modified_at,
                    'last_checked_at': now
                }
            )
            session.execute(stmt)
            session.commit()

        return self.get_monitor_state(note_uuid)

    # Sync State Operations

    def get_sync_state(self, local_path: str) -> Optional[SyncState]:
        """Get the sync state row for a local path."""
        with self.get_session() as session:
            stmt = select(SyncState).where(SyncState.local_path == local_path)
            return session.execute(stmt).scalar_one_or_none()

    def get_sync_state_by_uuid(self, note_uuid: str) -> Optional[SyncState]:
        """Get the sync state row bound to a note UUID."""
        with self.get_session() as session:
            stmt = select(SyncState).where(SyncState.note_uuid == note_uuid).limit(1)
            return session.execute(stmt).scalar_one_or_none()

    def get_all_sync_states(self) -> List[SyncState]:
        """Get all sync state rows ordered by path."""
        with self.get_session() as session:
            stmt = select(SyncState).order_by(SyncState.local_path)
            return list(session.execute(stmt).scalars().all())

    def upsert_sync_state(
        self,
        local_path: str,
        folder_path: str,
        note_uuid: Optional[str] = None,
        note_id: Optional[str] = None,
        local_hash: Optional[str] = None,
        remote_hash: Optional[str] = None,
        sync_status: str = SyncStatus.SYNCED.value,
        last_sync_at: Optional[datetime] = None
    ) -> SyncState:
        """
        Insert or replace the sync state row for a local path.

        Args:
            local_path: Path relative to the sync directory
            folder_path: Remote folder the path is synced with
            note_uuid: Bound note UUID, if known
            note_id: Identifier returned by the note sink, if any
            local_hash: Hash of the local body at sync time
            remote_hash: Hash of the remote plaintext at sync time
            sync_status: Status value to record
            last_sync_at: Sync timestamp, defaults to now

        Returns:
            The created or updated SyncState record
        """
        with self.write_lock("sync"), self.get_session() as session:
            now = utcnow()
            values = {
                'local_path': local_path,
                'folder_path': folder_path,
                'note_uuid': note_uuid,
                'note_id': note_id,
                'local_hash': local_hash,
                'remote_hash': remote_hash,
                'sync_status': sync_status,
                'last_sync_at': last_sync_at or now,
                'updated_at': now,
            }
            stmt = self._insert(SyncState).values(created_at=now, **values)
            stmt = stmt.on_conflict_do_update(
                index_elements=['local_path'],
                set_={key: getattr(stmt.excluded, key) for key in values if key != 'local_path'}
            )
            session.execute(stmt)
            session.commit()

        return self.get_sync_state(local_path)

    def delete_sync_state(self, local_path: str) -> int:
        """
        Delete the sync state row of a local path.

        Args:
            local_path: Path relative to the sync directory

        Returns:
            Number of records deleted
        """
        with self.write_lock("sync"), self.get_session() as session:
            result = session.execute(delete(SyncState).where(SyncState.local_path == local_path))
            session.commit()
            return result.rowcount

    def get_sync_statistics(self) -> SyncStatistics:
        """Get counts of the sync state table by status."""
        with self.get_session() as session:
            rows = session.execute(
                select(SyncState.sync_status, func.count()).group_by(SyncState.sync_status)
            ).all()
            counts = {status: count for status, count in rows}
            total = sum(counts.values())
            synced = counts.get(SyncStatus.SYNCED.value, 0)
            return SyncStatistics(
                total_files=total,
                synced_files=synced,
                pending_files=total - synced,
                conflicts=counts.get(SyncStatus.CONFLICT.value, 0)
            )

    # Sync Log Operations

    def add_sync_log(
        self,
        operation: str,
        status: str,
        local_path: Optional[str] = None,
        note_uuid: Optional[str] = None,
        error_message: Optional[str] = None
    ) -> SyncLog:
        """
        Add a log entry for a sync action.

        Args:
            operation: Action kind
            status: success, conflict or failed
            local_path: Path the action touched
            note_uuid: Note the action touched
            error_message: Failure detail

        Returns:
            The created SyncLog record
        """
        with self.write_lock("sync"), self.get_session() as session:
            sync_log = SyncLog(
                operation=operation,
                status=status,
                local_path=local_path,
                note_uuid=note_uuid,
                error_message=error_message
            )
            session.add(sync_log)
            session.commit()
            session.refresh(sync_log)
            return sync_log

    def get_recent_sync_logs(self, limit: int = 50) -> List[SyncLog]:
        """Get the most recent sync log entries, newest first."""
        with self.get_session() as session:
            stmt = select(SyncLog).order_by(
                SyncLog.created_at.desc(), SyncLog.id.desc()
            ).limit(limit)
            return list(session.execute(stmt).scalars().all())
