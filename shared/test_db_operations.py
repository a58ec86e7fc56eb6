"""Tests for database operations."""

from datetime import datetime, timedelta, timezone

import pytest

from shared.db_operations import DatabaseOperations
from shared.models import SyncStatus


@pytest.fixture
def db_ops():
    """Create a test database operations instance with in-memory SQLite."""
    db = DatabaseOperations(database_url="sqlite:///:memory:")
    db.create_tables()
    return db


def add_version(db_ops, note_id, number, **fields):
    values = {
        "content_hash": f"{number:064d}",
        "storage_path": f"2024/01/01/n-v{number:03d}.json.gz",
    }
    values.update(fields)
    return db_ops.insert_version(note_id, number, **values)


def test_get_or_create_note_is_idempotent(db_ops):
    first = db_ops.get_or_create_note("uuid-1", "Title", "Notes")
    second = db_ops.get_or_create_note("uuid-1")

    assert first.id == second.id
    assert second.title == "Title"
    assert len(db_ops.get_all_notes()) == 1


def test_get_or_create_note_refreshes_metadata(db_ops):
    db_ops.get_or_create_note("uuid-1", "Old", "Notes")
    note = db_ops.get_or_create_note("uuid-1", "New", "Archive")

    assert note.title == "New"
    assert note.folder_path == "Archive"


def test_mark_note_deleted_only_once(db_ops):
    db_ops.get_or_create_note("uuid-1", "Title")

    assert db_ops.mark_note_deleted("uuid-1") is True
    assert db_ops.mark_note_deleted("uuid-1") is False
    assert db_ops.mark_note_deleted("missing") is False

    assert db_ops.get_all_notes() == []
    assert len(db_ops.get_all_notes(include_deleted=True)) == 1


def test_tombstoned_note_is_revived(db_ops):
    db_ops.get_or_create_note("uuid-1", "Title")
    db_ops.mark_note_deleted("uuid-1")

    note = db_ops.get_or_create_note("uuid-1", "Title")

    assert note.is_deleted is False


def test_version_numbers_and_ordering(db_ops):
    note = db_ops.get_or_create_note("uuid-1")
    assert db_ops.get_next_version_number(note.id) == 1

    for number in (1, 2, 3):
        add_version(db_ops, note.id, number)

    assert db_ops.get_next_version_number(note.id) == 4
    assert db_ops.get_latest_version(note.id).version_number == 3
    assert [v.version_number for v in db_ops.get_versions(note.id)] == [3, 2, 1]
    assert [v.version_number for v in db_ops.get_versions(note.id, offset=1)] == [2, 1]
    assert [v.version_number for v in db_ops.get_versions(note.id, limit=1)] == [3]


def test_version_numbers_are_per_note(db_ops):
    first = db_ops.get_or_create_note("uuid-1")
    second = db_ops.get_or_create_note("uuid-2")
    add_version(db_ops, first.id, 1)
    add_version(db_ops, first.id, 2)

    assert db_ops.get_next_version_number(second.id) == 1


def test_delete_version(db_ops):
    note = db_ops.get_or_create_note("uuid-1")
    version = add_version(db_ops, note.id, 1)

    assert db_ops.delete_version(version.id) is True
    assert db_ops.get_version(version.id) is None
    assert db_ops.delete_version(version.id) is False


def test_version_statistics(db_ops):
    note = db_ops.get_or_create_note("uuid-1")
    add_version(db_ops, note.id, 1, captured_at=datetime(2024, 1, 1))
    add_version(db_ops, note.id, 2, captured_at=datetime(2024, 2, 1))

    stats = db_ops.get_version_statistics()

    assert stats.tracked_notes == 1
    assert stats.total_versions == 2
    assert stats.oldest_version == datetime(2024, 1, 1)
    assert stats.newest_version == datetime(2024, 2, 1)


def test_upsert_monitor_state(db_ops):
    modified = datetime(2024, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))

    db_ops.upsert_monitor_state("uuid-1", "a" * 64, modified)
    state = db_ops.upsert_monitor_state("uuid-1", "b" * 64)

    assert state.last_hash == "b" * 64
    assert state.last_source_modified_at is None
    assert len(db_ops.get_all_monitor_states()) == 1


def test_monitor_state_stores_naive_utc(db_ops):
    modified = datetime(2024, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))

    state = db_ops.upsert_monitor_state("uuid-1", "a" * 64, modified)

    assert state.last_source_modified_at == datetime(2024, 5, 1, 10, 0)


def test_upsert_sync_state(db_ops):
    db_ops.upsert_sync_state("a.md", "Notes", local_hash="l1", remote_hash="r1")
    state = db_ops.upsert_sync_state(
        "a.md", "Notes", note_uuid="uuid-1", local_hash="l2", remote_hash="r2"
    )

    assert state.note_uuid == "uuid-1"
    assert state.local_hash == "l2"
    assert state.sync_status == SyncStatus.SYNCED.value
    assert state.last_sync_at is not None
    assert db_ops.get_sync_state_by_uuid("uuid-1").local_path == "a.md"
    assert len(db_ops.get_all_sync_states()) == 1


def test_sync_statistics_and_delete(db_ops):
    db_ops.upsert_sync_state("b.md", "Notes")
    db_ops.upsert_sync_state("a.md", "Notes", sync_status=SyncStatus.CONFLICT.value)

    assert [s.local_path for s in db_ops.get_all_sync_states()] == ["a.md", "b.md"]

    stats = db_ops.get_sync_statistics()
    assert stats.total_files == 2
    assert stats.synced_files == 1
    assert stats.pending_files == 1
    assert stats.conflicts == 1

    assert db_ops.delete_sync_state("a.md") == 1
    assert db_ops.get_sync_state("a.md") is None


def test_sync_logs_newest_first(db_ops):
    db_ops.add_sync_log("push", "success", local_path="a.md")
    db_ops.add_sync_log("pull", "failed", local_path="b.md", error_message="boom")

    logs = db_ops.get_recent_sync_logs(limit=10)

    assert [log.operation for log in logs] == ["pull", "push"]
    assert logs[0].error_message == "boom"
