"""Unit tests for shared data models."""

from dataclasses import asdict
from datetime import datetime, timezone

import pytest

from shared.models import (
    APPLE_EPOCH,
    CheckResult,
    DecodedContent,
    Note,
    SyncAction,
    SyncActionKind,
    SyncStatus,
    apple_timestamp_to_datetime,
    content_hash,
    datetime_to_apple_timestamp,
)


def make_note(title):
    return Note(
        uuid="n1", title=title, folder_path="Notes", modified_at=None,
        is_locked=False, raw_payload=None
    )


class TestTimestamps:
    """Tests for Core Data timestamp conversion."""

    def test_epoch_is_2001(self):
        assert apple_timestamp_to_datetime(0) == APPLE_EPOCH
        assert APPLE_EPOCH.year == 2001

    def test_round_trip_aware_datetime(self):
        value = datetime(2024, 3, 15, 12, 30, tzinfo=timezone.utc)
        assert apple_timestamp_to_datetime(datetime_to_apple_timestamp(value)) == value

    def test_naive_datetime_treated_as_utc(self):
        naive = datetime(2024, 3, 15, 12, 30)
        aware = naive.replace(tzinfo=timezone.utc)
        assert datetime_to_apple_timestamp(naive) == datetime_to_apple_timestamp(aware)


class TestContentHash:
    """Tests for content hashing."""

    def test_hash_is_sha256_hex(self):
        digest = content_hash("hello")
        assert len(digest) == 64
        assert digest == "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"

    def test_decoded_content_hash_uses_plaintext(self):
        content = DecodedContent(plaintext="abc", markdown="**abc**", html="<b>abc</b>")
        assert content.content_hash == content_hash("abc")


class TestNote:
    """Tests for Note helpers."""

    def test_display_title_falls_back_to_untitled(self):
        assert make_note(None).display_title == "Untitled"
        assert make_note("").display_title == "Untitled"
        assert make_note("Groceries").display_title == "Groceries"

    def test_safe_filename_replaces_path_characters(self):
        assert make_note("a/b: c?").safe_filename == "a-b- c"
        assert make_note('say "hi" <now>').safe_filename == "say 'hi' (now)"

    def test_safe_filename_never_empty(self):
        assert make_note("???").safe_filename == "Untitled"

    def test_safe_filename_truncated(self):
        assert len(make_note("x" * 500).safe_filename) == 200


class TestSyncModels:
    """Tests for sync enums and actions."""

    def test_status_values(self):
        assert SyncStatus.SYNCED.value == "synced"
        assert SyncStatus("local_modified") == SyncStatus.LOCAL_MODIFIED
        assert len(SyncStatus) == 8

    def test_action_description(self):
        action = SyncAction(kind=SyncActionKind.PUSH, local_path="a.md")
        assert action.description == "Push: a.md"

    def test_action_is_immutable(self):
        action = SyncAction(kind=SyncActionKind.PULL, local_path="a.md")
        with pytest.raises(AttributeError):
            action.local_path = "b.md"


class TestCheckResult:
    """Tests for CheckResult."""

    def test_has_changes(self):
        assert not CheckResult(skipped=2, errored=1).has_changes
        assert CheckResult(deleted=1).has_changes

    def test_as_dict_matches_fields(self):
        result = CheckResult(created=1, changed=2, deleted=3, skipped=4, errored=5)
        assert result.as_dict() == asdict(result)
