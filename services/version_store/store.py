"""Content-addressed, deduplicated version history of notes."""

import difflib
import gzip
import logging
import os
import zlib
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from pydantic import ValidationError

from shared.config import get_version_storage_path
from shared.db_models import Version, to_naive_utc, utcnow
from shared.db_operations import DatabaseOperations
from shared.errors import NotFoundError, StorageError
from shared.models import DecodedContent, VersionStatistics, content_hash
from services.version_store.envelope import VersionEnvelope

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 500
FILE_EXTENSION = "json.gz"


@dataclass
class VersionDiff:
    """Line-level comparison of two versions."""
    old_version: int
    new_version: int
    added_lines: int
    removed_lines: int
    unified: str

    @property
    def identical(self) -> bool:
        return not self.added_lines and not self.removed_lines


def _line_changes(old: str, new: str) -> tuple:
    added = removed = 0
    for line in difflib.ndiff(old.splitlines(), new.splitlines()):
        if line.startswith("+ "):
            added += 1
        elif line.startswith("- "):
            removed += 1
    return added, removed


class VersionStore:
    """Persists note versions as gzipped JSON envelopes plus an index.

    Identical plaintext never produces a second version row. Files are
    written before their index row is committed, so a row always points at
    an existing file; a crash in between leaves an orphan file behind.
    """

    def __init__(self, db_ops: DatabaseOperations, storage_path: Optional[str] = None):
        """
        Initialize the version store.

        Args:
            db_ops: Database operations for the version index
            storage_path: Root directory of version files
        """
        self.db_ops = db_ops
        self.storage_path = storage_path or get_version_storage_path()
        os.makedirs(self.storage_path, exist_ok=True)

    def save_version(
        self,
        note_id: str,
        content: DecodedContent,
        source_modified_at: Optional[datetime] = None,
        title: Optional[str] = None,
        folder_path: Optional[str] = None
    ) -> Version:
        """
        Save a new version of a note unless its plaintext is unchanged.

        Args:
            note_id: The note's UUID
            content: Decoded note content
            source_modified_at: Modification time reported by the note source
            title: Current note title
            folder_path: Current note folder

        Returns:
            The new Version, or the existing latest one if content is identical

        Raises:
            StorageError: If the version file cannot be written
        """
        new_hash = content_hash(content.plaintext)

        with self.db_ops.write_lock("versions"):
            note = self.db_ops.get_or_create_note(note_id, title, folder_path)
            latest = self.db_ops.get_latest_version(note.id)

            previous_text = None
            if latest is not None:
                previous_text = self._load_plaintext(latest)
                previous_hash = (
                    content_hash(previous_text) if previous_text is not None else latest.content_hash
                )
                if previous_hash == new_hash:
                    logger.debug(f"Content of note {note_id} unchanged since v{latest.version_number}")
                    return latest

            version_number = self.db_ops.get_next_version_number(note.id)
            captured_at = utcnow()
            relative_path = self.build_storage_path(note_id, version_number, captured_at)

            envelope = VersionEnvelope.build(
                note_uuid=note_id,
                title=title or note.title or "Untitled",
                folder_path=folder_path if folder_path is not None else note.folder_path,
                captured_at=captured_at,
                source_modified_at=source_modified_at,
                content=content
            )
            self._write_envelope(relative_path, envelope)

            change_summary = None
            if previous_text is not None:
                added, removed = _line_changes(previous_text, content.plaintext)
                change_summary = f"+{added}/-{removed} lines"

            version = self.db_ops.insert_version(
                note.id,
                version_number,
                content_hash=new_hash,
                storage_path=relative_path,
                plaintext_preview=content.plaintext[:PREVIEW_LENGTH],
                character_count=envelope.metadata.character_count,
                word_count=envelope.metadata.word_count,
                change_summary=change_summary,
                source_modified_at=to_naive_utc(source_modified_at),
                captured_at=captured_at
            )

        logger.info(f"Saved version {version_number} of '{envelope.title}' ({note_id})")
        return version

    @staticmethod
    def build_storage_path(note_id: str, version_number: int, captured_at: datetime) -> str:
        """Relative, date-bucketed path of a version file."""
        return f"{captured_at:%Y/%m/%d}/{note_id}-v{version_number:03d}.{FILE_EXTENSION}"

    def _full_path(self, storage_path: str) -> str:
        return os.path.join(self.storage_path, *storage_path.split("/"))

    def _write_envelope(self, storage_path: str, envelope: VersionEnvelope):
        full_path = self._full_path(storage_path)
        temp_path = full_path + ".tmp"
        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            data = gzip.compress(envelope.model_dump_json().encode("utf-8"))
            with open(temp_path, "wb") as f:
                f.write(data)
            os.replace(temp_path, full_path)
        except OSError as e:
            raise StorageError(f"Failed to write version file {storage_path}: {e}")

    def _load_plaintext(self, version: Version) -> Optional[str]:
        try:
            return self.load_version(version.storage_path).content.plaintext
        except (NotFoundError, StorageError) as e:
            logger.warning(f"Could not load {version.storage_path}, comparing index hash instead: {e}")
            return None

    def load_version(self, storage_path: str) -> VersionEnvelope:
        """
        Load a persisted version envelope.

        Args:
            storage_path: Relative path as stored in the index

        Returns:
            The decoded VersionEnvelope

        Raises:
            NotFoundError: If the file does not exist
            StorageError: If the file cannot be read, inflated or parsed
        """
        full_path = self._full_path(storage_path)
        if not os.path.exists(full_path):
            raise NotFoundError(f"Version file not found: {storage_path}")

        try:
            with open(full_path, "rb") as f:
                raw = gzip.decompress(f.read())
        except (OSError, EOFError, zlib.error) as e:
            raise StorageError(f"Failed to decompress version data {storage_path}: {e}")

        try:
            return VersionEnvelope.model_validate_json(raw)
        except ValidationError as e:
            raise StorageError(f"Invalid version envelope {storage_path}: {e}")

    def list_versions(self, note_id: str) -> List[Version]:
        """All versions of a note, newest first."""
        note = self.db_ops.get_note(note_id)
        if note is None:
            return []
        return self.db_ops.get_versions(note.id)

    def get_latest_version(self, note_id: str) -> Optional[Version]:
        """Newest version of a note, if any."""
        note = self.db_ops.get_note(note_id)
        if note is None:
            return None
        return self.db_ops.get_latest_version(note.id)

    def get_version(self, version_id: int) -> Version:
        """Get a version by its ID, raising NotFoundError if absent."""
        version = self.db_ops.get_version(version_id)
        if version is None:
            raise NotFoundError(f"Version {version_id} not found")
        return version

    def prune(self, note_id: str, keep: int) -> int:
        """
        Delete all but the newest `keep` versions of a note.

        File removal is best-effort: a failure is logged and the index row
        is removed anyway.

        Args:
            note_id: The note's UUID
            keep: Number of newest versions to retain

        Returns:
            Number of versions removed from the index
        """
        if keep < 0:
            raise ValueError("keep must be non-negative")

        note = self.db_ops.get_note(note_id)
        if note is None:
            return 0

        removed = 0
        with self.db_ops.write_lock("versions"):
            for version in self.db_ops.get_versions(note.id, offset=keep):
                try:
                    os.remove(self._full_path(version.storage_path))
                except OSError as e:
                    logger.warning(f"Ignoring failure to remove {version.storage_path}: {e}")
                self.db_ops.delete_version(version.id)
                removed += 1

        if removed:
            logger.info(f"Pruned {removed} versions of note {note_id}, kept {keep}")
        return removed

    def diff_versions(self, old_version_id: int, new_version_id: int) -> VersionDiff:
        """Compare the plaintext of two versions."""
        old = self.get_version(old_version_id)
        new = self.get_version(new_version_id)
        old_text = self.load_version(old.storage_path).content.plaintext
        new_text = self.load_version(new.storage_path).content.plaintext

        added, removed = _line_changes(old_text, new_text)
        unified = "\n".join(difflib.unified_diff(
            old_text.splitlines(),
            new_text.splitlines(),
            fromfile=f"v{old.version_number}",
            tofile=f"v{new.version_number}",
            lineterm=""
        ))
        return VersionDiff(
            old_version=old.version_number,
            new_version=new.version_number,
            added_lines=added,
            removed_lines=removed,
            unified=unified
        )

    def restore_content(self, version_id: int) -> str:
        """Markdown body of a stored version, for re-export."""
        version = self.get_version(version_id)
        envelope = self.load_version(version.storage_path)
        return envelope.content.markdown or envelope.content.plaintext

    def get_statistics(self) -> VersionStatistics:
        """Counts and capture range of the whole history."""
        return self.db_ops.get_version_statistics()
