"""Error types for the notes backup and sync core."""

from typing import Optional


class NotesCoreError(Exception):
    """Base class for all errors raised by the core."""


class FormatError(NotesCoreError):
    """A note payload could not be decoded (corrupt compressed framing)."""


class StorageError(NotesCoreError):
    """Compression, decompression or filesystem failure in a store."""


class NotFoundError(NotesCoreError):
    """A note, version or folder lookup found nothing."""


class ReconciliationError(NotesCoreError):
    """A sync action failed while talking to the note sink or the filesystem."""

    def __init__(self, message: str, local_path: Optional[str] = None):
        super().__init__(message)
        self.local_path = local_path


class AutomationError(ReconciliationError):
    """The note application's automation facility rejected a request."""
