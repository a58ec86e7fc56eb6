"""Shared data models for the notes backup and sync core."""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import List, Optional, Tuple

# Core Data timestamps count seconds from 2001-01-01 00:00:00 UTC.
APPLE_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)

_FILENAME_REPLACEMENTS = (
    ("/", "-"),
    (":", "-"),
    ("\\", "-"),
    ('"', "'"),
    ("<", "("),
    (">", ")"),
    ("|", "-"),
    ("?", ""),
    ("*", ""),
)


def apple_timestamp_to_datetime(timestamp: float) -> datetime:
    """Convert a Core Data timestamp to an aware UTC datetime."""
    return APPLE_EPOCH + timedelta(seconds=timestamp)


def datetime_to_apple_timestamp(value: datetime) -> float:
    """Convert a datetime to a Core Data timestamp. Naive values are UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - APPLE_EPOCH).total_seconds()


def content_hash(text: str) -> str:
    """SHA-256 hex digest of canonical plaintext."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class FontWeight(IntEnum):
    """Font weight of an attribute run, numbered as on the wire."""
    NONE = 0
    BOLD = 1
    ITALIC = 2
    BOLD_ITALIC = 3


class ParagraphStyle(str, Enum):
    """Paragraph style of an attribute run."""
    NONE = "none"
    TITLE = "title"
    HEADING = "heading"
    SUBHEADING = "subheading"
    MONOSPACE = "monospace"
    BULLET_DOT = "bullet_dot"
    BULLET_DASH = "bullet_dash"
    NUMBERED = "numbered"
    CHECKBOX = "checkbox"
    CHECKED_CHECKBOX = "checked_checkbox"


@dataclass(frozen=True)
class AttributeRun:
    """A contiguous character range with rich-text formatting."""
    length: int
    font_weight: FontWeight = FontWeight.NONE
    paragraph_style: ParagraphStyle = ParagraphStyle.NONE


@dataclass(frozen=True)
class DecodedContent:
    """Result of decoding one note payload."""
    plaintext: str
    markdown: str
    html: str
    attribute_runs: Tuple[AttributeRun, ...] = ()
    has_embedded_objects: bool = False

    @property
    def content_hash(self) -> str:
        return content_hash(self.plaintext)


@dataclass
class Note:
    """Represents a note read from the note source."""
    uuid: str
    title: Optional[str]
    folder_path: Optional[str]
    modified_at: Optional[datetime]
    is_locked: bool
    raw_payload: Optional[bytes]

    @property
    def display_title(self) -> str:
        """Title with an "Untitled" fallback."""
        return self.title if self.title else "Untitled"

    @property
    def safe_filename(self) -> str:
        """Title sanitized for use as a file name."""
        name = self.display_title
        for old, new in _FILENAME_REPLACEMENTS:
            name = name.replace(old, new)
        name = name.strip()[:200]
        return name or "Untitled"


class SyncStatus(str, Enum):
    """Cached result of the last reconciliation decision for a file."""
    SYNCED = "synced"
    LOCAL_MODIFIED = "local_modified"
    REMOTE_MODIFIED = "remote_modified"
    CONFLICT = "conflict"
    NEW_LOCAL = "new_local"
    NEW_REMOTE = "new_remote"
    DELETED_LOCAL = "deleted_local"
    DELETED_REMOTE = "deleted_remote"


class SyncActionKind(str, Enum):
    """Kinds of planned sync actions."""
    PUSH = "push"
    PULL = "pull"
    CREATE_REMOTE = "create_remote"
    CREATE_LOCAL = "create_local"
    CONFLICT = "conflict"
    DELETED_LOCALLY = "deleted_locally"
    DELETED_REMOTELY = "deleted_remotely"


_ACTION_LABELS = {
    SyncActionKind.PUSH: "Push",
    SyncActionKind.PULL: "Pull",
    SyncActionKind.CREATE_REMOTE: "Create remote",
    SyncActionKind.CREATE_LOCAL: "Create local",
    SyncActionKind.CONFLICT: "Conflict",
    SyncActionKind.DELETED_LOCALLY: "Deleted locally",
    SyncActionKind.DELETED_REMOTELY: "Deleted remotely",
}


@dataclass(frozen=True)
class SyncAction:
    """One planned reconciliation step for a local path."""
    kind: SyncActionKind
    local_path: str
    note_uuid: Optional[str] = None
    title: Optional[str] = None
    local_hash: Optional[str] = None
    remote_hash: Optional[str] = None

    @property
    def description(self) -> str:
        return f"{_ACTION_LABELS[self.kind]}: {self.local_path}"


@dataclass
class ActionResult:
    """Outcome of executing one sync action."""
    action: SyncAction
    status: str  # success, conflict, failed
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


@dataclass
class SyncReport:
    """Summary of a sync run."""
    planned: int = 0
    completed: int = 0
    conflicts: int = 0
    errored: int = 0
    results: List[ActionResult] = field(default_factory=list)


@dataclass
class CheckResult:
    """Counts from a single change monitor pass."""
    created: int = 0
    changed: int = 0
    deleted: int = 0
    skipped: int = 0
    errored: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.created or self.changed or self.deleted)

    def as_dict(self) -> dict:
        return {
            "created": self.created,
            "changed": self.changed,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "errored": self.errored,
        }


@dataclass
class VersionStatistics:
    """Summary of the version history."""
    tracked_notes: int
    total_versions: int
    oldest_version: Optional[datetime]
    newest_version: Optional[datetime]


@dataclass
class SyncStatistics:
    """Summary of the sync state table."""
    total_files: int
    synced_files: int
    pending_files: int
    conflicts: int
